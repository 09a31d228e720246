"""History store adapters for the execution log and performance profiles.

Implementations support multiple backends:
- SQLite (zero-config, single-file)
- In-memory (core/history.py; also the degraded-mode fallback)
"""
