"""Store adapters the mediator routes queries to.

Implementations support multiple backends:
- PostgreSQL (relational, asyncpg)
- MongoDB (document, pymongo)
- Redis-compatible REST endpoint (key-value, httpx)
"""
