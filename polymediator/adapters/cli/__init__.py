"""Command-line interface adapters.

Provides CLI commands for driving the mediator:
- recommend: Ask which store history favours for a query
- execute: Run a query on the selected (or a named) store
- execute_all: Run a query on every compatible store and compare
- history / stats / clear / analytics: Inspect or reset what was learned
"""
