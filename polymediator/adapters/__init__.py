"""Adapters connecting the mediator core to stores, persistence and the CLI."""
