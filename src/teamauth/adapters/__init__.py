"""Adapters - Infrastructure implementations of core interfaces.

Adapters are organized by type:
- directory/: Directory storage (in-memory, PostgreSQL)
- identity/: Identity providers (Slack)
- notifications/: Token notification delivery (console)
"""
