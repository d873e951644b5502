"""teamauth - Identity reconciliation, signed tokens and team-scoped access."""

__version__ = "0.1.0"
