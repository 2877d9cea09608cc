"""A small Redis-compatible key-value server with RDB loading and replication."""

__version__ = "0.1.0"