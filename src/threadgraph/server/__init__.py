"""HTTP API over the thread operations of one compiled graph."""

from threadgraph.server.app import create_app

__all__ = ["create_app"]
