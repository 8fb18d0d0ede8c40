"""WebSocket host that serves poker rooms to browser clients."""

from .server import ClientSession, TableServer

__all__ = ["ClientSession", "TableServer"]
