"""Message transports for messaging platforms."""

from app.adapters.base import BaseTransport
from app.adapters.line import LineAdapter

__all__ = ["BaseTransport", "LineAdapter"]
