"""Transport implementations."""

from .base import StaticTokenSource, TokenSource, Transport, TransportResponse
from .http import HttpxTransport

__all__ = [
    "HttpxTransport",
    "StaticTokenSource",
    "TokenSource",
    "Transport",
    "TransportResponse",
]
