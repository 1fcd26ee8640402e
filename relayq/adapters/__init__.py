"""Adapter layer package for outbound transport boundaries."""

from .http_transport import HttpxTransport
from .interfaces import TransportPort
from .transport_errors import (
    TransportError,
    TransportRequestError,
    TransportUnavailableError,
)

__all__ = [
    "HttpxTransport",
    "TransportError",
    "TransportPort",
    "TransportRequestError",
    "TransportUnavailableError",
]
