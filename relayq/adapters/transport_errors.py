"""Project-native typed exceptions for outbound transport failures."""

from __future__ import annotations


class TransportError(Exception):
    """Base exception for transport-level failures.

    Attributes:
        handle_id: Handle the failure relates to, when one was issued.
    """

    def __init__(self, message: str, handle_id: str | None = None):
        super().__init__(message)
        self.handle_id = handle_id


class TransportUnavailableError(TransportError, ConnectionError):
    """The transport cannot accept new requests."""


class TransportRequestError(TransportError, ValueError):
    """The request descriptor is not acceptable to the transport."""
