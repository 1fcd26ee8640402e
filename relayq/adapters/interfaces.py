"""Typed interfaces for adapter-layer responsibilities."""

from typing import Protocol

from relayq.domain import CollectResult, TransportRequest


class TransportPort(Protocol):
    """Port definition for two-phase fire/collect request transports."""

    def transport_send(self, request: TransportRequest) -> str:
        """Issue one request without waiting for its response.

        Args:
            request: Outbound request descriptor.

        Returns:
            str: Opaque handle used to collect the outcome later.

        Raises:
            ConnectionError: Raised when the transport cannot accept the request.
            ValueError: Raised when the request descriptor is invalid.
        """

    def transport_collect(self, handle_id: str) -> CollectResult:
        """Poll the outcome of a previously issued request.

        Args:
            handle_id: Handle returned by `transport_send`.

        Returns:
            CollectResult: Pending, success, error, or unknown when the handle is not known here.
        """

    def transport_close(self) -> None:
        """Finish outstanding requests and release transport resources."""
