"""httpx-backed fire/collect transport for dispatched jobs."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Final
from uuid import uuid4

import httpx
import structlog

from relayq.db import DispatchResponseRepositoryPort
from relayq.domain import CollectResult, CollectState, TransportRequest

from .interfaces import TransportPort
from .transport_errors import TransportRequestError, TransportUnavailableError

logger = structlog.get_logger(__name__)


class HttpxTransport(TransportPort):
    """Transport that runs each request on a worker thread and stores its outcome.

    Outcomes go to the response store, so any process sharing that store can
    collect a handle. A handle with no stored outcome collects as `pending`
    while this process is still running its request, and as `unknown`
    otherwise. An outcome the store would not take is kept in this process and
    served from here until a later write succeeds.
    """

    _USER_AGENT: Final[str] = "relayq/0.1 (Python/httpx)"
    _SUPPORTED_METHODS: Final[frozenset[str]] = frozenset({"GET", "POST", "DELETE"})

    def __init__(
        self,
        response_repository: DispatchResponseRepositoryPort,
        max_workers: int = 16,
        client: httpx.Client | None = None,
        store_attempts: int = 3,
        store_retry_delay_seconds: float = 0.5,
    ):
        """Initialize the transport.

        Args:
            response_repository: Store for collected outcomes.
            max_workers: Concurrent in-flight request threads.
            client: Optional preconfigured httpx client.
            store_attempts: Writes tried per outcome before keeping it locally.
            store_retry_delay_seconds: Base delay between write attempts.

        Raises:
            ValueError: Raised when dependencies or config values are invalid.
        """

        if response_repository is None:
            raise ValueError("response_repository must not be None")
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if store_attempts < 1:
            raise ValueError("store_attempts must be >= 1")
        if store_retry_delay_seconds < 0:
            raise ValueError("store_retry_delay_seconds must be >= 0")

        self._response_repository = response_repository
        self._client = client or httpx.Client(headers={"User-Agent": self._USER_AGENT})
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="relayq-transport")
        self._store_attempts = store_attempts
        self._store_retry_delay_seconds = store_retry_delay_seconds
        self._running_handles: set[str] = set()
        self._unstored_outcomes: dict[str, CollectResult] = {}
        self._lock = threading.Lock()

    def transport_send(self, request: TransportRequest) -> str:
        """Submit one request to the worker pool and return its handle.

        Raises:
            TransportRequestError: Raised when method, URL or timeout are invalid.
            TransportUnavailableError: Raised when the transport has been closed.
        """

        normalized_method = request.method.strip().upper()
        if normalized_method not in self._SUPPORTED_METHODS:
            raise TransportRequestError(f"unsupported method={request.method}")
        if not request.url.startswith(("http://", "https://")):
            raise TransportRequestError(f"unsupported url={request.url}")
        if request.timeout_ms < 1:
            raise TransportRequestError("timeout_ms must be >= 1")

        handle_id = uuid4().hex
        with self._lock:
            self._running_handles.add(handle_id)
        try:
            self._executor.submit(self._transport_run, handle_id, request)
        except RuntimeError as error:
            with self._lock:
                self._running_handles.discard(handle_id)
            raise TransportUnavailableError("transport is closed") from error
        return handle_id

    def transport_collect(self, handle_id: str) -> CollectResult:
        """Return the current outcome for one handle.

        Raises:
            RuntimeError: Raised when the response store fails.
        """

        with self._lock:
            running = handle_id in self._running_handles
            unstored_result = self._unstored_outcomes.get(handle_id)
        if unstored_result is not None:
            self._transport_flush_unstored(handle_id, unstored_result)
            return unstored_result

        stored_result = self._response_repository.db_response_get(handle_id)
        if stored_result is not None:
            return stored_result
        if running:
            return CollectResult(state=CollectState.PENDING)
        return CollectResult(state=CollectState.UNKNOWN)

    def transport_close(self) -> None:
        """Wait for running requests to store their outcomes, then release the HTTP client."""

        self._executor.shutdown(wait=True)
        self._client.close()

    def _transport_run(self, handle_id: str, request: TransportRequest) -> None:
        """Run one request on a worker thread and store its outcome.

        The handle stays in the running set until its outcome is stored or kept
        locally, so collect never reports a finished request as unknown here.
        """

        try:
            result = self._transport_execute(handle_id, request)
            self._transport_store(handle_id, result)
        finally:
            with self._lock:
                self._running_handles.discard(handle_id)

    def _transport_execute(self, handle_id: str, request: TransportRequest) -> CollectResult:
        try:
            response = self._client.request(
                request.method.strip().upper(),
                request.url,
                params=request.query_parameters or None,
                content=request.body,
                headers=request.headers,
                timeout=httpx.Timeout(request.timeout_ms / 1000),
            )
            return CollectResult(state=CollectState.SUCCESS, status_code=response.status_code, body=response.text)
        except httpx.HTTPError as error:
            return CollectResult(state=CollectState.ERROR, error_message=self._transport_describe_error(error))
        except Exception as error:  # pylint: disable=broad-exception-caught
            logger.exception("transport_request_crashed", handle_id=handle_id)
            return CollectResult(state=CollectState.ERROR, error_message=f"{type(error).__name__}: {error}")

    def _transport_store(self, handle_id: str, result: CollectResult) -> None:
        """Write one outcome, retrying, and keep it locally when every attempt fails."""

        for attempt in range(1, self._store_attempts + 1):
            try:
                self._transport_record(handle_id, result)
                return
            except Exception:  # pylint: disable=broad-exception-caught
                logger.warning(
                    "transport_response_store_failed",
                    handle_id=handle_id,
                    attempt=attempt,
                    attempts=self._store_attempts,
                    exc_info=True,
                )
            if attempt < self._store_attempts:
                time.sleep(self._store_retry_delay_seconds * attempt)

        with self._lock:
            self._unstored_outcomes[handle_id] = result
        logger.error("transport_response_kept_locally", handle_id=handle_id)

    def _transport_flush_unstored(self, handle_id: str, result: CollectResult) -> None:
        try:
            self._transport_record(handle_id, result)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.warning("transport_response_flush_failed", handle_id=handle_id, exc_info=True)
            return
        with self._lock:
            self._unstored_outcomes.pop(handle_id, None)

    def _transport_record(self, handle_id: str, result: CollectResult) -> None:
        if result.state == CollectState.ERROR:
            self._response_repository.db_response_record(
                handle_id=handle_id,
                status_code=None,
                body=None,
                error_message=result.error_message or "unknown error",
            )
            return
        self._response_repository.db_response_record(
            handle_id=handle_id,
            status_code=result.status_code,
            body=result.body,
            error_message=None,
        )

    def _transport_describe_error(self, error: httpx.HTTPError) -> str:
        """Render a request failure as stored error text."""

        if isinstance(error, httpx.TimeoutException):
            return "request timed out"
        return f"{type(error).__name__}: {error}"
