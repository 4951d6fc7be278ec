"""
Request ledger for webhook calls.

Holds the bounded request history and the statistics derived from it.
"""

import logging
import random
import string
import time
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, List, Optional, Union

from webhook_monitor.config.loader import (
    DEFAULT_DISCONNECT_THRESHOLD,
    DEFAULT_LATENCY_WINDOW,
    DEFAULT_MAX_REQUESTS,
    MonitorConfig,
)
from webhook_monitor.core.stats import average_latency, is_connected
from .models import LedgerStats, RequestStatus, WebhookRequest

logger = logging.getLogger(__name__)

StatsListener = Callable[[LedgerStats], None]

_ID_ALPHABET = string.ascii_lowercase + string.digits


class RequestLedger:
    """Append-only, capacity-bounded log of webhook requests.

    Every call to the endpoint is registered with ``add_request`` before it
    is made and closed with ``update_request`` once its outcome is known.
    Statistics are recomputed synchronously on each mutation, so ``stats``
    always reflects the history as of the last call. The ledger performs no
    I/O and never raises on bookkeeping input.
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        latency_window: int = DEFAULT_LATENCY_WINDOW,
        disconnect_threshold: int = DEFAULT_DISCONNECT_THRESHOLD,
        clock: Callable[[], datetime] = datetime.now
    ):
        """Initialize an empty ledger.

        Args:
            max_requests: Maximum number of records retained in history
            latency_window: Number of recent successful requests averaged
            disconnect_threshold: Consecutive errors that mark the endpoint disconnected
            clock: Source of record and outcome timestamps
        """
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        self.max_requests = max_requests
        self.latency_window = latency_window
        self.disconnect_threshold = disconnect_threshold
        self._clock = clock
        self._requests: List[WebhookRequest] = []
        self._stats = LedgerStats()
        self._listeners: List[StatsListener] = []

    @classmethod
    def from_config(cls, config: MonitorConfig) -> "RequestLedger":
        return cls(
            max_requests=config.ledger.max_requests,
            latency_window=config.ledger.latency_window,
            disconnect_threshold=config.ledger.disconnect_threshold,
        )

    @property
    def stats(self) -> LedgerStats:
        """Current statistics snapshot."""
        return self._stats

    @property
    def requests(self) -> List[WebhookRequest]:
        """Retained history, newest first."""
        return list(self._requests)

    def add_request(
        self,
        url: str,
        method: str,
        payload: Any = None,
        category: Optional[str] = None
    ) -> str:
        """Register a new pending request at the head of the history.

        Records beyond ``max_requests`` are discarded oldest first. Discarding
        never decrements the lifetime counters.

        Args:
            url: Target URL of the call
            method: HTTP verb attempted
            payload: Request body snapshot, None for probes
            category: Display label such as "text" or "health-check"

        Returns:
            Id used to correlate the later ``update_request`` call
        """
        request = WebhookRequest(
            id=self._new_id(),
            url=url,
            method=str(method or "").upper(),
            created_at=self._clock(),
            payload=payload,
            category=category,
        )

        self._requests.insert(0, request)
        del self._requests[self.max_requests:]

        self._stats = replace(self._stats, total_requests=self._stats.total_requests + 1)
        logger.debug("Registered %s %s as %s (%s)", request.method, url, request.id, category)
        self._notify()
        return request.id

    def update_request(
        self,
        request_id: str,
        status: Union[RequestStatus, str],
        duration_ms: Optional[float] = None,
        response: Any = None,
        error: Optional[str] = None
    ) -> None:
        """Close a pending request with its terminal outcome.

        Unknown ids are ignored, since the record may already have been
        evicted by the capacity bound. A record that is already terminal is
        overwritten with the new outcome but is not counted a second time.

        Args:
            request_id: Id returned by ``add_request``
            status: ``SUCCESS`` or ``ERROR``
            duration_ms: Elapsed time from issuance to outcome
            response: Outcome payload for a success
            error: Human-readable failure description for an error
        """
        try:
            status = RequestStatus(status)
        except ValueError:
            logger.warning("Ignoring update for %s with unknown status %r", request_id, status)
            return

        if not status.is_terminal:
            logger.debug("Ignoring non-terminal update for %s", request_id)
            return

        index = self._find(request_id)
        if index is None:
            logger.debug("Ignoring update for unknown request %s", request_id)
            return

        current = self._requests[index]
        already_terminal = current.is_terminal

        self._requests[index] = replace(
            current,
            status=status,
            duration_ms=duration_ms if duration_ms is not None else current.duration_ms,
            response=response if status is RequestStatus.SUCCESS else None,
            error=error if status is RequestStatus.ERROR else None,
        )

        if already_terminal:
            logger.debug(
                "Request %s was already %s; outcome replaced without recounting",
                request_id, current.status.value
            )
        elif status is RequestStatus.SUCCESS:
            self._record_success()
        else:
            self._record_error()

        if RequestStatus.SUCCESS in (current.status, status):
            self._stats = replace(
                self._stats,
                average_latency_ms=average_latency(self._requests, self.latency_window)
            )

        self._notify()

    def clear_history(self) -> None:
        """Drop all records and reset every statistic to its initial state."""
        self._requests = []
        self._stats = LedgerStats()
        logger.info("Request history cleared")
        self._notify()

    def get_recent_requests(self, count: int = 10) -> List[WebhookRequest]:
        """Return the ``count`` most recently added records, newest first."""
        return self._requests[:max(count, 0)]

    def get_requests_by_category(self, category: str) -> List[WebhookRequest]:
        """Return retained records whose category matches exactly."""
        return [request for request in self._requests if request.category == category]

    def subscribe(self, listener: StatsListener) -> Callable[[], None]:
        """Register a callback invoked with the new stats after every mutation.

        Args:
            listener: Callable receiving a LedgerStats snapshot

        Returns:
            Function that removes the listener when called
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _record_success(self) -> None:
        was_connected = self._stats.is_connected
        self._stats = replace(
            self._stats,
            success_count=self._stats.success_count + 1,
            consecutive_errors=0,
            is_connected=True,
            last_success_at=self._clock(),
        )
        if not was_connected:
            logger.info("Webhook connectivity restored")

    def _record_error(self) -> None:
        consecutive_errors = self._stats.consecutive_errors + 1
        connected = self._stats.is_connected and is_connected(
            consecutive_errors, self.disconnect_threshold
        )
        if self._stats.is_connected and not connected:
            logger.warning(
                "Webhook marked disconnected after %d consecutive errors", consecutive_errors
            )
        self._stats = replace(
            self._stats,
            error_count=self._stats.error_count + 1,
            consecutive_errors=consecutive_errors,
            is_connected=connected,
            last_error_at=self._clock(),
        )

    def _find(self, request_id: str) -> Optional[int]:
        for index, request in enumerate(self._requests):
            if request.id == request_id:
                return index
        return None

    def _new_id(self) -> str:
        while True:
            suffix = "".join(random.choices(_ID_ALPHABET, k=9))
            request_id = f"req-{int(time.time() * 1000)}-{suffix}"
            if self._find(request_id) is None:
                return request_id

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._stats)
            except Exception:
                logger.exception("Ledger listener %r failed", listener)


# Global ledger instance
_default_ledger: Optional[RequestLedger] = None


def get_ledger() -> RequestLedger:
    """Get the process-wide ledger instance.

    Returns:
        The shared RequestLedger, created on first use
    """
    global _default_ledger
    if _default_ledger is None:
        _default_ledger = RequestLedger()
    return _default_ledger
