"""
Background health checks for the webhook endpoint.

Periodically probes the endpoint while it is idle so the ledger's
connectivity signal does not go stale between real calls.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import httpx

from webhook_monitor.config.loader import (
    DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS,
    DEFAULT_IDLE_THRESHOLD_SECONDS,
    DEFAULT_PROBE_TIMEOUT_SECONDS,
    MonitorConfig,
)
from webhook_monitor.storage.ledger import RequestLedger
from webhook_monitor.storage.models import RequestStatus

logger = logging.getLogger(__name__)

HEALTH_CHECK_CATEGORY = "health-check"
PROBE_METHOD = "HEAD"


class HealthProber:
    """Recurring idle-time health check feeding a RequestLedger.

    The prober keeps no statistics of its own. Each probe is recorded through
    the ledger's ``add_request``/``update_request`` pair exactly like a
    caller-issued request, tagged with the ``health-check`` category.
    """

    def __init__(
        self,
        ledger: RequestLedger,
        interval_seconds: float = DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS,
        idle_threshold_seconds: float = DEFAULT_IDLE_THRESHOLD_SECONDS,
        probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """Initialize a stopped prober.

        Args:
            ledger: Ledger receiving probe records
            interval_seconds: Period of the recurring timer
            idle_threshold_seconds: Elapsed time after which a tick issues a probe
            probe_timeout_seconds: Timeout applied to each probe request
            client: HTTP client to use; one is created and owned if omitted
            clock: Monotonic time source in seconds
        """
        self.ledger = ledger
        self.interval_seconds = interval_seconds
        self.idle_threshold_seconds = idle_threshold_seconds
        self.probe_timeout_seconds = probe_timeout_seconds
        self.endpoint_url: Optional[str] = None
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._last_tick: Optional[float] = None

    @classmethod
    def from_config(
        cls,
        ledger: RequestLedger,
        config: MonitorConfig,
        client: Optional[httpx.AsyncClient] = None
    ) -> "HealthProber":
        return cls(
            ledger,
            interval_seconds=config.health_check.interval_seconds,
            idle_threshold_seconds=config.health_check.idle_threshold_seconds,
            probe_timeout_seconds=config.health_check.probe_timeout_seconds,
            client=client,
        )

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, endpoint_url: str) -> None:
        """Begin the recurring health check against ``endpoint_url``.

        Any schedule started earlier is cancelled first, so restarting never
        stacks two timers. Must be called from within a running event loop.

        Args:
            endpoint_url: Webhook URL to probe
        """
        self.stop()
        self.endpoint_url = endpoint_url
        self._last_tick = self._clock()
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(
            "Health checks started for %s every %.0fs (idle threshold %.0fs)",
            endpoint_url, self.interval_seconds, self.idle_threshold_seconds
        )

    def stop(self) -> None:
        """Cancel the recurring health check. Safe to call when not started."""
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
            logger.info("Health checks stopped for %s", self.endpoint_url)
        self._task = None

    async def aclose(self) -> None:
        """Stop the timer and release the HTTP client if the prober created it."""
        self.stop()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def tick(self) -> Optional[str]:
        """Run one timer tick.

        A probe is issued only when more than the idle threshold has elapsed
        since the previous tick, or since ``start`` for the first tick.

        Returns:
            Id of the probe record, or None if the tick was skipped
        """
        now = self._clock()
        last = self._last_tick if self._last_tick is not None else now
        elapsed = now - last
        self._last_tick = now

        if elapsed <= self.idle_threshold_seconds:
            logger.debug("Skipping health check, last tick %.1fs ago", elapsed)
            return None
        return await self.probe()

    async def probe(self, endpoint_url: Optional[str] = None) -> str:
        """Issue a single probe and record its outcome in the ledger.

        Args:
            endpoint_url: URL to probe, defaults to the one given to ``start``

        Returns:
            Id of the probe record

        Raises:
            ValueError: If no endpoint URL is known
        """
        url = endpoint_url or self.endpoint_url
        if not url:
            raise ValueError("endpoint_url is required before probing")

        request_id = self.ledger.add_request(
            url, PROBE_METHOD, payload=None, category=HEALTH_CHECK_CATEGORY
        )
        start = time.perf_counter()
        try:
            response = await self._get_client().head(url, timeout=self.probe_timeout_seconds)
        except asyncio.CancelledError:
            self.ledger.update_request(
                request_id, RequestStatus.ERROR,
                duration_ms=_elapsed_ms(start), error="Health check cancelled"
            )
            raise
        except Exception as exc:
            # Any failure to reach the endpoint counts as a failed check.
            duration_ms = _elapsed_ms(start)
            message = str(exc) or "Health check failed"
            logger.warning("Health check for %s failed: %s", url, message)
            self.ledger.update_request(
                request_id, RequestStatus.ERROR, duration_ms=duration_ms, error=message
            )
            return request_id

        duration_ms = _elapsed_ms(start)
        if response.is_success:
            logger.debug("Health check for %s ok in %.0fms", url, duration_ms)
            self.ledger.update_request(
                request_id,
                RequestStatus.SUCCESS,
                duration_ms=duration_ms,
                response={"status_code": response.status_code},
            )
        else:
            message = f"HTTP {response.status_code} {response.reason_phrase}".strip()
            logger.warning("Health check for %s returned %s", url, message)
            self.ledger.update_request(
                request_id, RequestStatus.ERROR, duration_ms=duration_ms, error=message
            )
        return request_id

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.tick()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 1)
