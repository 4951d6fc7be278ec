"""
Monitored webhook client.

Delivers payloads to the webhook endpoint and records every attempt in the ledger.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from ..config.loader import DEFAULT_REQUEST_TIMEOUT_SECONDS, MonitorConfig
from ..storage.ledger import RequestLedger, get_ledger
from ..storage.models import RequestStatus

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "webhook-monitor"
TEST_CATEGORY = "test"


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of a single webhook delivery."""
    request_id: str
    ok: bool
    status_code: Optional[int] = None
    duration_ms: Optional[float] = None
    response: Any = None
    error: Optional[str] = None


class MonitoredWebhook:
    """Webhook client that records each delivery in a RequestLedger.

    Each call is registered as pending before the POST is issued and closed
    with its outcome afterwards. The POST races a fixed timeout; whichever
    settles first decides the outcome, so no record is left pending.
    Delivery failures are returned as data, never raised.
    """

    def __init__(
        self,
        url: str,
        ledger: Optional[RequestLedger] = None,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        source: str = DEFAULT_SOURCE
    ):
        """Initialize monitored webhook client.

        Args:
            url: Webhook endpoint URL (required)
            ledger: Ledger receiving request records (defaults to the shared ledger)
            timeout_seconds: Time allowed for each delivery
            client: HTTP client to use; one is created and owned if omitted
            source: Value of the ``source`` field added to dict payloads

        Raises:
            ValueError: If url is missing/empty or timeout is not positive
        """
        if not url or not url.strip():
            raise ValueError("url is required and cannot be empty")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        self.url = url
        self.ledger = ledger if ledger is not None else get_ledger()
        self.timeout_seconds = timeout_seconds
        self.source = source
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_config(
        cls,
        config: MonitorConfig,
        ledger: Optional[RequestLedger] = None,
        client: Optional[httpx.AsyncClient] = None
    ) -> "MonitoredWebhook":
        if not config.webhook.url:
            raise ValueError("webhook.url is not configured")
        return cls(
            config.webhook.url,
            ledger=ledger,
            timeout_seconds=config.webhook.timeout_seconds,
            client=client,
        )

    async def send(self, payload: Any, category: Optional[str] = "text") -> DeliveryResult:
        """POST a JSON payload to the webhook and record the outcome.

        Args:
            payload: JSON-serializable body; dicts get a ``source`` field added
            category: Display label for the ledger record

        Returns:
            DeliveryResult describing the terminal outcome

        Raises:
            Exception: Only unexpected, non-network errors, after they are recorded
        """
        body = self._envelope(payload)
        request_id = self.ledger.add_request(self.url, "POST", payload=body, category=category)
        logger.info("Sending %s payload to webhook %s", category, self.url)

        start = time.perf_counter()
        try:
            # The client's own timeout is disabled; the race below decides.
            response = await asyncio.wait_for(
                self._get_client().post(self.url, json=body, timeout=None),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            message = f"Request timed out after {self.timeout_seconds:g}s"
            return self._fail(request_id, start, message)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return self._fail(request_id, start, str(exc) or type(exc).__name__)
        except asyncio.CancelledError:
            self._fail(request_id, start, "Request cancelled")
            raise
        except Exception as exc:
            self._fail(request_id, start, f"Unexpected error: {exc}")
            raise

        duration_ms = _elapsed_ms(start)
        content = _response_content(response)

        if not response.is_success:
            message = f"HTTP {response.status_code} {response.reason_phrase}".strip()
            logger.error("Webhook delivery failed: %s", message)
            self.ledger.update_request(
                request_id, RequestStatus.ERROR, duration_ms=duration_ms, error=message
            )
            return DeliveryResult(
                request_id=request_id,
                ok=False,
                status_code=response.status_code,
                duration_ms=duration_ms,
                error=message,
            )

        logger.info(
            "Webhook delivery succeeded: %s (took %.0fms)", response.status_code, duration_ms
        )
        self.ledger.update_request(
            request_id, RequestStatus.SUCCESS, duration_ms=duration_ms, response=content
        )
        return DeliveryResult(
            request_id=request_id,
            ok=True,
            status_code=response.status_code,
            duration_ms=duration_ms,
            response=content,
        )

    async def test_connection(self) -> DeliveryResult:
        """Send a fixed connectivity-test payload."""
        payload = {
            "timestamp": datetime.now().isoformat(),
            "session_id": "test-session",
            "test": True,
            "message": "Webhook connectivity test",
        }
        return await self.send(payload, category=TEST_CATEGORY)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _envelope(self, payload: Any) -> Any:
        if isinstance(payload, dict):
            return {**payload, "source": self.source}
        return payload

    def _fail(self, request_id: str, start: float, message: str) -> DeliveryResult:
        duration_ms = _elapsed_ms(start)
        logger.error("Webhook delivery to %s failed: %s", self.url, message)
        self.ledger.update_request(
            request_id, RequestStatus.ERROR, duration_ms=duration_ms, error=message
        )
        return DeliveryResult(
            request_id=request_id, ok=False, duration_ms=duration_ms, error=message
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client


def _response_content(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        body = response.text
    return {"status_code": response.status_code, "body": body}


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 1)
