"""
Data models for the request ledger.

Defines webhook request records and the derived statistics snapshot.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class RequestStatus(Enum):
    """Lifecycle status of a webhook request."""
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


@dataclass(frozen=True)
class WebhookRequest:
    """Record of one attempted call to the webhook endpoint.

    Records are immutable; a lifecycle transition produces a new instance
    that replaces the old one in the ledger. While ``PENDING`` the record
    carries no duration, response or error. A ``SUCCESS`` record carries no
    error and an ``ERROR`` record carries no response.
    """
    id: str
    url: str
    method: str
    created_at: datetime
    payload: Any = None
    status: RequestStatus = RequestStatus.PENDING
    duration_ms: Optional[float] = None
    response: Any = None
    error: Optional[str] = None
    category: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        """Whether the record has reached ``SUCCESS`` or ``ERROR``."""
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class LedgerStats:
    """Aggregate statistics derived from the ledger.

    Counters are monotonic over the ledger's lifetime and are not bounded by
    the retained history. Only ``RequestLedger`` produces new snapshots.
    """
    total_requests: int = 0
    success_count: int = 0
    error_count: int = 0
    average_latency_ms: float = 0.0
    consecutive_errors: int = 0
    is_connected: bool = True
    last_success_at: Optional[datetime] = None
    last_error_at: Optional[datetime] = None

    @property
    def success_rate(self) -> Optional[float]:
        """Percentage of terminal outcomes that succeeded, or None if there are none."""
        completed = self.success_count + self.error_count
        if completed == 0:
            return None
        return self.success_count / completed * 100

    @property
    def pending_count(self) -> int:
        return self.total_requests - self.success_count - self.error_count

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("last_success_at", "last_error_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        data["success_rate"] = self.success_rate
        return data
