"""
Statistics helpers for the request ledger.

Pure functions deriving latency and connectivity figures from request records.
"""

from typing import Iterable, List

from webhook_monitor.storage.models import RequestStatus, WebhookRequest

LATENCY_WINDOW = 10
DISCONNECT_THRESHOLD = 3


def recent_successful_durations(
    requests: Iterable[WebhookRequest],
    window: int = LATENCY_WINDOW
) -> List[float]:
    """Collect durations of the most recent successful requests.

    Args:
        requests: Request records ordered newest first
        window: Maximum number of durations to collect

    Returns:
        Up to ``window`` durations, newest first
    """
    durations = []
    for request in requests:
        if len(durations) >= window:
            break
        if request.status is RequestStatus.SUCCESS and request.duration_ms is not None:
            durations.append(request.duration_ms)
    return durations


def average_latency(
    requests: Iterable[WebhookRequest],
    window: int = LATENCY_WINDOW
) -> float:
    """Mean duration over the trailing window of successful requests.

    Args:
        requests: Request records ordered newest first
        window: Size of the trailing window

    Returns:
        Mean duration in milliseconds, or 0.0 if no request qualifies
    """
    durations = recent_successful_durations(requests, window)
    if not durations:
        return 0.0
    return sum(durations) / len(durations)


def is_connected(consecutive_errors: int, threshold: int = DISCONNECT_THRESHOLD) -> bool:
    """Connectivity signal derived from the current run of errors."""
    return consecutive_errors < threshold
