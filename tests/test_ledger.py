"""
Unit tests for the request ledger.

Tests request lifecycle, capacity bound, statistics and subscriptions.
"""

from datetime import datetime, timedelta

import pytest

from webhook_monitor.config.loader import LedgerConfig, MonitorConfig
from webhook_monitor.storage import ledger as ledger_module
from webhook_monitor.storage.ledger import RequestLedger, get_ledger
from webhook_monitor.storage.models import LedgerStats, RequestStatus

URL = "https://hooks.example.com/in"


class FakeClock:
    """Deterministic datetime source advancing one second per call."""

    def __init__(self):
        self.current = datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


class TestAddRequest:
    """Test registering new requests."""

    def setup_method(self):
        self.clock = FakeClock()
        self.ledger = RequestLedger(clock=self.clock)

    def test_creates_pending_record(self):
        """Test a new record starts pending with no outcome."""
        request_id = self.ledger.add_request(URL, "post", {"message": "hi"}, "text")

        record = self.ledger.requests[0]
        assert record.id == request_id
        assert record.url == URL
        assert record.method == "POST"
        assert record.payload == {"message": "hi"}
        assert record.category == "text"
        assert record.status is RequestStatus.PENDING
        assert record.duration_ms is None
        assert record.response is None
        assert record.error is None
        assert record.created_at == datetime(2024, 1, 1, 12, 0, 1)

    def test_missing_method_does_not_raise(self):
        """Test a None method is recorded as an empty verb."""
        request_id = self.ledger.add_request(URL, None)

        record = self.ledger.requests[0]
        assert record.id == request_id
        assert record.method == ""
        assert self.ledger.stats.total_requests == 1

    def test_ids_are_unique(self):
        """Test every request gets a distinct id."""
        ids = {self.ledger.add_request(URL, "POST") for _ in range(200)}

        assert len(ids) == 200
        assert all(request_id.startswith("req-") for request_id in ids)

    def test_prepends_and_counts(self):
        """Test newest records come first and totals increase."""
        first = self.ledger.add_request(URL, "POST")
        second = self.ledger.add_request(URL, "POST")

        assert [r.id for r in self.ledger.requests] == [second, first]
        assert self.ledger.stats.total_requests == 2
        assert self.ledger.stats.success_count == 0
        assert self.ledger.stats.error_count == 0

    def test_capacity_bound_keeps_most_recent(self):
        """Test only the 50 newest records are retained."""
        ids = [self.ledger.add_request(URL, "POST", {"n": i}) for i in range(60)]

        recent = self.ledger.get_recent_requests(50)
        assert len(self.ledger.requests) == 50
        assert [r.id for r in recent] == list(reversed(ids[10:]))
        assert self.ledger.get_recent_requests(100) == recent
        assert not {r.id for r in self.ledger.requests} & set(ids[:10])

    def test_eviction_never_decrements_total(self):
        """Test the lifetime counter ignores the capacity bound."""
        for _ in range(75):
            self.ledger.add_request(URL, "POST")

        assert self.ledger.stats.total_requests == 75

    def test_custom_capacity(self):
        """Test max_requests is configurable."""
        ledger = RequestLedger(max_requests=3)
        for _ in range(5):
            ledger.add_request(URL, "POST")

        assert len(ledger.requests) == 3
        assert ledger.stats.total_requests == 5

    def test_invalid_capacity(self):
        """Test a non-positive capacity is rejected."""
        with pytest.raises(ValueError, match="max_requests must be > 0"):
            RequestLedger(max_requests=0)


class TestUpdateRequest:
    """Test closing requests with outcomes."""

    def setup_method(self):
        self.clock = FakeClock()
        self.ledger = RequestLedger(clock=self.clock)

    def test_success_transition(self):
        """Test a success updates record and statistics."""
        request_id = self.ledger.add_request(URL, "POST")

        self.ledger.update_request(
            request_id, RequestStatus.SUCCESS, duration_ms=250.0, response={"ok": True}
        )

        record = self.ledger.requests[0]
        assert record.status is RequestStatus.SUCCESS
        assert record.duration_ms == 250.0
        assert record.response == {"ok": True}
        assert record.error is None

        stats = self.ledger.stats
        assert stats.success_count == 1
        assert stats.error_count == 0
        assert stats.consecutive_errors == 0
        assert stats.is_connected is True
        assert stats.average_latency_ms == 250.0
        assert stats.last_success_at == datetime(2024, 1, 1, 12, 0, 2)

    def test_error_transition(self):
        """Test an error updates record and statistics."""
        request_id = self.ledger.add_request(URL, "POST")

        self.ledger.update_request(
            request_id, RequestStatus.ERROR, duration_ms=500.0, error="Connection refused"
        )

        record = self.ledger.requests[0]
        assert record.status is RequestStatus.ERROR
        assert record.error == "Connection refused"
        assert record.response is None

        stats = self.ledger.stats
        assert stats.error_count == 1
        assert stats.consecutive_errors == 1
        assert stats.is_connected is True
        assert stats.average_latency_ms == 0.0
        assert stats.last_error_at == datetime(2024, 1, 1, 12, 0, 2)

    def test_status_accepts_string(self):
        """Test string status values are accepted."""
        request_id = self.ledger.add_request(URL, "POST")

        self.ledger.update_request(request_id, "success", duration_ms=10.0)

        assert self.ledger.requests[0].status is RequestStatus.SUCCESS
        assert self.ledger.stats.success_count == 1

    def test_unknown_id_is_ignored(self):
        """Test updates for unknown ids are silent no-ops."""
        self.ledger.add_request(URL, "POST")
        before = self.ledger.stats

        self.ledger.update_request("req-missing", RequestStatus.ERROR, error="boom")

        assert self.ledger.stats == before
        assert self.ledger.requests[0].status is RequestStatus.PENDING

    def test_evicted_id_is_ignored(self):
        """Test outcomes for records dropped by the capacity bound are ignored."""
        ledger = RequestLedger(max_requests=2)
        evicted = ledger.add_request(URL, "POST")
        ledger.add_request(URL, "POST")
        ledger.add_request(URL, "POST")

        ledger.update_request(evicted, RequestStatus.SUCCESS, duration_ms=5.0)

        assert ledger.stats.success_count == 0
        assert ledger.stats.total_requests == 3

    def test_unknown_status_is_ignored(self):
        """Test an unrecognised status never raises."""
        request_id = self.ledger.add_request(URL, "POST")

        self.ledger.update_request(request_id, "exploded")

        assert self.ledger.requests[0].status is RequestStatus.PENDING
        assert self.ledger.stats.error_count == 0

    def test_pending_update_is_ignored(self):
        """Test there is no transition into pending."""
        request_id = self.ledger.add_request(URL, "POST")
        self.ledger.update_request(request_id, RequestStatus.SUCCESS, duration_ms=5.0)

        self.ledger.update_request(request_id, RequestStatus.PENDING)

        assert self.ledger.requests[0].status is RequestStatus.SUCCESS

    def test_double_success_counts_once(self):
        """Test a repeated success update does not double count."""
        request_id = self.ledger.add_request(URL, "POST")

        self.ledger.update_request(request_id, RequestStatus.SUCCESS, duration_ms=100.0)
        self.ledger.update_request(request_id, RequestStatus.SUCCESS, duration_ms=100.0)

        assert self.ledger.stats.success_count == 1
        assert self.ledger.stats.total_requests == 1

    def test_double_error_counts_once(self):
        """Test a repeated error update does not extend the error run."""
        request_id = self.ledger.add_request(URL, "POST")

        self.ledger.update_request(request_id, RequestStatus.ERROR, error="first")
        self.ledger.update_request(request_id, RequestStatus.ERROR, error="second")

        assert self.ledger.stats.error_count == 1
        assert self.ledger.stats.consecutive_errors == 1
        assert self.ledger.requests[0].error == "second"

    def test_terminal_rewrite_keeps_counters(self):
        """Test last write wins on the record but not on the counters."""
        request_id = self.ledger.add_request(URL, "POST")
        self.ledger.update_request(request_id, RequestStatus.ERROR, error="timeout")

        self.ledger.update_request(
            request_id, RequestStatus.SUCCESS, duration_ms=40.0, response="late"
        )

        record = self.ledger.requests[0]
        assert record.status is RequestStatus.SUCCESS
        assert record.response == "late"
        assert record.error is None
        assert self.ledger.stats.error_count == 1
        assert self.ledger.stats.success_count == 0
        assert self.ledger.stats.consecutive_errors == 1


class TestConnectivity:
    """Test consecutive error tracking and the connected flag."""

    def setup_method(self):
        self.ledger = RequestLedger(clock=FakeClock())

    def _fail(self):
        request_id = self.ledger.add_request(URL, "POST")
        self.ledger.update_request(request_id, RequestStatus.ERROR, duration_ms=500.0, error="boom")

    def _succeed(self, duration_ms=100.0):
        request_id = self.ledger.add_request(URL, "POST")
        self.ledger.update_request(request_id, RequestStatus.SUCCESS, duration_ms=duration_ms)

    def test_disconnect_and_recover(self):
        """Test three errors disconnect and one success reconnects."""
        self._fail()
        assert self.ledger.stats.error_count == 1
        assert self.ledger.stats.consecutive_errors == 1
        assert self.ledger.stats.is_connected is True

        self._fail()
        assert self.ledger.stats.is_connected is True

        self._fail()
        assert self.ledger.stats.consecutive_errors == 3
        assert self.ledger.stats.is_connected is False

        self._succeed()
        assert self.ledger.stats.consecutive_errors == 0
        assert self.ledger.stats.is_connected is True

    def test_error_run_length(self):
        """Test consecutive errors equal the run since the last success."""
        self._fail()
        self._succeed()
        for _ in range(5):
            self._fail()

        assert self.ledger.stats.consecutive_errors == 5
        assert self.ledger.stats.error_count == 6
        assert self.ledger.stats.is_connected is False

    def test_custom_threshold(self):
        """Test the disconnect threshold is configurable."""
        self.ledger = RequestLedger(disconnect_threshold=1)

        self._fail()

        assert self.ledger.stats.is_connected is False

    def test_outcomes_never_exceed_total(self):
        """Test success plus error counts stay within the total."""
        pending = self.ledger.add_request(URL, "POST")
        self._succeed()
        self._fail()

        stats = self.ledger.stats
        assert stats.success_count + stats.error_count < stats.total_requests

        self.ledger.update_request(pending, RequestStatus.SUCCESS)

        stats = self.ledger.stats
        assert stats.success_count + stats.error_count == stats.total_requests


class TestAverageLatency:
    """Test trailing-window latency."""

    def test_only_ten_most_recent_successes(self):
        """Test twelve successes average over the newest ten."""
        ledger = RequestLedger()
        for duration in [100.0] * 10 + [1000.0, 1000.0]:
            request_id = ledger.add_request(URL, "POST")
            ledger.update_request(request_id, RequestStatus.SUCCESS, duration_ms=duration)

        assert ledger.stats.average_latency_ms == 280.0

    def test_errors_do_not_affect_latency(self):
        """Test error durations are excluded from the mean."""
        ledger = RequestLedger()
        ok = ledger.add_request(URL, "POST")
        ledger.update_request(ok, RequestStatus.SUCCESS, duration_ms=200.0)
        failed = ledger.add_request(URL, "POST")
        ledger.update_request(failed, RequestStatus.ERROR, duration_ms=15000.0, error="timeout")

        assert ledger.stats.average_latency_ms == 200.0

    def test_success_without_duration_keeps_average(self):
        """Test a success without duration leaves the mean unchanged."""
        ledger = RequestLedger()
        first = ledger.add_request(URL, "POST")
        ledger.update_request(first, RequestStatus.SUCCESS, duration_ms=300.0)
        second = ledger.add_request(URL, "POST")
        ledger.update_request(second, RequestStatus.SUCCESS)

        assert ledger.stats.average_latency_ms == 300.0
        assert ledger.stats.success_count == 2

    def test_success_rewritten_as_error_leaves_window(self):
        """Test a success overwritten as an error drops out of the mean."""
        ledger = RequestLedger()
        fast = ledger.add_request(URL, "POST")
        ledger.update_request(fast, RequestStatus.SUCCESS, duration_ms=100.0)
        slow = ledger.add_request(URL, "POST")
        ledger.update_request(slow, RequestStatus.SUCCESS, duration_ms=900.0)
        assert ledger.stats.average_latency_ms == 500.0

        ledger.update_request(slow, RequestStatus.ERROR, error="late failure")

        assert [r.status for r in ledger.requests] == [RequestStatus.ERROR, RequestStatus.SUCCESS]
        assert ledger.stats.average_latency_ms == 100.0
        assert ledger.stats.success_count == 2
        assert ledger.stats.error_count == 0

    def test_only_success_rewritten_as_error_resets_mean(self):
        """Test the mean returns to zero when no success remains."""
        ledger = RequestLedger()
        request_id = ledger.add_request(URL, "POST")
        ledger.update_request(request_id, RequestStatus.SUCCESS, duration_ms=250.0)

        ledger.update_request(request_id, RequestStatus.ERROR, error="late failure")

        assert ledger.stats.average_latency_ms == 0.0


class TestQueries:
    """Test read-only history queries."""

    def setup_method(self):
        self.ledger = RequestLedger()
        self.text_id = self.ledger.add_request(URL, "POST", category="text")
        self.audio_id = self.ledger.add_request(URL, "POST", category="audio")
        self.probe_id = self.ledger.add_request(URL, "HEAD", category="health-check")

    def test_recent_requests_newest_first(self):
        """Test recent requests are ordered by insertion, newest first."""
        recent = self.ledger.get_recent_requests(2)

        assert [r.id for r in recent] == [self.probe_id, self.audio_id]

    def test_recent_requests_default_and_non_destructive(self):
        """Test reads do not remove records."""
        assert len(self.ledger.get_recent_requests()) == 3
        assert len(self.ledger.get_recent_requests()) == 3
        assert self.ledger.get_recent_requests(0) == []

    def test_requests_by_category(self):
        """Test exact category filtering."""
        probes = self.ledger.get_requests_by_category("health-check")

        assert [r.id for r in probes] == [self.probe_id]
        assert self.ledger.get_requests_by_category("Text") == []

    def test_requests_property_is_a_copy(self):
        """Test callers cannot mutate retained history."""
        snapshot = self.ledger.requests
        snapshot.clear()

        assert len(self.ledger.requests) == 3


class TestClearHistory:
    """Test resetting the ledger."""

    def test_resets_everything(self):
        """Test records and statistics return to the initial state."""
        ledger = RequestLedger()
        for _ in range(3):
            request_id = ledger.add_request(URL, "POST")
            ledger.update_request(request_id, RequestStatus.ERROR, error="boom")
        ok = ledger.add_request(URL, "POST")
        ledger.update_request(ok, RequestStatus.SUCCESS, duration_ms=90.0)
        for _ in range(3):
            request_id = ledger.add_request(URL, "POST")
            ledger.update_request(request_id, RequestStatus.ERROR, error="boom")
        assert ledger.stats.is_connected is False

        ledger.clear_history()

        assert ledger.requests == []
        assert ledger.stats == LedgerStats()
        assert ledger.stats.total_requests == 0
        assert ledger.stats.success_count == 0
        assert ledger.stats.error_count == 0
        assert ledger.stats.consecutive_errors == 0
        assert ledger.stats.is_connected is True


class TestSubscriptions:
    """Test stats listeners."""

    def test_listener_receives_snapshots(self):
        """Test listeners see each mutation."""
        ledger = RequestLedger()
        seen = []
        ledger.subscribe(seen.append)

        request_id = ledger.add_request(URL, "POST")
        ledger.update_request(request_id, RequestStatus.SUCCESS, duration_ms=10.0)
        ledger.clear_history()

        assert [s.total_requests for s in seen] == [1, 1, 0]
        assert seen[1].success_count == 1

    def test_unsubscribe(self):
        """Test unsubscribed listeners are no longer called."""
        ledger = RequestLedger()
        seen = []
        unsubscribe = ledger.subscribe(seen.append)

        ledger.add_request(URL, "POST")
        unsubscribe()
        unsubscribe()
        ledger.add_request(URL, "POST")

        assert len(seen) == 1

    def test_failing_listener_does_not_break_ledger(self):
        """Test a raising listener is isolated from the mutation."""
        ledger = RequestLedger()
        seen = []

        def broken(stats):
            raise RuntimeError("render failed")

        ledger.subscribe(broken)
        ledger.subscribe(seen.append)

        ledger.add_request(URL, "POST")

        assert ledger.stats.total_requests == 1
        assert len(seen) == 1


class TestLedgerFactories:
    """Test ledger construction helpers."""

    def test_from_config(self):
        """Test configuration values are applied."""
        config = MonitorConfig(
            ledger=LedgerConfig(max_requests=5, latency_window=2, disconnect_threshold=4)
        )

        ledger = RequestLedger.from_config(config)

        assert ledger.max_requests == 5
        assert ledger.latency_window == 2
        assert ledger.disconnect_threshold == 4

    def test_get_ledger_is_shared(self, monkeypatch):
        """Test the default ledger is created once."""
        monkeypatch.setattr(ledger_module, "_default_ledger", None)

        assert get_ledger() is get_ledger()
