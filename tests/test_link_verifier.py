"""
Tests for external link verification.

The network is replaced by fake transports; requests-level behavior is
tested against a mocked requests.Session.
"""

import threading
import time
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
import requests

from conftest import make_external
from domain.types import LinkVerdict, VerdictChange
from processors.link_verifier import (
    ExternalLinkVerifier,
    HostRateLimiter,
    HttpTransport,
    FetchResult,
    RetryPolicy,
    apply_result,
    classify_status,
    is_stale,
    verdict_change,
    verification_report,
)

NOW = datetime(2026, 1, 15, 12, 0, 0)


class FakeTransport:
    """Returns canned statuses per URL and records concurrency."""

    def __init__(self, statuses=None, delay=0.0):
        self.statuses = statuses or {}
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, url):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.calls.append(url)
        try:
            if self.delay:
                time.sleep(self.delay)
            status = self.statuses.get(url, 200)
            if status is None:
                return FetchResult(error="timeout after 10s", attempts=3)
            return FetchResult(status_code=status, attempts=1, response_time_ms=5)
        finally:
            with self._lock:
                self.in_flight -= 1


class RaisingTransport(FakeTransport):
    """FakeTransport that raises the given exception for some URLs."""

    def __init__(self, failures, statuses=None):
        super().__init__(statuses)
        self.failures = failures

    def fetch(self, url):
        if url in self.failures:
            raise self.failures[url]
        return super().fetch(url)


def no_wait_limiter():
    return HostRateLimiter(min_interval=0)


def make_verifier(transport, concurrency=4):
    return ExternalLinkVerifier(transport, concurrency=concurrency,
                                rate_limiter=no_wait_limiter(), now=lambda: NOW)


def response(status, url='https://example.com/'):
    mock = MagicMock()
    mock.status_code = status
    mock.url = url
    return mock


class TestClassification:

    @pytest.mark.parametrize("status,verdict", [
        (200, LinkVerdict.VALID),
        (301, LinkVerdict.VALID),
        (399, LinkVerdict.VALID),
        (404, LinkVerdict.BROKEN),
        (500, LinkVerdict.BROKEN),
        (None, LinkVerdict.BROKEN),
    ])
    def test_classify_status(self, status, verdict):
        assert classify_status(status) == verdict

    def test_verdict_changes(self):
        never_checked = make_external(1, 1, "https://a.example.com")
        broken = make_external(2, 1, "https://b.example.com", is_broken=True, last_verified_at=NOW)
        assert verdict_change(never_checked, LinkVerdict.BROKEN) == VerdictChange.NEWLY_BROKEN
        assert verdict_change(broken, LinkVerdict.BROKEN) == VerdictChange.STILL_BROKEN
        assert verdict_change(broken, LinkVerdict.VALID) == VerdictChange.RECOVERED
        assert verdict_change(never_checked, LinkVerdict.VALID) == VerdictChange.STILL_VALID
        assert verdict_change(broken, LinkVerdict.UNVERIFIED) == VerdictChange.UNCHANGED


class TestVerifier:

    def test_batch_summary(self):
        links = [
            make_external(1, 1, "https://ok.example.com/a"),
            make_external(2, 1, "https://gone.example.com/b"),
            make_external(3, 2, "https://slow.example.com/c"),
        ]
        transport = FakeTransport({"https://gone.example.com/b": 404, "https://slow.example.com/c": None})
        summary = make_verifier(transport).verify(links)

        assert summary.total == 3
        assert summary.valid == 1
        assert summary.broken == 2
        assert summary.newly_broken == 2
        assert summary.errored == 1
        assert [r.link_id for r in summary.results] == [1, 2, 3]
        assert summary.results[2].error.startswith("timeout")

    def test_concurrency_bound(self):
        links = [make_external(i, 1, f"https://site{i}.example.com/") for i in range(1, 21)]
        transport = FakeTransport(delay=0.02)
        make_verifier(transport, concurrency=3).verify(links)
        assert len(transport.calls) == 20
        assert transport.max_in_flight <= 3

    def test_results_delivered_on_calling_thread(self):
        links = [make_external(i, 1, f"https://site{i}.example.com/") for i in range(1, 6)]
        caller = threading.get_ident()
        seen = []
        make_verifier(FakeTransport()).verify(
            links, on_result=lambda link, result: seen.append((threading.get_ident(), link.id))
        )
        assert {thread for thread, _ in seen} == {caller}
        assert sorted(link_id for _, link_id in seen) == [1, 2, 3, 4, 5]

    def test_progress(self):
        links = [make_external(i, 1, f"https://site{i}.example.com/") for i in range(1, 4)]
        calls = []
        make_verifier(FakeTransport()).verify(links, progress_callback=lambda p, t: calls.append((p, t)))
        assert calls[-1] == (3, 3)

    def test_cancelled_batch_is_unverified(self):
        links = [make_external(i, 1, f"https://site{i}.example.com/") for i in range(1, 4)]
        event = threading.Event()
        event.set()
        transport = FakeTransport()
        summary = make_verifier(transport).verify(links, cancel_event=event)
        assert summary.cancelled
        assert summary.unverified == 3
        assert transport.calls == []

    def test_empty_batch(self):
        summary = make_verifier(FakeTransport()).verify([])
        assert summary.total == 0
        assert summary.broken_percentage == 0.0

    def test_malformed_url_is_broken_and_batch_continues(self):
        links = [
            make_external(1, 1, "https://ok.example.com/"),
            make_external(2, 1, "http://[::1/broken"),
        ]
        summary = make_verifier(RaisingTransport({"http://[::1/broken": ValueError("Invalid IPv6 URL")})).verify(links)

        assert summary.total == 2
        assert summary.valid == 1
        assert summary.broken == 1
        assert summary.results[1].verdict == LinkVerdict.BROKEN
        assert "ValueError" in summary.results[1].error

    def test_transport_exception_is_broken(self):
        link = make_external(1, 1, "https://crash.example.com/")
        transport = RaisingTransport({"https://crash.example.com/": RuntimeError("connection pool closed")})
        result = make_verifier(transport).check(link)
        assert result.verdict == LinkVerdict.BROKEN
        assert result.change == VerdictChange.NEWLY_BROKEN
        assert result.error == "RuntimeError: connection pool closed"

    def test_failing_result_handler_does_not_abort_batch(self):
        links = [make_external(i, 1, f"https://site{i}.example.com/") for i in range(1, 5)]
        recorded = []

        def on_result(link, result):
            if link.id == 2:
                raise RuntimeError("database is locked")
            recorded.append(link.id)

        summary = make_verifier(FakeTransport()).verify(links, on_result=on_result)
        assert sorted(recorded) == [1, 3, 4]
        assert summary.record_errors == 1
        assert summary.valid == 4
        assert summary.to_dict()['record_errors'] == 1

    def test_alert_threshold(self):
        links = [make_external(i, 1, f"https://site{i}.example.com/") for i in range(1, 5)]
        transport = FakeTransport({"https://site1.example.com/": 404})
        verifier = ExternalLinkVerifier(transport, rate_limiter=no_wait_limiter(), broken_alert_percent=10.0)
        summary = verifier.verify(links)
        assert summary.broken_percentage == 25.0
        assert summary.alert

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            ExternalLinkVerifier(FakeTransport(), concurrency=0)

    def test_apply_result(self):
        link = make_external(1, 1, "https://gone.example.com/")
        result = make_verifier(FakeTransport({"https://gone.example.com/": 410})).check(link)
        apply_result(link, result)
        assert link.is_broken
        assert link.last_status_code == 410
        assert link.last_verified_at == NOW


class TestRetryPolicy:

    def test_delay_schedule(self):
        policy = RetryPolicy(max_attempts=4, delays=(1.0, 2.0))
        assert policy.delay_for(1) == 1.0
        assert policy.delay_for(2) == 2.0
        assert policy.delay_for(3) == 2.0
        assert policy.should_retry(3)
        assert not policy.should_retry(4)

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestHttpTransport:

    def make(self, side_effect, attempts=3):
        sleeps = []
        session = MagicMock()
        session.head.side_effect = side_effect
        transport = HttpTransport(
            timeout=5,
            retry_policy=RetryPolicy.fixed(attempts, 1.0, sleep=sleeps.append),
            session=session,
        )
        return transport, session, sleeps

    def test_timeout_on_every_attempt_is_broken(self):
        transport, session, sleeps = self.make(requests.Timeout("slow"))
        result = transport.fetch("https://slow.example.com/")
        assert result.status_code is None
        assert result.attempts == 3
        assert session.head.call_count == 3
        assert sleeps == [1.0, 1.0]
        assert classify_status(result.status_code) == LinkVerdict.BROKEN

    def test_transient_status_retried_then_succeeds(self):
        transport, session, sleeps = self.make([response(503), response(200)])
        result = transport.fetch("https://flaky.example.com/")
        assert result.status_code == 200
        assert result.attempts == 2
        assert sleeps == [1.0]

    def test_not_found_is_final(self):
        transport, session, sleeps = self.make([response(404)])
        result = transport.fetch("https://example.com/missing")
        assert result.status_code == 404
        assert result.attempts == 1
        assert sleeps == []

    def test_invalid_url_not_retried(self):
        transport, session, sleeps = self.make(requests.exceptions.InvalidURL("bad"))
        result = transport.fetch("http://")
        assert result.attempts == 1
        assert "InvalidURL" in result.error

    def test_get_fallback_when_head_rejected(self):
        transport, session, _ = self.make([response(405)])
        session.get.return_value = response(200)
        result = transport.fetch("https://nohead.example.com/")
        assert result.status_code == 200
        session.get.assert_called_once()

    def test_pool_size_is_kept(self):
        transport = HttpTransport(pool_size=7)
        assert transport.pool_size == 7
        assert transport.session.get_adapter("https://example.com/")._pool_maxsize == 7


class TestRateLimiter:

    def test_same_host_is_spaced(self):
        clock = [100.0]
        sleeps = []
        limiter = HostRateLimiter(min_interval=0.5, clock=lambda: clock[0], sleep=sleeps.append)
        assert limiter.acquire("a.example.com") == 0
        assert limiter.acquire("a.example.com") == pytest.approx(0.5)
        assert limiter.acquire("a.example.com") == pytest.approx(1.0)
        assert sleeps == [pytest.approx(0.5), pytest.approx(1.0)]

    def test_other_hosts_are_independent(self):
        limiter = HostRateLimiter(min_interval=0.5, clock=lambda: 10.0, sleep=lambda s: None)
        limiter.acquire("a.example.com")
        assert limiter.acquire("b.example.com") == 0

    def test_slot_expires_with_time(self):
        clock = [0.0]
        limiter = HostRateLimiter(min_interval=0.5, clock=lambda: clock[0], sleep=lambda s: None)
        limiter.acquire("a.example.com")
        clock[0] = 2.0
        assert limiter.acquire("a.example.com") == 0


class TestReport:

    def test_verification_report(self):
        links = [
            make_external(1, 1, "https://a.example.com", is_broken=True, last_verified_at=NOW),
            make_external(2, 1, "https://b.example.com", last_verified_at=NOW - timedelta(days=40)),
            make_external(3, 1, "https://c.example.com"),
            make_external(4, 1, "https://d.example.com", last_verified_at=NOW),
        ]
        report = verification_report(links, stale_days=30, alert_percent=10.0, now=NOW)
        summary = report['summary']
        assert summary['never_verified'] == 1
        assert summary['stale'] == 1
        assert summary['broken'] == 1
        assert summary['broken_percentage'] == 25.0
        assert report['alert']
        assert [b['id'] for b in report['broken_links']] == [1]

    def test_is_stale(self):
        assert is_stale(make_external(1, 1, "https://a.example.com"), 30, NOW)
        fresh = make_external(2, 1, "https://b.example.com", last_verified_at=NOW - timedelta(days=1))
        assert not is_stale(fresh, 30, NOW)
