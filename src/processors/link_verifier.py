"""
External link verification.

Checks the liveness of external links with bounded concurrency:

- HttpTransport issues the request (HEAD, GET fallback) and applies the
  RetryPolicy to transient failures; nothing above it sleeps or retries
- HostRateLimiter spaces consecutive requests to the same host
- ExternalLinkVerifier fans checks out to a thread pool of `concurrency`
  workers and hands every result back on the calling thread, so callers
  can persist results without sharing a database session across threads
"""

import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter

from domain.graph import ExternalEdge
from domain.types import LinkVerdict, VerdictChange

DEFAULT_USER_AGENT = 'Mozilla/5.0 (compatible; LinkGraphBot/1.0; +link verification)'

# Statuses worth another attempt before the verdict is final
TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})

# Servers that refuse HEAD get a GET instead
HEAD_REJECTED_STATUSES = frozenset({405, 501})


@dataclass
class RetryPolicy:
    """
    Bounded retry with a fixed delay schedule.

    `delays[i]` is waited after failed attempt i+1; when the schedule is
    shorter than `max_attempts - 1` its last value repeats.
    """
    max_attempts: int = 3
    delays: Tuple[float, ...] = (1.0,)
    retry_statuses: FrozenSet[int] = TRANSIENT_STATUSES
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def fixed(cls, max_attempts: int = 3, delay: float = 1.0, sleep: Callable[[float], None] = time.sleep) -> 'RetryPolicy':
        return cls(max_attempts=max_attempts, delays=(delay,), sleep=sleep)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        if not self.delays:
            return 0.0
        return self.delays[min(attempt, len(self.delays)) - 1]

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def wait(self, attempt: int):
        delay = self.delay_for(attempt)
        if delay > 0:
            self.sleep(delay)


@dataclass
class FetchResult:
    """Final outcome of requesting one URL (after retries)."""
    status_code: Optional[int] = None
    error: Optional[str] = None
    response_time_ms: Optional[int] = None
    final_url: Optional[str] = None
    attempts: int = 0


class HttpTransport:
    """requests-based transport applying a RetryPolicy to transient failures."""

    def __init__(
        self,
        timeout: float = 10.0,
        retry_policy: Optional[RetryPolicy] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
        pool_size: int = 10
    ):
        self.timeout = timeout
        self.pool_size = pool_size
        self.retry_policy = retry_policy or RetryPolicy()
        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': user_agent})
        if session is None:
            adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
            self.session.mount('http://', adapter)
            self.session.mount('https://', adapter)

    def _request(self, url: str) -> requests.Response:
        response = self.session.head(url, timeout=self.timeout, allow_redirects=True)
        if response.status_code in HEAD_REJECTED_STATUSES:
            response.close()
            response = self.session.get(url, timeout=self.timeout, allow_redirects=True, stream=True)
        response.close()
        return response

    def fetch(self, url: str) -> FetchResult:
        """
        Request a URL, retrying timeouts, connection errors and transient statuses.

        Never raises for network failures: the error is returned in the result.
        """
        policy = self.retry_policy
        attempt = 0
        while True:
            attempt += 1
            start = time.monotonic()
            try:
                response = self._request(url)
            except requests.Timeout:
                result = FetchResult(error=f"timeout after {self.timeout}s", attempts=attempt)
                retryable = True
            except requests.ConnectionError as e:
                result = FetchResult(error=f"connection error: {e}", attempts=attempt)
                retryable = True
            except requests.RequestException as e:
                # Invalid URL, too many redirects...: retrying will not help
                result = FetchResult(error=f"{type(e).__name__}: {e}", attempts=attempt)
                retryable = False
            else:
                result = FetchResult(
                    status_code=response.status_code,
                    final_url=response.url,
                    attempts=attempt,
                )
                retryable = response.status_code in policy.retry_statuses

            result.response_time_ms = int((time.monotonic() - start) * 1000)

            if not retryable or not policy.should_retry(attempt):
                return result
            policy.wait(attempt)


class HostRateLimiter:
    """Enforces a minimum interval between requests to the same host."""

    def __init__(
        self,
        min_interval: float = 0.2,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.min_interval = min_interval
        self.clock = clock
        self.sleep = sleep
        self._next_slot: Dict[str, float] = {}
        self._lock = threading.Lock()

    def acquire(self, host: str) -> float:
        """
        Reserve the next request slot for a host and wait for it.

        Returns:
            Seconds waited
        """
        if self.min_interval <= 0:
            return 0.0
        with self._lock:
            now = self.clock()
            slot = max(now, self._next_slot.get(host, now))
            self._next_slot[host] = slot + self.min_interval
        wait = slot - now
        if wait > 0:
            self.sleep(wait)
        return wait


@dataclass
class LinkCheckResult:
    link_id: Optional[int]
    article_id: int
    url: str
    verdict: LinkVerdict
    change: VerdictChange
    status_code: Optional[int] = None
    error: Optional[str] = None
    response_time_ms: Optional[int] = None
    attempts: int = 0
    checked_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        return {
            'link_id': self.link_id,
            'article_id': self.article_id,
            'url': self.url,
            'verdict': self.verdict.value,
            'change': self.change.value,
            'status_code': self.status_code,
            'error': self.error,
            'response_time_ms': self.response_time_ms,
            'attempts': self.attempts,
            'checked_at': self.checked_at.isoformat() if self.checked_at else None,
        }


@dataclass
class VerificationSummary:
    total: int = 0
    valid: int = 0
    broken: int = 0
    newly_broken: int = 0
    still_broken: int = 0
    recovered: int = 0
    errored: int = 0
    unverified: int = 0
    record_errors: int = 0
    cancelled: bool = False
    duration_seconds: float = 0.0
    alert_threshold: float = 10.0
    results: List[LinkCheckResult] = field(default_factory=list)

    @property
    def checked(self) -> int:
        return self.valid + self.broken

    @property
    def broken_percentage(self) -> float:
        if self.checked == 0:
            return 0.0
        return round(self.broken / self.checked * 100, 2)

    @property
    def alert(self) -> bool:
        return self.broken_percentage > self.alert_threshold

    def add(self, result: LinkCheckResult):
        self.results.append(result)
        if result.verdict == LinkVerdict.VALID:
            self.valid += 1
        elif result.verdict == LinkVerdict.BROKEN:
            self.broken += 1
        else:
            self.unverified += 1
        if result.error:
            self.errored += 1
        if result.change == VerdictChange.NEWLY_BROKEN:
            self.newly_broken += 1
        elif result.change == VerdictChange.STILL_BROKEN:
            self.still_broken += 1
        elif result.change == VerdictChange.RECOVERED:
            self.recovered += 1

    def to_dict(self, include_results: bool = False) -> Dict:
        data = {
            'total': self.total,
            'valid': self.valid,
            'broken': self.broken,
            'newly_broken': self.newly_broken,
            'still_broken': self.still_broken,
            'recovered': self.recovered,
            'errored': self.errored,
            'unverified': self.unverified,
            'record_errors': self.record_errors,
            'broken_percentage': self.broken_percentage,
            'alert': self.alert,
            'cancelled': self.cancelled,
            'duration_seconds': round(self.duration_seconds, 3),
        }
        if include_results:
            data['results'] = [r.to_dict() for r in self.results]
        return data


def host_of(link: ExternalEdge) -> str:
    try:
        host = urlparse(link.url).hostname
    except ValueError:
        # Malformed URL (e.g. unbalanced IPv6 brackets)
        host = None
    return (host or link.domain or '').lower()


def classify_status(status_code: Optional[int]) -> LinkVerdict:
    """2xx/3xx is valid; 4xx, 5xx or no response at all is broken."""
    if status_code is not None and 200 <= status_code < 400:
        return LinkVerdict.VALID
    return LinkVerdict.BROKEN


def verdict_change(link: ExternalEdge, verdict: LinkVerdict) -> VerdictChange:
    """Compare a new verdict with what is recorded on the link."""
    if verdict == LinkVerdict.UNVERIFIED:
        return VerdictChange.UNCHANGED
    previously_broken = link.is_broken and link.last_verified_at is not None
    if verdict == LinkVerdict.BROKEN:
        return VerdictChange.STILL_BROKEN if previously_broken else VerdictChange.NEWLY_BROKEN
    return VerdictChange.RECOVERED if link.is_broken else VerdictChange.STILL_VALID


def apply_result(link: ExternalEdge, result: LinkCheckResult) -> ExternalEdge:
    """Record a check on the link (unverified results leave it untouched)."""
    if result.verdict == LinkVerdict.UNVERIFIED:
        return link
    link.is_broken = result.verdict == LinkVerdict.BROKEN
    link.last_verified_at = result.checked_at
    link.last_status_code = result.status_code
    link.last_response_time_ms = result.response_time_ms
    link.verification_error = result.error
    return link


class ExternalLinkVerifier:
    """Verify a batch of external links with bounded concurrency."""

    def __init__(
        self,
        transport,
        concurrency: int = 10,
        rate_limiter: Optional[HostRateLimiter] = None,
        broken_alert_percent: float = 10.0,
        now: Callable[[], datetime] = datetime.utcnow
    ):
        """
        Args:
            transport: Object with `fetch(url) -> FetchResult` (HttpTransport)
            concurrency: Maximum number of checks in flight
            rate_limiter: Per-host throttle (default 0.2s between requests)
            broken_alert_percent: Broken share above which the summary alerts
            now: Clock used for `last_verified_at`
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.transport = transport
        self.concurrency = concurrency
        self.rate_limiter = rate_limiter or HostRateLimiter()
        self.broken_alert_percent = broken_alert_percent
        self.now = now

    def check(self, link: ExternalEdge, cancel_event: Optional[threading.Event] = None) -> LinkCheckResult:
        """Check one link; a cancelled check is reported as unverified."""
        if cancel_event is not None and cancel_event.is_set():
            return LinkCheckResult(
                link_id=link.id,
                article_id=link.article_id,
                url=link.url,
                verdict=LinkVerdict.UNVERIFIED,
                change=VerdictChange.UNCHANGED,
            )

        try:
            self.rate_limiter.acquire(host_of(link))
            fetched = self.transport.fetch(link.url)
        except Exception as e:
            # Malformed URL or transport failure: recorded on the link as broken
            fetched = FetchResult(error=f"{type(e).__name__}: {e}", attempts=1)
        verdict = classify_status(fetched.status_code)

        return LinkCheckResult(
            link_id=link.id,
            article_id=link.article_id,
            url=link.url,
            verdict=verdict,
            change=verdict_change(link, verdict),
            status_code=fetched.status_code,
            error=fetched.error,
            response_time_ms=fetched.response_time_ms,
            attempts=fetched.attempts,
            checked_at=self.now(),
        )

    def _failed(self, link: ExternalEdge, error: str) -> LinkCheckResult:
        return LinkCheckResult(
            link_id=link.id,
            article_id=link.article_id,
            url=link.url,
            verdict=LinkVerdict.BROKEN,
            change=verdict_change(link, LinkVerdict.BROKEN),
            error=error,
            checked_at=self.now(),
        )

    def verify(
        self,
        links: Iterable[ExternalEdge],
        progress_callback: Optional[Callable[[int, int], None]] = None,
        cancel_event: Optional[threading.Event] = None,
        on_result: Optional[Callable[[ExternalEdge, LinkCheckResult], None]] = None
    ) -> VerificationSummary:
        """
        Verify a batch of links.

        Args:
            links: External links to check
            progress_callback: Called as (processed, total) after each link
            cancel_event: When set, pending checks are reported as unverified
            on_result: Called on the calling thread for every result, in
                completion order (used to persist the new state). A failing
                call is counted in `record_errors` and the batch goes on

        Returns:
            VerificationSummary with per-link results ordered by link id
        """
        start_time = time.time()
        links = list(links)
        summary = VerificationSummary(total=len(links), alert_threshold=self.broken_alert_percent)
        if not links:
            return summary

        processed = 0
        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            futures = {
                executor.submit(self.check, link, cancel_event): link
                for link in links
            }
            for future in as_completed(futures):
                link = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    result = self._failed(link, f"{type(e).__name__}: {e}")
                summary.add(result)
                if on_result is not None:
                    try:
                        on_result(link, result)
                    except Exception as e:
                        summary.record_errors += 1
                        print(f"Warning: Failed to record result for {link.url}: {e}", file=sys.stderr)
                processed += 1
                if progress_callback:
                    progress_callback(processed, len(links))

        summary.results.sort(key=lambda r: (r.link_id is None, r.link_id or 0, r.url))
        summary.cancelled = cancel_event is not None and cancel_event.is_set()
        summary.duration_seconds = time.time() - start_time
        return summary


def is_stale(link: ExternalEdge, stale_days: int, now: Optional[datetime] = None) -> bool:
    """Never verified, or last verified more than `stale_days` ago."""
    if link.last_verified_at is None:
        return True
    now = now or datetime.utcnow()
    return link.last_verified_at < now - timedelta(days=stale_days)


def verification_report(
    links: Iterable[ExternalEdge],
    stale_days: int = 30,
    alert_percent: float = 10.0,
    now: Optional[datetime] = None
) -> Dict:
    """Verification health of a set of external links."""
    links = list(links)
    now = now or datetime.utcnow()
    total = len(links)
    broken = [link for link in links if link.is_broken]
    never_verified = sum(1 for link in links if link.last_verified_at is None)
    stale = sum(
        1 for link in links
        if link.last_verified_at is not None and is_stale(link, stale_days, now)
    )
    broken_percentage = round(len(broken) / total * 100, 2) if total else 0.0

    return {
        'summary': {
            'total': total,
            'verified': total - never_verified,
            'never_verified': never_verified,
            'stale': stale,
            'broken': len(broken),
            'broken_percentage': broken_percentage,
        },
        'alert': broken_percentage > alert_percent,
        'broken_links': [
            {
                'id': link.id,
                'article_id': link.article_id,
                'url': link.url,
                'domain': link.domain,
                'status_code': link.last_status_code,
                'error': link.verification_error,
                'last_verified_at': link.last_verified_at.isoformat() if link.last_verified_at else None,
            }
            for link in sorted(broken, key=lambda l: (l.domain or '', l.id or 0))
        ],
        'generated_at': now.isoformat(),
    }
