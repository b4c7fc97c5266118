"""
Transport Module - HTTP requests with retries, backoff and a request budget.
===========================================================================

Every request to the source goes through ``Transport.send``:
- Spacing between request starts (shared by all workers)
- Optional hard cap on requests per run
- Exponential backoff for network errors and 5xx responses
- Longer, hinted backoff for 429 responses (honors Retry-After)
- Classification of responses into the error taxonomy

Authentication lives one layer up (see ``session``); this module only
reports ``AuthExpired`` and never retries it.
"""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

import requests
from bs4 import BeautifulSoup
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from gradescope_client.shared.config import Settings, get_settings
from gradescope_client.shared.errors import (
    AuthExpired,
    FatalHttpError,
    RateLimited,
    TransientError,
)
from gradescope_client.shared.logging import get_logger
from gradescope_client.shared.utils import path_matches

if TYPE_CHECKING:
    from gradescope_client.scraping.session import Session

logger = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Data Classes
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class GsRequest:
    """A request against the source application, addressed by path."""

    path: str
    method: str = "GET"
    params: dict[str, Any] = field(default_factory=dict)
    data: Optional[dict[str, Any]] = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    follow_redirects: bool = True
    # The login page itself looks like an expired session; skip the check there
    check_expiry: bool = True
    # False sends exactly once, for requests that must not be repeated
    retryable: bool = True

    @classmethod
    def html(cls, path: str, params: Optional[dict[str, Any]] = None) -> "GsRequest":
        """GET an HTML page."""
        return cls(path=path, params=dict(params or {}), headers={"Accept": "text/html"})

    def with_params(self, **params: Any) -> "GsRequest":
        """Copy of this request with extra query parameters."""
        merged = dict(self.params)
        merged.update(params)
        return GsRequest(
            path=self.path,
            method=self.method,
            params=merged,
            data=self.data,
            headers=dict(self.headers),
            timeout=self.timeout,
            follow_redirects=self.follow_redirects,
            check_expiry=self.check_expiry,
            retryable=self.retryable,
        )

    def describe(self) -> str:
        query = "&".join(f"{k}={v}" for k, v in sorted(self.params.items()))
        return f"{self.method} {self.path}{'?' + query if query else ''}"


@dataclass
class TransportStats:
    """Statistics for one client run."""

    total_requests: int = 0
    successful: int = 0
    retries: int = 0
    rate_limited: int = 0
    failed: int = 0
    total_bytes: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success_rate(self) -> float:
        """Share of issued requests that returned a usable response."""
        if self.total_requests == 0:
            return 1.0
        return self.successful / self.total_requests


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Parse a Retry-After header (delta seconds or HTTP date) into seconds.

    Returns:
        Non-negative seconds to wait, or None if the header is absent or unreadable
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


# ─────────────────────────────────────────────────────────────────────────────
# Transport Class
# ─────────────────────────────────────────────────────────────────────────────


class Transport:
    """
    Issues requests for an authenticated session with retries and spacing.

    Example:
        >>> transport = Transport()
        >>> response = transport.send(GsRequest.html("/account"), session)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_factory: Optional[Callable[[], requests.Session]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the transport.

        Args:
            settings: Settings to use (defaults to the global settings)
            http_factory: Builds the underlying HTTP session (tests inject fakes)
            sleep: Sleep function used for spacing and backoff
        """
        settings = settings or get_settings()
        config = settings.transport

        self.base_url = settings.source.base_url
        self.timeout = config.timeout
        self.max_retries = max(1, config.max_retries)
        self.rate_limit = config.rate_limit
        self.rate_limit_backoff = config.rate_limit_backoff
        self.max_retry_after = config.max_retry_after
        self.max_requests = config.max_requests
        self.user_agent = config.user_agent

        self.login_paths = list(settings.session.login_paths)
        self.expired_markers = list(settings.session.expired_markers)

        self._exponential = wait_exponential(min=config.retry_min_wait, max=config.retry_max_wait)
        self._http_factory = http_factory
        self._sleep = sleep

        # Request budget state, shared by all workers
        self._budget_lock = threading.Lock()
        self._next_slot = 0.0
        self._issued = 0

        self._stats_lock = threading.Lock()
        self.stats = TransportStats()

        logger.debug(
            f"Transport initialized: base_url={self.base_url}, "
            f"rate_limit={self.rate_limit}s, timeout={self.timeout}s, retries={self.max_retries}"
        )

    def new_http_session(self) -> requests.Session:
        """Create the cookie-carrying HTTP session for one authenticated identity."""
        if self._http_factory is not None:
            return self._http_factory()

        http = requests.Session()
        http.headers.update(
            {
                "User-Agent": self.user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.5",
                "Accept-Encoding": "gzip, deflate",
                "Connection": "keep-alive",
            }
        )
        return http

    def url_for(self, path: str) -> str:
        """Absolute URL for a source path."""
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}{path}"

    # ─────────────────────────────────────────────────────────────────────────
    # Budget and Backoff
    # ─────────────────────────────────────────────────────────────────────────

    def _acquire_slot(self, request: GsRequest) -> None:
        """Reserve the next request slot, sleeping until it comes up."""
        with self._budget_lock:
            if self.max_requests and self._issued >= self.max_requests:
                raise FatalHttpError(
                    f"request budget of {self.max_requests} exhausted",
                    url=self.url_for(request.path),
                )
            self._issued += 1
            now = time.monotonic()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.rate_limit

        delay = slot - now
        if delay > 0:
            logger.debug(f"Rate limiting: sleeping {delay:.2f}s before {request.describe()}")
            self._sleep(delay)

    def _compute_wait(self, retry_state: RetryCallState) -> float:
        """Backoff before the next attempt; 429s wait longer than other failures."""
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(error, RateLimited):
            hinted = error.retry_after if error.retry_after is not None else 0.0
            return min(max(hinted, self.rate_limit_backoff), self.max_retry_after)
        return self._exponential(retry_state)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        with self._stats_lock:
            self.stats.retries += 1
            if isinstance(error, RateLimited):
                self.stats.rate_limited += 1
        wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Retry {retry_state.attempt_number}/{self.max_retries} in {wait:.1f}s: {error}"
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Sending
    # ─────────────────────────────────────────────────────────────────────────

    def send(self, request: GsRequest, session: "Session") -> requests.Response:
        """
        Send a request, retrying transient failures.

        Args:
            request: Request to send
            session: Authenticated session whose cookies are used

        Returns:
            The successful response

        Raises:
            TransientError: Retries exhausted on network errors or 5xx
            RateLimited: Retries exhausted while throttled
            AuthExpired: The session is no longer accepted
            FatalHttpError: Non-retryable HTTP failure
        """

        @retry(
            retry=retry_if_exception_type(TransientError),
            stop=stop_after_attempt(self.max_retries if request.retryable else 1),
            wait=self._compute_wait,
            sleep=self._sleep,
            before_sleep=self._before_sleep,
            reraise=True,
        )
        def _send_with_retry() -> requests.Response:
            return self._send_once(request, session)

        try:
            return _send_with_retry()
        except (TransientError, FatalHttpError) as e:
            with self._stats_lock:
                self.stats.failed += 1
            logger.error(f"Request failed: {request.describe()}: {e}")
            raise

    def _send_once(self, request: GsRequest, session: "Session") -> requests.Response:
        self._acquire_slot(request)
        url = self.url_for(request.path)
        logger.debug(f"Fetching: {request.describe()}")

        with self._stats_lock:
            self.stats.total_requests += 1

        try:
            response = session.http.request(
                request.method,
                url,
                params=request.params or None,
                data=request.data,
                headers=request.headers or None,
                timeout=request.timeout or self.timeout,
                allow_redirects=request.follow_redirects,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientError(f"network error: {e}", url=url) from e
        except requests.RequestException as e:
            raise FatalHttpError(f"request could not be sent: {e}", url=url) from e

        self._classify(request, response, url)

        with self._stats_lock:
            self.stats.successful += 1
            self.stats.total_bytes += len(response.content or b"")
        return response

    def _classify(self, request: GsRequest, response: requests.Response, url: str) -> None:
        """Raise the matching error for a response that is not usable."""
        status = response.status_code

        if status == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            raise RateLimited(f"throttled (HTTP 429) on {request.describe()}", url=url, retry_after=retry_after)

        if status >= 500:
            raise TransientError(f"server error (HTTP {status}) on {request.describe()}", url=url)

        if status == 401:
            raise AuthExpired(f"unauthorized (HTTP 401) on {request.describe()}", url=url)

        if request.check_expiry and self._redirected_to_login(response):
            raise AuthExpired(f"redirected to login from {request.describe()}", url=url)

        if 300 <= status < 400:
            # Only requests that opted out of redirects see a 3xx here
            return

        if status >= 400:
            raise FatalHttpError(
                f"HTTP {status} on {request.describe()}", url=url, status_code=status
            )

        if request.check_expiry and self._looks_like_login_page(response):
            raise AuthExpired(f"login page served for {request.describe()}", url=url)

    def _redirected_to_login(self, response: requests.Response) -> bool:
        if response.history and response.url and path_matches(response.url, self.login_paths):
            return True
        location = response.headers.get("Location")
        if 300 <= response.status_code < 400 and location:
            return path_matches(self.url_for(location), self.login_paths)
        return False

    def _looks_like_login_page(self, response: requests.Response) -> bool:
        content_type = response.headers.get("Content-Type", "")
        if "html" not in content_type or not self.expired_markers:
            return False
        soup = BeautifulSoup(response.text, "lxml")
        return any(soup.select_one(marker) is not None for marker in self.expired_markers)

    def get_stats(self) -> TransportStats:
        """Get transport statistics."""
        return self.stats
