import enum
import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
DEFAULT_TIMEOUT = 30


class RateLimiter:
    """
    Fixed-window rate limiter (thread-safe).

    Allows up to `rate` requests per 1-second window.
    The window starts on the first request. While tokens remain, requests
    proceed immediately. When the bucket is empty, the limiter sleeps until
    the current window expires, then opens a fresh window with a full bucket.
    """

    def __init__(self, rate: int):
        self._rate = rate
        self._tokens = rate
        self._window_start = None   # window starts lazily on first request
        self._lock = Lock()

    def acquire(self):
        with self._lock:
            now = time.monotonic()

            if self._window_start is None or (now - self._window_start) >= 1.0:
                self._window_start = now
                self._tokens = self._rate

            if self._tokens > 0:
                self._tokens -= 1
            else:
                wait = 1.0 - (now - self._window_start)
                if wait > 0:
                    time.sleep(wait)
                self._window_start = time.monotonic()
                self._tokens = self._rate - 1   # consume 1 token for this request


class Outcome(enum.Enum):
    OK = 'ok'
    NOT_FOUND = 'not_found'
    FAILED = 'failed'


@dataclass
class RemoteResult:
    outcome: Outcome
    status_code: Optional[int] = None
    data: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @property
    def not_found(self) -> bool:
        return self.outcome is Outcome.NOT_FOUND


class RemoteClient:
    """
    JSON-over-HTTP client with bounded retries.

    Network failures, HTTP 429 and HTTP 5xx are retried with exponential
    backoff (1s, 2s, ...; a numeric Retry-After wins on 429). Any other
    4xx and undecodable JSON are terminal for the call.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        auth: Optional[tuple] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        rate_limit: int = 0,
        session: Optional[requests.Session] = None,
    ):
        self._base_url = base_url
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._session = session or requests.Session()
        self._session.headers.update({'Accept': 'application/json'})
        if token:
            self._session.headers['Authorization'] = f'Bearer {token}'
        if auth:
            self._session.auth = auth
        self._rate_limiter = RateLimiter(rate_limit) if rate_limit > 0 else None

    def _build_url(self, path: str) -> str:
        if not path:
            return self._base_url
        return f"{self._base_url.rstrip('/')}/{path.lstrip('/')}"

    def request(self, method: str, path: str = '', query: Optional[dict] = None,
                body: Any = None, expect_not_found: bool = False):
        """Return the decoded response body, or None when the call failed."""
        result = self.call(method, path, query=query, body=body, expect_not_found=expect_not_found)
        return result.data if result.ok else None

    def call(self, method: str, path: str = '', query: Optional[dict] = None,
             body: Any = None, expect_not_found: bool = False) -> RemoteResult:
        url = self._build_url(path)
        backoff = 1.0

        for attempt in range(1, self._max_retries + 1):
            last_attempt = attempt == self._max_retries
            if self._rate_limiter is not None:
                self._rate_limiter.acquire()

            try:
                response = self._session.request(
                    method, url, params=query, json=body, timeout=self._timeout,
                )
            except requests.RequestException as exc:
                if last_attempt:
                    logger.error("%s %s failed after %d attempts: %s", method, url, attempt, exc)
                    return RemoteResult(Outcome.FAILED, error=str(exc))
                logger.warning(
                    "%s %s network error (attempt %d/%d): %s. Retrying in %.1fs.",
                    method, url, attempt, self._max_retries, exc, backoff,
                )
                time.sleep(backoff)
                backoff *= 2
                continue

            status = response.status_code

            if status == 429 or status >= 500:
                if last_attempt:
                    logger.error("%s %s failed with HTTP %d after %d attempts.", method, url, status, attempt)
                    return RemoteResult(Outcome.FAILED, status_code=status, error=f'HTTP {status}')
                wait = backoff
                if status == 429:
                    retry_after = self._parse_retry_after(response)
                    if retry_after is not None:
                        wait = retry_after
                logger.warning(
                    "%s %s returned HTTP %d (attempt %d/%d). Waiting %.1fs before retry.",
                    method, url, status, attempt, self._max_retries, wait,
                )
                time.sleep(wait)
                backoff *= 2
                continue

            if status >= 400:
                if status == 404 and expect_not_found:
                    logger.debug("%s %s not found.", method, url)
                else:
                    logger.error("%s %s failed with HTTP %d: %s", method, url, status, response.text[:500])
                outcome = Outcome.NOT_FOUND if status == 404 else Outcome.FAILED
                return RemoteResult(outcome, status_code=status, error=f'HTTP {status}')

            if status == 204 or not response.content:
                return RemoteResult(Outcome.OK, status_code=status, data={})

            try:
                data = response.json()
            except ValueError as exc:
                logger.error("%s %s returned invalid JSON: %s", method, url, exc)
                return RemoteResult(Outcome.FAILED, status_code=status, error=f'Invalid JSON: {exc}')

            return RemoteResult(Outcome.OK, status_code=status, data=data)

        # Not reached: the last attempt always returns.
        return RemoteResult(Outcome.FAILED, error='Retries exhausted')

    @staticmethod
    def _parse_retry_after(response: requests.Response):
        """Return float seconds from Retry-After header, or None if absent/invalid."""
        header = response.headers.get('Retry-After')
        if header is None:
            return None
        try:
            return float(header)
        except (TypeError, ValueError):
            return None
