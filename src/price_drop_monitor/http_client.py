from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from urllib.parse import urlparse

import requests
from requests import Response
from requests.adapters import HTTPAdapter

from .resilience import RETAILER_BREAKER, CircuitBreaker, CircuitBreakerRegistry


logger = logging.getLogger(__name__)

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 13_6) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
]

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8"
JSON_ACCEPT = "application/json"

BASE_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

MAX_RETRY_AFTER_SECONDS = 5.0

# Cloudflare beacons also live under /cdn-cgi/, so that path alone proves nothing.
_CDN_CHALLENGE_MARKERS = ("challenge-platform", "cf-chl", "__cf_chl", "jschl", "turnstile")
_CHALLENGE_PHRASE_PAIRS = (
    ("just a moment", "checking your browser"),
    ("attention required", "cloudflare"),
)
_CHALLENGE_MARKERS = ("px-captcha", "_incapsula_resource")


def is_transient_status(status_code: int) -> bool:
    return status_code in (408, 425, 429) or 500 <= status_code <= 599


def looks_like_bot_challenge(body: str | None) -> bool:
    t = (body or "").lower()
    if "/cdn-cgi/" in t and any(m in t for m in _CDN_CHALLENGE_MARKERS):
        return True
    if any(a in t and b in t for a, b in _CHALLENGE_PHRASE_PAIRS):
        return True
    return any(m in t for m in _CHALLENGE_MARKERS)


def _retry_after(resp: Response) -> float | None:
    raw = (resp.headers or {}).get("Retry-After")
    try:
        return float(raw) if raw else None
    except (TypeError, ValueError):
        return None


def _backoff_delay(attempt: int, retry_after: float | None = None) -> float:
    if retry_after is not None:
        return min(MAX_RETRY_AFTER_SECONDS, max(0.0, retry_after))
    return min(2.5, 0.35 * attempt) + random.random() * 0.15


@dataclass(frozen=True)
class FetchResult:
    url: str
    status_code: int | None
    ok: bool
    text: str | None
    error: str | None
    elapsed_ms: int


class HttpClient:
    """GET client for retailer pages and product JSON endpoints.

    A non-2xx answer is a normal result with ``ok=False``. Transient statuses and
    transport errors are retried up to ``max_retries`` attempts in total. A 2xx
    page that is really a bot challenge is reported as blocked.

    With a breaker registry, each host gets a ``retailer:<host>`` breaker. A host
    that keeps timing out or answering 5xx is short-circuited until it cools down.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float,
        proxy_url: str | None = None,
        user_agents: list[str] | None = None,
        max_retries: int = 2,
        breakers: CircuitBreakerRegistry | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_retries)
        self._proxies = {"http": proxy_url, "https": proxy_url} if proxy_url else None
        self._user_agents = list(user_agents or DEFAULT_USER_AGENTS)
        self._local = threading.local()
        self._breakers = breakers

    def _session(self) -> requests.Session:
        # requests.Session is not thread-safe; one per worker thread.
        sess = getattr(self._local, "session", None)
        if sess is None:
            sess = requests.Session()
            sess.headers.update(BASE_HEADERS)
            adapter = HTTPAdapter(pool_connections=16, pool_maxsize=16)
            sess.mount("http://", adapter)
            sess.mount("https://", adapter)
            self._local.session = sess
        return sess

    def _get(self, url: str, accept: str) -> Response:
        return self._session().get(
            url,
            headers={"User-Agent": random.choice(self._user_agents), "Accept": accept},
            proxies=self._proxies,
            timeout=(self.timeout_seconds, self.timeout_seconds),
            allow_redirects=True,
        )

    @staticmethod
    def _to_result(resp: Response, started: float) -> FetchResult:
        body = resp.text or ""
        error: str | None = None
        if not 200 <= resp.status_code < 300:
            error = f"HTTP {resp.status_code}"
        elif looks_like_bot_challenge(body):
            error = "Blocked (bot challenge)"
        return FetchResult(
            url=str(resp.url),
            status_code=resp.status_code,
            ok=error is None,
            text=body if error is None else None,
            error=error,
            elapsed_ms=int((time.perf_counter() - started) * 1000),
        )

    def _breaker(self, host: str) -> CircuitBreaker | None:
        if self._breakers is None or not host:
            return None
        return self._breakers.get(f"retailer:{host}", RETAILER_BREAKER)

    def fetch_text(self, url: str, *, accept: str | None = None) -> FetchResult:
        host = urlparse(url).netloc.lower()
        breaker = self._breaker(host)
        if breaker is not None and not breaker.allow_request():
            err = breaker.open_error()
            logger.debug("[http] host=%s short-circuited: %s", host, err)
            return FetchResult(url=url, status_code=None, ok=False, text=None, error=str(err), elapsed_ms=0)

        result = self._fetch(url, host, accept or HTML_ACCEPT)
        if breaker is not None:
            # A 4xx still proves the host is up.
            if result.status_code is None or is_transient_status(result.status_code):
                breaker.record_failure()
            else:
                breaker.record_success()
        return result

    def _fetch(self, url: str, host: str, accept: str) -> FetchResult:
        started = time.perf_counter()
        last_error = "request not attempted"
        for attempt in range(1, self.max_attempts + 1):
            final = attempt == self.max_attempts
            try:
                resp = self._get(url, accept)
            except requests.RequestException as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.debug("[http] host=%s attempt=%d error=%s", host, attempt, last_error)
                if not final:
                    time.sleep(_backoff_delay(attempt))
                continue

            if final or not is_transient_status(resp.status_code):
                result = self._to_result(resp, started)
                if not result.ok:
                    logger.debug("[http] host=%s status=%s error=%s", host, result.status_code, result.error)
                return result

            logger.debug("[http] host=%s attempt=%d status=%s retrying", host, attempt, resp.status_code)
            time.sleep(_backoff_delay(attempt, _retry_after(resp)))

        return FetchResult(
            url=url,
            status_code=None,
            ok=False,
            text=None,
            error=last_error,
            elapsed_ms=int((time.perf_counter() - started) * 1000),
        )
