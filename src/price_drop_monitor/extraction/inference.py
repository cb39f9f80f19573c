from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import requests

from ..errors import InferenceError, InferenceUnavailableError
from ..resilience import CircuitBreaker, RetryPolicy, retry_call


logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
MAX_RETRY_DELAY_SECONDS = 30.0


@dataclass(frozen=True)
class GeminiConfig:
    api_key: str
    model: str = "gemini-1.5-flash"
    timeout_seconds: float = 30.0
    max_retries: int = 2
    base_delay_seconds: float = 1.0


def _parse_retry_after_seconds(resp: requests.Response) -> float | None:
    hdr = resp.headers.get("Retry-After")
    if not hdr:
        return None
    try:
        return float(hdr)
    except ValueError:
        return None


def _response_text(payload: Any) -> str:
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        raise InferenceError("Gemini response had no candidates") from None
    text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
    if not text.strip():
        raise InferenceError("Gemini response was empty")
    return text


class GeminiClient:
    """Minimal ``generateContent`` client: one prompt in, the model's text out.

    429, 5xx and transport errors are retried with backoff (Retry-After wins when
    present). With a breaker, repeated outages short-circuit further calls with
    ``CircuitOpenError``.
    """

    def __init__(
        self,
        cfg: GeminiConfig,
        *,
        session: requests.Session | None = None,
        breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._cfg = cfg
        self._session = session or requests.Session()
        self._breaker = breaker
        self._sleep = sleep
        self._policy = RetryPolicy(
            max_retries=max(0, cfg.max_retries),
            initial_delay_seconds=cfg.base_delay_seconds,
            max_delay_seconds=MAX_RETRY_DELAY_SECONDS,
        )

    @property
    def model(self) -> str:
        return self._cfg.model

    def _post_once(self, url: str, body: dict[str, Any]) -> str:
        cfg = self._cfg
        try:
            resp = self._session.post(
                url,
                headers={"x-goog-api-key": cfg.api_key, "Content-Type": "application/json"},
                json=body,
                timeout=(cfg.timeout_seconds, cfg.timeout_seconds),
            )
        except requests.RequestException as e:
            raise InferenceUnavailableError(f"Gemini request failed: {type(e).__name__}: {e}") from e

        if resp.status_code == 429 or 500 <= resp.status_code <= 599:
            raise InferenceUnavailableError(
                f"Gemini unavailable: HTTP {resp.status_code}",
                retry_after_seconds=_parse_retry_after_seconds(resp),
            )

        if resp.status_code >= 400:
            body_text = (resp.text or "").strip().replace("\n", " ")
            if len(body_text) > 300:
                body_text = body_text[:300] + "..."
            raise InferenceError(f"Gemini request rejected: HTTP {resp.status_code} {body_text}")

        try:
            payload = resp.json()
        except ValueError:
            raise InferenceError("Gemini returned a non-JSON envelope") from None
        return _response_text(payload)

    def _generate_with_retry(self, prompt: str) -> str:
        logger.debug("[gemini] model=%s prompt_chars=%d", self._cfg.model, len(prompt))
        url = f"{GEMINI_API_BASE}/models/{self._cfg.model}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0, "responseMimeType": "application/json"},
        }
        return retry_call(
            lambda: self._post_once(url, body),
            label="gemini.generate",
            policy=self._policy,
            sleep=self._sleep,
            retry_on=(InferenceUnavailableError,),
        )

    def generate(self, prompt: str) -> str:
        breaker = self._breaker
        if breaker is None:
            return self._generate_with_retry(prompt)
        if not breaker.allow_request():
            raise breaker.open_error()
        try:
            text = self._generate_with_retry(prompt)
        except InferenceUnavailableError:
            breaker.record_failure()
            raise
        except InferenceError:
            # The endpoint answered; only outages count against the breaker.
            breaker.record_success()
            raise
        breaker.record_success()
        return text
