from __future__ import annotations

import logging
from typing import Sequence

from ..config import Settings
from ..http_client import HttpClient
from ..models import ExtractionResult
from ..resilience import INFERENCE_BREAKER, CircuitBreakerRegistry
from ..stores.catalog import StoreCatalog, default_catalog
from .assisted import AssistedHtmlStrategy, InferenceClient
from .base import NONE_TAG, STRUCTURED_TAG, ExtractionContext, Strategy
from .inference import GeminiClient, GeminiConfig
from .locator import LocatorStrategy
from .structured import StructuredEndpointStrategy


logger = logging.getLogger(__name__)


class ExtractionChain:
    """Runs strategies in order until one succeeds. Never raises."""

    def __init__(self, strategies: Sequence[Strategy], catalog: StoreCatalog) -> None:
        self._strategies = list(strategies)
        self._catalog = catalog

    @property
    def catalog(self) -> StoreCatalog:
        return self._catalog

    def extract(self, url: str) -> ExtractionResult:
        try:
            ctx = ExtractionContext.for_url(url)
        except ValueError as e:
            return ExtractionResult.failure(NONE_TAG, f"Invalid URL: {e}")
        if not ctx.domain:
            return ExtractionResult.failure(NONE_TAG, f"Invalid URL: {url}")
        ctx.recipe = self._catalog.lookup(ctx.domain)

        for strategy in self._strategies:
            if not strategy.applies(ctx):
                continue
            try:
                result = strategy.attempt(ctx)
            except Exception as e:
                logger.exception("[extract] domain=%s strategy=%s crashed", ctx.domain, strategy.tag)
                result = strategy.fail(f"{type(e).__name__}: {e}")

            if result.success:
                logger.info(
                    "[extract] domain=%s strategy=%s price=%s in_stock=%s",
                    ctx.domain,
                    strategy.tag,
                    result.effective_price,
                    result.in_stock,
                )
                return result

            ctx.record_failure(strategy.tag, result.error or "unknown error")
            if strategy.tag == STRUCTURED_TAG:
                ctx.structured_failed = True

        if not ctx.errors:
            return ExtractionResult.failure(NONE_TAG, f"Unsupported store: {ctx.domain}")
        error = ctx.joined_errors()
        logger.info("[extract] domain=%s failed error=%s", ctx.domain, error)
        return ExtractionResult.failure(NONE_TAG, error)


INFERENCE_BREAKER_NAME = "inference.gemini"


def build_inference_client(
    settings: Settings, breakers: CircuitBreakerRegistry | None = None
) -> GeminiClient | None:
    if not settings.gemini_api_key:
        return None
    return GeminiClient(
        GeminiConfig(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            timeout_seconds=settings.ai_timeout_seconds,
        ),
        breaker=breakers.get(INFERENCE_BREAKER_NAME, INFERENCE_BREAKER) if breakers is not None else None,
    )


def build_default_chain(
    settings: Settings,
    *,
    client: HttpClient | None = None,
    catalog: StoreCatalog | None = None,
    inference: InferenceClient | None = None,
    breakers: CircuitBreakerRegistry | None = None,
) -> ExtractionChain:
    """Wire the three strategies. Network calls share ``breakers`` (a fresh registry if omitted)."""
    breakers = breakers or CircuitBreakerRegistry()
    client = client or HttpClient(
        timeout_seconds=settings.http_timeout_seconds,
        proxy_url=settings.proxy_url,
        max_retries=settings.http_max_retries,
        breakers=breakers,
    )
    catalog = catalog or default_catalog()
    if inference is None:
        inference = build_inference_client(settings, breakers)
    return ExtractionChain(
        [
            StructuredEndpointStrategy(client),
            LocatorStrategy(client, catalog),
            AssistedHtmlStrategy(client, inference, max_chars=settings.ai_html_max_chars),
        ],
        catalog,
    )
