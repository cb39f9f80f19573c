from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Comment

from ..errors import CircuitOpenError, InferenceError
from ..http_client import HttpClient
from ..models import ExtractionResult
from ..stores.common import coerce_price, compact_ws
from .base import ASSISTED_TAG, ExtractionContext, Strategy


logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 30_000

PROMPT_TEMPLATE = """You are a product data extractor. Extract the following information from this e-commerce product page HTML:

REQUIRED FIELDS:
- Product title/name
- Current price (the price the user would pay now)
- Original/retail price (if item is on sale, otherwise same as current price)

OPTIONAL FIELDS:
- Brand name
- Product image URL (the main product image)

INSTRUCTIONS:
1. Return ONLY a valid JSON object, no markdown formatting, no explanations
2. Use these exact field names: title, brand, currentPrice, originalPrice, imageUrl
3. For prices: extract ONLY the number (e.g., 49.99, not "$49.99" or "49.99 USD")
4. If a field is not found, use null
5. If currentPrice < originalPrice, the item is on sale
6. If you cannot find any price, return {{"error": "No price found"}}

URL: {url}
Site: {site}

HTML:
{html}

JSON Response:"""


class InferenceClient(Protocol):
    def generate(self, prompt: str) -> str: ...


_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def strip_html_for_model(html: str, *, max_chars: int = DEFAULT_MAX_CHARS) -> str:
    soup = BeautifulSoup(html or "", "lxml")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    for c in soup.find_all(string=lambda s: isinstance(s, Comment)):
        c.extract()
    cleaned = compact_ws(str(soup))
    return cleaned[:max_chars].strip()


def parse_model_reply(text: str) -> dict[str, Any] | None:
    """Strictly parse the reply as a single JSON object (surrounding code fences allowed)."""
    raw = _FENCE_RE.sub("", (text or "").strip()).strip()
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _http_url(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    v = value.strip()
    if v.startswith("//"):
        v = "https:" + v
    p = urlparse(v)
    if p.scheme not in ("http", "https") or not p.netloc:
        return None
    return v


def _text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return compact_ws(value) or None


def result_from_reply(data: dict[str, Any]) -> ExtractionResult:
    if data.get("error"):
        return ExtractionResult.failure(ASSISTED_TAG, f"Model could not extract data: {data['error']}")

    title = _text(data.get("title")) or _text(data.get("name"))
    current = coerce_price(data.get("currentPrice"))
    original = coerce_price(data.get("originalPrice"))

    if current is not None and original is not None and current < original:
        retail, sale = original, current
    else:
        retail, sale = (current if current is not None else original), None

    if not title or retail is None:
        return ExtractionResult.failure(ASSISTED_TAG, "Model extracted incomplete data (missing title or price)")

    image = _http_url(data.get("imageUrl"))
    return ExtractionResult(
        success=True,
        source=ASSISTED_TAG,
        title=title,
        brand=_text(data.get("brand")),
        model=title,
        retail_price=retail,
        sale_price=sale,
        images=[image] if image else [],
    )


class AssistedHtmlStrategy(Strategy):
    """Last resort: ask a language model to read the page.

    Only runs on a page the retailer actually served (2xx); never after a
    plain fetch failure.
    """

    tag = ASSISTED_TAG

    def __init__(
        self,
        client: HttpClient,
        inference: InferenceClient | None,
        *,
        max_chars: int = DEFAULT_MAX_CHARS,
    ) -> None:
        self._client = client
        self._inference = inference
        self._max_chars = max_chars

    def applies(self, ctx: ExtractionContext) -> bool:
        if self._inference is None:
            return False
        if ctx.locator_parse_failed and ctx.page_html:
            return True
        return ctx.structured_failed

    def attempt(self, ctx: ExtractionContext) -> ExtractionResult:
        assert self._inference is not None
        html = ctx.page_html if ctx.locator_parse_failed else None
        if html is None:
            fetch = self._client.fetch_text(ctx.url)
            ctx.page_status = fetch.status_code
            if not fetch.ok:
                return self.fail(f"Failed to fetch product page: {fetch.error or fetch.status_code}")
            html = fetch.text or ""

        site = ctx.recipe.name if ctx.recipe else ctx.domain
        cleaned = strip_html_for_model(html, max_chars=self._max_chars)
        prompt = PROMPT_TEMPLATE.format(url=ctx.url, site=site, html=cleaned)
        logger.info("[assisted] domain=%s html_chars=%d", ctx.domain, len(cleaned))

        try:
            reply = self._inference.generate(prompt)
        except (InferenceError, CircuitOpenError) as e:
            return self.fail(str(e))

        data = parse_model_reply(reply)
        if data is None:
            return self.fail(f"Model returned invalid JSON: {compact_ws(reply)[:100]}")
        return result_from_reply(data)
