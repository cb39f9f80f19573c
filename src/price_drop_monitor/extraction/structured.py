from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import urlparse, urlunparse

from bs4 import BeautifulSoup

from ..http_client import JSON_ACCEPT, HttpClient
from ..models import ExtractionResult
from ..stores.common import coerce_price, compact_ws
from .base import STRUCTURED_TAG, ExtractionContext, Strategy


logger = logging.getLogger(__name__)

MAX_IMAGES = 5

_CATEGORY_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("shoes", ("shoe", "sneaker", "boot", "sandal", "slipper", "footwear")),
    ("tops", ("shirt", "blouse", "top", "sweater", "hoodie", "sweatshirt", "tee", "tank", "bra", "bralette")),
    ("bottoms", ("pant", "jean", "short", "skirt", "trouser", "legging", "jogger", "sweatpant")),
    ("outerwear", ("jacket", "coat", "blazer", "parka", "windbreaker")),
    ("accessories", ("bag", "backpack", "hat", "cap", "accessory", "belt", "watch")),
]
DEFAULT_CATEGORY = "accessories"


def guess_category(title: str, product_type: str = "", tags: list[str] | None = None) -> str:
    blob = " ".join([title or "", product_type or "", " ".join(tags or [])]).lower()
    for category, words in _CATEGORY_KEYWORDS:
        if any(w in blob for w in words):
            return category
    return DEFAULT_CATEGORY


def structured_endpoint_url(url: str) -> str:
    p = urlparse(url)
    path = p.path.rstrip("/")
    if not path.endswith(".json"):
        path += ".json"
    return urlunparse((p.scheme, p.netloc, path, "", "", ""))


def _extract_json_payload(text: str) -> Any | None:
    raw = (text or "").strip()
    if not raw:
        return None

    # Some storefronts wrap the JSON in a single <pre> when the Accept header is ignored.
    if raw.startswith("<") and "<pre" in raw.lower():
        pre = BeautifulSoup(raw, "lxml").find("pre")
        raw = (pre.get_text() if pre else raw).strip()

    try:
        return json.loads(raw)
    except ValueError:
        return None


def _split_tags(raw: Any) -> list[str]:
    if isinstance(raw, list):
        return [str(t) for t in raw if t]
    if isinstance(raw, str):
        return [t.strip() for t in raw.split(",") if t.strip()]
    return []


def _colorway(variant: dict[str, Any]) -> str | None:
    for key in ("option1", "option2", "option3"):
        v = variant.get(key)
        if isinstance(v, str) and v.strip() and v.strip() != "Default Title":
            return v.strip()
    title = variant.get("title")
    if isinstance(title, str) and title.strip() and title.strip() != "Default Title":
        return title.strip()
    return None


def _images(product: dict[str, Any]) -> list[str]:
    out: list[str] = []
    for img in product.get("images") or []:
        src = img.get("src") if isinstance(img, dict) else img
        if not isinstance(src, str) or not src.strip():
            continue
        src = src.strip()
        if src.startswith("//"):
            src = "https:" + src
        elif src.startswith("http://"):
            src = "https://" + src[len("http://"):]
        if not src.startswith("https://") or src in out:
            continue
        out.append(src)
        if len(out) >= MAX_IMAGES:
            break
    return out


def parse_product_payload(payload: Any) -> ExtractionResult:
    """Map a storefront ``{"product": {...}}`` document onto an extraction result."""
    product = payload.get("product") if isinstance(payload, dict) else None
    if not isinstance(product, dict):
        return ExtractionResult.failure(STRUCTURED_TAG, "No product data found in JSON response")

    title = compact_ws(str(product.get("title") or ""))
    vendor = compact_ws(str(product.get("vendor") or ""))
    variants = [v for v in (product.get("variants") or []) if isinstance(v, dict)]
    first = variants[0] if variants else {}

    price = coerce_price(first.get("price"))
    if price is None:
        return ExtractionResult.failure(STRUCTURED_TAG, "Product price not found or invalid")
    compare_at = coerce_price(first.get("compare_at_price"))
    if compare_at is not None and compare_at > price:
        retail, sale = compare_at, price
    else:
        retail, sale = price, None

    sku = compact_ws(str(first.get("sku") or ""))
    return ExtractionResult(
        success=True,
        source=STRUCTURED_TAG,
        title=title or None,
        brand=vendor or (title.split(" ")[0] if title else None),
        model=title or None,
        colorway=_colorway(first),
        sku=sku or None,
        retail_price=retail,
        sale_price=sale,
        images=_images(product),
        in_stock=any(v.get("available", True) is not False for v in variants) if variants else True,
        category=guess_category(title, str(product.get("product_type") or ""), _split_tags(product.get("tags"))),
    )


class StructuredEndpointStrategy(Strategy):
    """Reads the storefront's machine-readable product document (``<product url>.json``)."""

    tag = STRUCTURED_TAG

    def __init__(self, client: HttpClient) -> None:
        self._client = client

    def applies(self, ctx: ExtractionContext) -> bool:
        p = urlparse(ctx.url)
        host = p.netloc.lower().split(":")[0]
        return "/products/" in p.path or host.endswith(".myshopify.com")

    def attempt(self, ctx: ExtractionContext) -> ExtractionResult:
        json_url = structured_endpoint_url(ctx.url)
        fetch = self._client.fetch_text(json_url, accept=JSON_ACCEPT)
        if not fetch.ok:
            return self.fail(fetch.error or f"HTTP {fetch.status_code}")
        payload = _extract_json_payload(fetch.text or "")
        if payload is None:
            return self.fail("Response was not valid JSON")
        result = parse_product_payload(payload)
        if result.success:
            logger.debug("[structured] domain=%s title=%r price=%s", ctx.domain, result.title, result.effective_price)
        return result
