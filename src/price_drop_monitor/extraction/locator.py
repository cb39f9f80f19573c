from __future__ import annotations

import logging

from bs4 import BeautifulSoup

from ..http_client import HttpClient
from ..models import ExtractionResult
from ..stores.catalog import StoreCatalog, StoreRecipe
from ..stores.common import absolute_url, clean_sizes, compact_ws
from .base import LOCATOR_TAG, ExtractionContext, Strategy


logger = logging.getLogger(__name__)

MAX_IMAGES = 10


def _first_value(soup: BeautifulSoup, selector: str | None) -> str:
    if not selector:
        return ""
    el = soup.select_one(selector)
    if el is None:
        return ""
    if el.name == "meta":
        return compact_ws(str(el.get("content") or ""))
    return compact_ws(el.get_text(" ", strip=True))


def _images(soup: BeautifulSoup, selector: str | None, base_url: str) -> list[str]:
    if not selector:
        return []
    out: list[str] = []
    for el in soup.select(selector):
        raw = el.get("src") or el.get("data-src") or el.get("content")
        href = absolute_url(base_url, str(raw) if raw else None)
        if href and href not in out:
            out.append(href)
        if len(out) >= MAX_IMAGES:
            break
    return out


def _sizes(soup: BeautifulSoup, selector: str | None) -> list[str]:
    if not selector:
        return []
    labels: list[str] = []
    for el in soup.select(selector):
        labels.append(el.get_text(" ", strip=True) or str(el.get("data-size") or ""))
    return clean_sizes(labels)


def parse_with_recipe(html: str, url: str, recipe: StoreRecipe) -> ExtractionResult:
    soup = BeautifulSoup(html, "lxml")
    loc = recipe.locators

    name = _first_value(soup, loc.name)
    if not name:
        return ExtractionResult.failure(LOCATOR_TAG, "Product name not found")

    price = recipe.price_normalizer(_first_value(soup, loc.price))
    if price is None or price <= 0:
        return ExtractionResult.failure(LOCATOR_TAG, "Product price not found or invalid")

    sale_text = _first_value(soup, loc.sale_price)
    sale = recipe.price_normalizer(sale_text) if sale_text else None
    if sale is not None and (sale <= 0 or sale >= price):
        sale = None

    parts = recipe.split_title(name)
    return ExtractionResult(
        success=True,
        source=LOCATOR_TAG,
        title=name,
        brand=parts.brand,
        model=parts.model,
        colorway=parts.colorway,
        sku=_first_value(soup, loc.sku) or None,
        retail_price=price,
        sale_price=sale,
        images=_images(soup, loc.images, url),
        sizes=_sizes(soup, loc.sizes),
        in_stock=bool(soup.select(loc.in_stock)) if loc.in_stock else True,
    )


class LocatorStrategy(Strategy):
    """Applies a retailer's CSS locators to the product page."""

    tag = LOCATOR_TAG

    def __init__(self, client: HttpClient, catalog: StoreCatalog) -> None:
        self._client = client
        self._catalog = catalog

    def applies(self, ctx: ExtractionContext) -> bool:
        if ctx.recipe is None:
            ctx.recipe = self._catalog.lookup(ctx.domain)
        return ctx.recipe is not None and not ctx.structured_failed

    def attempt(self, ctx: ExtractionContext) -> ExtractionResult:
        assert ctx.recipe is not None
        fetch = self._client.fetch_text(ctx.url)
        ctx.page_status = fetch.status_code
        if not fetch.ok:
            return self.fail(f"Failed to fetch product page: {fetch.error or fetch.status_code}")
        result = parse_with_recipe(fetch.text or "", fetch.url or ctx.url, ctx.recipe)
        if not result.success:
            ctx.page_html = fetch.text
            ctx.locator_parse_failed = True
            logger.info("[locators] store=%s parse_failed error=%s", ctx.recipe.store_id, result.error)
        return result
