from __future__ import annotations

import json
import unittest
from unittest.mock import Mock, patch

import requests

from price_drop_monitor.config import Settings
from price_drop_monitor.extraction.assisted import AssistedHtmlStrategy
from price_drop_monitor.extraction.base import ExtractionContext, Strategy
from price_drop_monitor.extraction.chain import ExtractionChain, build_default_chain
from price_drop_monitor.extraction.locator import LocatorStrategy
from price_drop_monitor.extraction.structured import StructuredEndpointStrategy
from price_drop_monitor.http_client import FetchResult
from price_drop_monitor.models import ExtractionResult
from price_drop_monitor.resilience import CircuitBreakerRegistry, CircuitState
from price_drop_monitor.stores.catalog import default_catalog


class _FakeHttpClient:
    def __init__(self, routes: dict[str, tuple[int, str]]) -> None:
        self._routes = routes
        self.calls: list[str] = []

    def fetch_text(self, url: str, *, accept: str | None = None) -> FetchResult:
        self.calls.append(url)
        status, body = self._routes.get(url, (404, ""))
        ok = 200 <= status < 300
        return FetchResult(url=url, status_code=status, ok=ok, text=body if ok else None, error=None if ok else f"HTTP {status}", elapsed_ms=1)


def _chain(routes: dict[str, tuple[int, str]], inference=None) -> tuple[ExtractionChain, _FakeHttpClient]:
    client = _FakeHttpClient(routes)
    catalog = default_catalog()
    chain = ExtractionChain(
        [
            StructuredEndpointStrategy(client),
            LocatorStrategy(client, catalog),
            AssistedHtmlStrategy(client, inference),
        ],
        catalog,
    )
    return chain, client


NIKE_URL = "https://www.nike.com/t/air-max-90-mens-shoes/CN8490-100"
NIKE_HTML_OK = """
<html><body>
  <h1 data-test="product-title">Nike Air Max 90</h1>
  <div data-test="product-price">$130.00</div>
  <button class="add-to-cart">Add to Bag</button>
</body></html>
"""
NIKE_HTML_REDESIGNED = "<html><body><h2 class='new-title'>Nike Air Max 90</h2><p class='new-price'>$130.00</p></body></html>"

SHOP_URL = "https://store.example.com/products/cozy-hoodie"
SHOP_JSON_URL = "https://store.example.com/products/cozy-hoodie.json"
SHOP_PAYLOAD = {
    "product": {
        "title": "Cozy Hoodie",
        "vendor": "Example Co",
        "variants": [{"price": "55.00", "compare_at_price": "70.00", "option1": "Oat"}],
        "images": [],
    }
}


def _inference(reply: dict) -> Mock:
    m = Mock()
    m.generate.return_value = json.dumps(reply)
    return m


class TestExtractionChain(unittest.TestCase):
    def test_structured_success_short_circuits(self) -> None:
        inference = Mock()
        chain, client = _chain({SHOP_JSON_URL: (200, json.dumps(SHOP_PAYLOAD))}, inference)

        res = chain.extract(SHOP_URL)

        self.assertTrue(res.success)
        self.assertEqual(res.source, "structured-endpoint")
        self.assertEqual(res.sale_price, 55.0)
        self.assertEqual(client.calls, [SHOP_JSON_URL])
        inference.generate.assert_not_called()

    def test_locators_used_for_catalog_store(self) -> None:
        chain, _ = _chain({NIKE_URL: (200, NIKE_HTML_OK)})

        res = chain.extract(NIKE_URL)

        self.assertTrue(res.success)
        self.assertEqual(res.source, "store-locators")
        self.assertEqual(res.brand, "Nike")
        self.assertEqual(res.model, "Air Max 90")
        self.assertEqual(res.retail_price, 130.0)

    def test_unsupported_store_when_every_strategy_abstains(self) -> None:
        chain, client = _chain({}, None)

        res = chain.extract("https://www.example.com/item/42")

        self.assertFalse(res.success)
        self.assertEqual(res.source, "none")
        self.assertEqual(res.error, "Unsupported store: example.com")
        self.assertEqual(client.calls, [])

    def test_ai_attempted_after_2xx_locator_parse_failure(self) -> None:
        inference = _inference({"title": "Nike Air Max 90", "brand": "Nike", "currentPrice": 104, "originalPrice": 130})
        chain, client = _chain({NIKE_URL: (200, NIKE_HTML_REDESIGNED)}, inference)

        res = chain.extract(NIKE_URL)

        self.assertTrue(res.success)
        self.assertEqual(res.source, "ai-assisted")
        self.assertEqual(res.sale_price, 104.0)
        self.assertEqual(client.calls, [NIKE_URL])
        inference.generate.assert_called_once()

    def test_failure_joins_tagged_errors(self) -> None:
        inference = _inference({"error": "No price found"})
        chain, _ = _chain({NIKE_URL: (200, NIKE_HTML_REDESIGNED)}, inference)

        res = chain.extract(NIKE_URL)

        self.assertFalse(res.success)
        self.assertTrue(res.error.startswith("store-locators: Product name not found; ai-assisted: "))

    def test_ai_not_attempted_after_fetch_failure(self) -> None:
        inference = Mock()
        chain, _ = _chain({NIKE_URL: (404, "")}, inference)

        res = chain.extract(NIKE_URL)

        self.assertFalse(res.success)
        self.assertEqual(res.error, "store-locators: Failed to fetch product page: HTTP 404")
        inference.generate.assert_not_called()

    def test_structured_failure_skips_locators_and_allows_ai(self) -> None:
        url = "https://www.shoepalace.com/products/nike-dunk-low"
        inference = _inference({"title": "Nike Dunk Low", "currentPrice": 115})
        chain, client = _chain({url: (200, "<html><h1>Nike Dunk Low</h1></html>")}, inference)

        res = chain.extract(url)

        self.assertTrue(res.success)
        self.assertEqual(res.source, "ai-assisted")
        self.assertEqual(client.calls, ["https://www.shoepalace.com/products/nike-dunk-low.json", url])

    def test_structured_failure_without_ai_reports_structured_error(self) -> None:
        chain, _ = _chain({}, None)

        res = chain.extract(SHOP_URL)

        self.assertFalse(res.success)
        self.assertEqual(res.error, "structured-endpoint: HTTP 404")

    def test_strategy_exception_is_contained(self) -> None:
        class _Exploding(Strategy):
            tag = "store-locators"

            def applies(self, ctx: ExtractionContext) -> bool:
                return True

            def attempt(self, ctx: ExtractionContext) -> ExtractionResult:
                raise ValueError("bad selector")

        chain = ExtractionChain([_Exploding()], default_catalog())

        res = chain.extract(NIKE_URL)

        self.assertFalse(res.success)
        self.assertEqual(res.error, "store-locators: ValueError: bad selector")

    def test_invalid_url(self) -> None:
        chain, _ = _chain({})
        res = chain.extract("not a url")
        self.assertFalse(res.success)
        self.assertIn("Invalid URL", res.error or "")


class TestBuildDefaultChain(unittest.TestCase):
    def test_ai_disabled_without_api_key(self) -> None:
        chain = build_default_chain(Settings(gemini_api_key=None), client=_FakeHttpClient({}))
        strategies = chain._strategies
        self.assertEqual([s.tag for s in strategies], ["structured-endpoint", "store-locators", "ai-assisted"])
        ctx = ExtractionContext.for_url(SHOP_URL)
        ctx.structured_failed = True
        self.assertFalse(strategies[2].applies(ctx))

    def test_dead_retailer_is_short_circuited_across_checks(self) -> None:
        registry = CircuitBreakerRegistry()
        chain = build_default_chain(Settings(gemini_api_key=None, http_max_retries=1), breakers=registry)

        with patch("requests.Session.get", side_effect=requests.ConnectionError("refused")) as get:
            results = [chain.extract(NIKE_URL) for _ in range(20)]

        self.assertTrue(all(not r.success for r in results))
        self.assertEqual(get.call_count, 5)
        self.assertEqual(registry.statuses()["retailer:www.nike.com"].state, CircuitState.OPEN)
        self.assertIn("is OPEN", results[-1].error or "")

    def test_inference_client_shares_the_registry(self) -> None:
        registry = CircuitBreakerRegistry()

        chain = build_default_chain(Settings(gemini_api_key="g-key"), client=_FakeHttpClient({}), breakers=registry)

        gemini = chain._strategies[2]._inference
        self.assertIs(gemini._breaker, registry.get("inference.gemini"))


if __name__ == "__main__":
    unittest.main()
