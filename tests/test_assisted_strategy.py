from __future__ import annotations

import json
import unittest
from unittest.mock import Mock

from price_drop_monitor.errors import CircuitOpenError, InferenceError
from price_drop_monitor.extraction.assisted import (
    AssistedHtmlStrategy,
    parse_model_reply,
    result_from_reply,
    strip_html_for_model,
)
from price_drop_monitor.extraction.base import ExtractionContext
from price_drop_monitor.http_client import FetchResult


class _FakeHttpClient:
    def __init__(self, routes: dict[str, tuple[int, str]]) -> None:
        self._routes = routes
        self.calls: list[str] = []

    def fetch_text(self, url: str, *, accept: str | None = None) -> FetchResult:
        self.calls.append(url)
        status, body = self._routes.get(url, (404, ""))
        ok = 200 <= status < 300
        return FetchResult(url=url, status_code=status, ok=ok, text=body if ok else None, error=None if ok else f"HTTP {status}", elapsed_ms=1)


URL = "https://shop.example.com/products/trail-runner"


class TestHtmlPreprocessing(unittest.TestCase):
    def test_strips_scripts_styles_and_comments(self) -> None:
        html = """
        <html><head><style>.x{color:red}</style><script>var secret = 1;</script></head>
        <body><!-- tracking --><h1>Trail   Runner</h1><noscript>enable js</noscript><span>$120</span></body></html>
        """
        out = strip_html_for_model(html)

        self.assertNotIn("secret", out)
        self.assertNotIn("color:red", out)
        self.assertNotIn("tracking", out)
        self.assertNotIn("enable js", out)
        self.assertIn("Trail Runner", out)
        self.assertIn("$120", out)

    def test_truncates(self) -> None:
        html = "<p>" + ("word " * 5000) + "</p>"
        self.assertLessEqual(len(strip_html_for_model(html, max_chars=1000)), 1000)


class TestReplyParsing(unittest.TestCase):
    def test_code_fences_are_tolerated(self) -> None:
        reply = '```json\n{"title": "Trail Runner", "currentPrice": 99.5}\n```'
        self.assertEqual(parse_model_reply(reply), {"title": "Trail Runner", "currentPrice": 99.5})

    def test_non_object_replies_are_rejected(self) -> None:
        self.assertIsNone(parse_model_reply("Sure! The price is $99."))
        self.assertIsNone(parse_model_reply("[1, 2]"))
        self.assertIsNone(parse_model_reply('{"title": "x"} trailing words'))

    def test_sale_when_current_below_original(self) -> None:
        res = result_from_reply(
            {"title": "Trail Runner", "brand": "Hoka", "currentPrice": "89.99", "originalPrice": 130, "imageUrl": "https://cdn.test/a.jpg"}
        )
        self.assertTrue(res.success)
        self.assertEqual(res.source, "ai-assisted")
        self.assertEqual(res.retail_price, 130.0)
        self.assertEqual(res.sale_price, 89.99)
        self.assertEqual(res.brand, "Hoka")
        self.assertEqual(res.images, ["https://cdn.test/a.jpg"])

    def test_current_price_copied_to_retail_when_not_on_sale(self) -> None:
        res = result_from_reply({"title": "Trail Runner", "currentPrice": 120, "originalPrice": None})
        self.assertEqual(res.retail_price, 120.0)
        self.assertIsNone(res.sale_price)

    def test_error_field_and_incomplete_data_fail(self) -> None:
        self.assertFalse(result_from_reply({"error": "No price found"}).success)
        self.assertIn("incomplete", result_from_reply({"title": "Trail Runner", "currentPrice": None}).error or "")
        self.assertFalse(result_from_reply({"currentPrice": 10}).success)
        self.assertFalse(result_from_reply({"title": "x", "currentPrice": -4}).success)

    def test_untrusted_image_url_is_dropped(self) -> None:
        res = result_from_reply({"title": "Trail Runner", "currentPrice": 50, "imageUrl": "javascript:alert(1)"})
        self.assertTrue(res.success)
        self.assertEqual(res.images, [])


class TestAssistedHtmlStrategy(unittest.TestCase):
    def test_abstains_without_inference_client(self) -> None:
        strategy = AssistedHtmlStrategy(_FakeHttpClient({}), None)
        ctx = ExtractionContext.for_url(URL)
        ctx.structured_failed = True
        self.assertFalse(strategy.applies(ctx))

    def test_eligibility(self) -> None:
        strategy = AssistedHtmlStrategy(_FakeHttpClient({}), Mock())

        fresh = ExtractionContext.for_url(URL)
        self.assertFalse(strategy.applies(fresh))

        after_locators = ExtractionContext.for_url(URL)
        after_locators.locator_parse_failed = True
        after_locators.page_html = "<html></html>"
        self.assertTrue(strategy.applies(after_locators))

        after_structured = ExtractionContext.for_url(URL)
        after_structured.structured_failed = True
        self.assertTrue(strategy.applies(after_structured))

    def test_uses_page_from_locator_attempt_without_refetching(self) -> None:
        client = _FakeHttpClient({})
        inference = Mock()
        inference.generate.return_value = json.dumps({"title": "Trail Runner", "currentPrice": 99})
        ctx = ExtractionContext.for_url(URL)
        ctx.locator_parse_failed = True
        ctx.page_html = "<h1>Trail Runner</h1><span>$99</span>"

        res = AssistedHtmlStrategy(client, inference).attempt(ctx)

        self.assertTrue(res.success)
        self.assertEqual(client.calls, [])
        prompt = inference.generate.call_args.args[0]
        self.assertIn("currentPrice, originalPrice", prompt)
        self.assertIn(URL, prompt)
        self.assertIn("Trail Runner", prompt)

    def test_fetches_page_itself_after_structured_failure(self) -> None:
        client = _FakeHttpClient({URL: (200, "<h1>Trail Runner</h1>")})
        inference = Mock()
        inference.generate.return_value = '{"title": "Trail Runner", "currentPrice": 99}'
        ctx = ExtractionContext.for_url(URL)
        ctx.structured_failed = True

        res = AssistedHtmlStrategy(client, inference).attempt(ctx)

        self.assertTrue(res.success)
        self.assertEqual(client.calls, [URL])

    def test_never_calls_model_when_page_fetch_fails(self) -> None:
        inference = Mock()
        ctx = ExtractionContext.for_url(URL)
        ctx.structured_failed = True

        res = AssistedHtmlStrategy(_FakeHttpClient({}), inference).attempt(ctx)

        self.assertFalse(res.success)
        inference.generate.assert_not_called()

    def test_inference_errors_become_failures(self) -> None:
        inference = Mock()
        inference.generate.side_effect = InferenceError("Gemini unavailable: HTTP 503")
        ctx = ExtractionContext.for_url(URL)
        ctx.locator_parse_failed = True
        ctx.page_html = "<html></html>"

        res = AssistedHtmlStrategy(_FakeHttpClient({}), inference).attempt(ctx)

        self.assertFalse(res.success)
        self.assertIn("HTTP 503", res.error or "")

    def test_open_inference_breaker_is_a_failure(self) -> None:
        inference = Mock()
        inference.generate.side_effect = CircuitOpenError("inference.gemini", 42.0)
        ctx = ExtractionContext.for_url(URL)
        ctx.locator_parse_failed = True
        ctx.page_html = "<html></html>"

        res = AssistedHtmlStrategy(_FakeHttpClient({}), inference).attempt(ctx)

        self.assertFalse(res.success)
        self.assertIn("inference.gemini is OPEN", res.error or "")

    def test_invalid_json_reply_fails(self) -> None:
        inference = Mock()
        inference.generate.return_value = "I could not find a price."
        ctx = ExtractionContext.for_url(URL)
        ctx.locator_parse_failed = True
        ctx.page_html = "<html></html>"

        res = AssistedHtmlStrategy(_FakeHttpClient({}), inference).attempt(ctx)

        self.assertFalse(res.success)
        self.assertIn("invalid JSON", res.error or "")


if __name__ == "__main__":
    unittest.main()
