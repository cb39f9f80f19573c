from __future__ import annotations

import os
import unittest
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace

from price_drop_monitor.config import load_settings
from price_drop_monitor.extraction.chain import build_default_chain


LIVE_PRODUCT_URLS = [
    "https://www.gymshark.com/products/gymshark-crest-t-shirt-black-aw23",
    "https://www.allbirds.com/products/mens-tree-runners",
]


class TestLiveSites(unittest.TestCase):
    @unittest.skipUnless(os.getenv("RUN_LIVE_TESTS", "").strip() == "1", "Set RUN_LIVE_TESTS=1 to enable live fetch tests.")
    def test_listed_products_return_prices(self) -> None:
        urls_env = os.getenv("LIVE_URLS", "").strip()
        urls = [u.strip() for u in urls_env.split(",") if u.strip()] if urls_env else list(LIVE_PRODUCT_URLS)

        timeout_seconds = float(os.getenv("LIVE_TIMEOUT_SECONDS", "20"))
        allow_errors = os.getenv("LIVE_ALLOW_ERRORS", "").strip() == "1"
        max_workers = int(os.getenv("LIVE_WORKERS", "4"))

        chain = build_default_chain(replace(load_settings(), http_timeout_seconds=timeout_seconds))
        failures: list[str] = []

        with ThreadPoolExecutor(max_workers=max_workers) as ex:
            futs = {ex.submit(chain.extract, u): u for u in urls}
            for fut in as_completed(futs):
                url = futs[fut]
                res = fut.result()
                if not res.success or not res.effective_price:
                    failures.append(f"{url} ok={res.success} source={res.source} error={res.error}")

        if failures and not allow_errors:
            self.fail("Live fetch failures:\n" + "\n".join(failures))


if __name__ == "__main__":
    unittest.main()
