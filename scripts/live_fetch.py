from __future__ import annotations

import os
import sys
from dataclasses import replace
from urllib.parse import urlparse

from price_drop_monitor.config import load_settings
from price_drop_monitor.extraction.chain import build_default_chain


DEFAULT_URLS = [
    "https://www.gymshark.com/products/gymshark-crest-t-shirt-black-aw23",
    "https://www.allbirds.com/products/mens-tree-runners",
    "https://www.nike.com/t/air-force-1-07-mens-shoes-jBrhbr/CW2288-111",
]


def main() -> int:
    try:
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        sys.stderr.reconfigure(encoding="utf-8", errors="replace")
    except AttributeError:
        pass

    urls_env = os.getenv("LIVE_URLS", "").strip()
    urls = sys.argv[1:] or ([u.strip() for u in urls_env.split(",") if u.strip()] if urls_env else list(DEFAULT_URLS))

    settings = load_settings()
    timeout_seconds = float(os.getenv("LIVE_TIMEOUT_SECONDS", str(settings.http_timeout_seconds)))
    chain = build_default_chain(replace(settings, http_timeout_seconds=timeout_seconds))

    ok_count = 0
    by_source: dict[str, int] = {}
    errors: list[str] = []

    for url in urls:
        domain = urlparse(url).netloc
        res = chain.extract(url)
        print(f"\n== {domain} :: {url}", flush=True)
        print(f"ok={res.success} source={res.source} error={res.error}", flush=True)
        if not res.success:
            errors.append(f"  x {domain}: {res.error}")
            continue
        ok_count += 1
        by_source[res.source] = by_source.get(res.source, 0) + 1
        sale = f" sale={res.sale_price}" if res.sale_price is not None else ""
        print(f"- {res.brand} | {res.model} | {res.colorway or '-'} | retail={res.retail_price}{sale} | in_stock={res.in_stock}", flush=True)
        if res.sizes:
            print(f"  sizes={', '.join(res.sizes)}", flush=True)
        if res.images:
            print(f"  images={len(res.images)} first={res.images[0]}", flush=True)

    print(f"\n{'='*60}", flush=True)
    print(f"Extracted: {ok_count}/{len(urls)}", flush=True)
    for source, n in sorted(by_source.items()):
        print(f"  {source}: {n}", flush=True)
    if errors:
        print(f"\nErrors ({len(errors)}):", flush=True)
        for e in errors:
            print(e, flush=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
