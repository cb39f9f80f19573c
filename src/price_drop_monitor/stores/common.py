from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urljoin, urlparse


_WS_RE = re.compile(r"\s+")


def compact_ws(text: str) -> str:
    return _WS_RE.sub(" ", (text or "").strip())


# Digit groups may be split by "." "," or any space (plain, NBSP, narrow NBSP).
_AMOUNT_RE = re.compile(r"\d{1,3}(?:[.,\s]\d{3})+(?:[.,]\d{1,2})?|\d+(?:[.,]\d{1,2})?")


def _normalize_amount(amount: str) -> str:
    s = compact_ws(amount).replace(" ", "").replace("\u00a0", "").replace("\u202f", "")
    if "," in s and "." in s:
        # Whichever separator comes last is the decimal mark.
        if s.rfind(",") > s.rfind("."):
            return s.replace(".", "").replace(",", ".")
        return s.replace(",", "")
    if s.count(",") > 1:
        return s.replace(",", "")
    if s.count(".") > 1:
        return s.replace(".", "")
    if s.count(",") == 1:
        left, right = s.split(",", 1)
        if len(right) <= 2:
            return f"{left}.{right}"
        return f"{left}{right}"
    if s.count(".") == 1:
        left, right = s.split(".", 1)
        if len(right) == 3 and left != "0":
            return f"{left}{right}"
    return s


def parse_price_text(text: str | None) -> float | None:
    """Parse a locale-formatted price (``$1,299.99``, ``1.299,99 €``, ``1 299,99 €``, ``129,95``).

    Returns ``None`` unless the result is a positive number.
    """
    # Callers usually pass compact_ws output, so NBSP group separators arrive as plain spaces.
    t = (text or "").strip()
    if not t:
        return None
    m = _AMOUNT_RE.search(t)
    if not m:
        return None
    try:
        value = float(_normalize_amount(m.group(0)))
    except ValueError:
        return None
    if value <= 0:
        return None
    return round(value, 2)


def coerce_price(value: object) -> float | None:
    """Coerce an untrusted JSON value (number or string) into a positive price."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return round(float(value), 2) if value > 0 else None
    if isinstance(value, str):
        return parse_price_text(value)
    return None


def absolute_url(base_url: str, href: str | None) -> str | None:
    raw = (href or "").strip()
    if not raw or raw.startswith("data:"):
        return None
    if raw.startswith("//"):
        return "https:" + raw
    resolved = urljoin(base_url, raw)
    if urlparse(resolved).scheme not in ("http", "https"):
        return None
    return resolved


def normalize_domain(domain_or_url: str) -> str:
    raw = (domain_or_url or "").strip().lower()
    if "://" in raw:
        raw = urlparse(raw).netloc
    raw = raw.split("@")[-1].split(":")[0].rstrip(".")
    if raw.startswith("www."):
        raw = raw[4:]
    return raw


@dataclass(frozen=True)
class TitleParts:
    brand: str | None
    model: str | None
    colorway: str | None = None


TitleRule = Callable[[str], TitleParts]

KNOWN_BRANDS = [
    "Air Jordan",
    "Jordan",
    "Nike",
    "Adidas",
    "New Balance",
    "Puma",
    "Vans",
    "Converse",
    "Reebok",
    "ASICS",
    "Saucony",
    "Hoka",
    "On",
]
_LEADING_BRAND_RE = re.compile(
    r"^(" + "|".join(re.escape(b) for b in sorted(KNOWN_BRANDS, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)


def _canonical_brand(raw: str) -> str:
    for b in KNOWN_BRANDS:
        if b.lower() == raw.lower():
            return b
    return raw


def leading_brand(title: str) -> TitleParts:
    """Brand is a known brand prefix, else the first word; the rest is the model."""
    t = compact_ws(title)
    if not t:
        return TitleParts(brand=None, model=None)
    m = _LEADING_BRAND_RE.match(t)
    if m:
        brand = _canonical_brand(m.group(1))
        rest = t[m.end():].strip(" -")
        return TitleParts(brand=brand, model=rest or t)
    first, _, rest = t.partition(" ")
    return TitleParts(brand=first, model=rest.strip() or t)


def split_brand_dash_colorway(title: str) -> TitleParts:
    """``Nike Air Max 90 - White/Black`` -> brand, model, colorway."""
    t = compact_ws(title)
    head, sep, tail = t.partition(" - ")
    parts = leading_brand(head)
    return TitleParts(brand=parts.brand, model=parts.model, colorway=(tail.strip() or None) if sep else None)


def fixed_brand(brand: str) -> TitleRule:
    """Rule for single-brand stores: the brand is known, the title is the model."""

    def rule(title: str) -> TitleParts:
        t = compact_ws(title)
        if t.lower().startswith(brand.lower() + " "):
            t = t[len(brand) + 1:]
        head, sep, tail = t.partition(" - ")
        return TitleParts(brand=brand, model=head.strip() or None, colorway=(tail.strip() or None) if sep else None)

    return rule


_SIZE_RE = re.compile(r"^\d+(?:\.\d+)?$")


def clean_sizes(labels: list[str]) -> list[str]:
    out: set[str] = set()
    for raw in labels:
        v = compact_ws(raw)
        if _SIZE_RE.match(v):
            out.add(v)
    return sorted(out, key=lambda s: float(s))
