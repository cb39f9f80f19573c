"""
Drop detection and alert rendering.

Everything here is pure: no I/O and no clock reads unless a timestamp is passed in.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from .models import AlertKind, DropInfo, ExtractionResult, MonitoredItem, PriceAlert, Severity
from .timeutil import utc_now_iso


HIGH_SEVERITY_PERCENT = 30
MEDIUM_SEVERITY_PERCENT = 15

MIN_PLAUSIBLE_PRICE = 1.0
MAX_PLAUSIBLE_PRICE = 50_000.0
MAX_RETAIL_MARKUP = 2.0

ALERT_TITLES = {
    Severity.HIGH: "Big Price Drop! \U0001f389",
    Severity.MEDIUM: "Price Drop Alert \U0001f4b0",
    Severity.LOW: "Small Price Drop \U0001f440",
}
TARGET_ALERT_TITLE = "Target Price Reached! \U0001f3af"


def _round_half_up(value: float) -> int:
    return int(Decimal(repr(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def classify_severity(percentage_off: int) -> Severity:
    if percentage_off >= HIGH_SEVERITY_PERCENT:
        return Severity.HIGH
    if percentage_off >= MEDIUM_SEVERITY_PERCENT:
        return Severity.MEDIUM
    return Severity.LOW


def detect_drop(current: float, previous: float | None) -> DropInfo | None:
    if previous is None or previous <= 0:
        return None
    drop = round(previous - current, 2)
    if drop <= 0:
        return None
    pct = _round_half_up(100.0 * drop / previous)
    return DropInfo(
        previous_price=previous,
        current_price=current,
        drop_amount=drop,
        percentage_off=pct,
        severity=classify_severity(pct),
    )


def comparison_baseline(item: MonitoredItem, result: ExtractionResult | None = None) -> float | None:
    """Lowest price seen so far, else the item's retail price, else the list price the retailer reports now."""
    for candidate in (item.lowest_price, item.retail_price):
        if candidate is not None and candidate > 0:
            return candidate
    if result is not None and result.retail_price is not None and result.retail_price > 0:
        return result.retail_price
    return None


def is_plausible_price(price: float | None, retail_price: float | None = None) -> bool:
    if price is None:
        return False
    if price < MIN_PLAUSIBLE_PRICE or price > MAX_PLAUSIBLE_PRICE:
        return False
    if retail_price is not None and retail_price > 0 and price > retail_price * MAX_RETAIL_MARKUP:
        return False
    return True


def _money(value: float) -> str:
    return f"${value:,.2f}"


def describe_item(item: MonitoredItem, result: ExtractionResult | None = None) -> str:
    if result is not None:
        name = " ".join(p for p in (result.brand, result.model) if p)
        if name:
            return name
        if result.title:
            return result.title
    return item.store_name or item.product_url


def build_price_alert(
    item: MonitoredItem,
    drop: DropInfo,
    *,
    result: ExtractionResult | None = None,
    created_at: str | None = None,
) -> PriceAlert:
    label = describe_item(item, result)
    return PriceAlert(
        monitor_id=item.id,
        user_id=item.user_id,
        severity=drop.severity,
        title=ALERT_TITLES[drop.severity],
        message=f"{label} dropped to {_money(drop.current_price)} ({drop.percentage_off}% off)",
        current_price=drop.current_price,
        previous_price=drop.previous_price,
        percentage_off=drop.percentage_off,
        created_at=created_at or utc_now_iso(),
    )


def target_reached(item: MonitoredItem, price: float) -> bool:
    return item.target_price is not None and item.target_price > 0 and price <= item.target_price


def build_target_alert(
    item: MonitoredItem,
    price: float,
    *,
    result: ExtractionResult | None = None,
    created_at: str | None = None,
) -> PriceAlert:
    """Always high severity; ``previous_price`` carries the target."""
    target = float(item.target_price or 0.0)
    pct = _round_half_up(100.0 * (target - price) / target) if target > 0 else 0
    label = describe_item(item, result)
    return PriceAlert(
        monitor_id=item.id,
        user_id=item.user_id,
        severity=Severity.HIGH,
        title=TARGET_ALERT_TITLE,
        message=f"{label} is now {_money(price)} (your target: {_money(target)})",
        current_price=price,
        previous_price=target,
        percentage_off=max(0, pct),
        created_at=created_at or utc_now_iso(),
        kind=AlertKind.TARGET,
    )
