from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


FAILURE_DISABLE_THRESHOLD = 3


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AlertKind(str, Enum):
    DROP = "drop"
    TARGET = "target"


class PriceSource(str, Enum):
    AUTOMATED_CHECK = "automated_check"
    MANUAL_ENTRY = "manual_entry"
    IMPORT = "import"


@dataclass(frozen=True)
class MonitoredItem:
    id: str
    user_id: str
    product_url: str
    store_name: str
    target_price: float | None = None
    retail_price: float | None = None
    last_price: float | None = None
    last_checked_at: str | None = None
    lowest_price: float | None = None
    price_check_failures: int = 0
    is_active: bool = True
    notification_sent: bool = False
    created_at: str | None = None


@dataclass(frozen=True)
class PriceHistoryEntry:
    monitor_id: str
    price: float
    in_stock: bool
    checked_at: str
    source: PriceSource = PriceSource.AUTOMATED_CHECK


@dataclass(frozen=True)
class PriceAlert:
    # None once the monitor that raised it has been removed.
    monitor_id: str | None
    user_id: str
    severity: Severity
    title: str
    message: str
    current_price: float
    previous_price: float
    percentage_off: int
    created_at: str
    is_read: bool = False
    kind: AlertKind = AlertKind.DROP
    id: str | None = None


@dataclass(frozen=True)
class DropInfo:
    previous_price: float
    current_price: float
    drop_amount: float
    percentage_off: int
    severity: Severity


@dataclass(frozen=True)
class ExtractionResult:
    success: bool
    source: str
    error: str | None = None
    title: str | None = None
    brand: str | None = None
    model: str | None = None
    colorway: str | None = None
    sku: str | None = None
    retail_price: float | None = None
    sale_price: float | None = None
    images: list[str] = field(default_factory=list)
    sizes: list[str] = field(default_factory=list)
    in_stock: bool = True
    category: str | None = None

    @property
    def effective_price(self) -> float | None:
        if self.sale_price is not None:
            return self.sale_price
        return self.retail_price

    @classmethod
    def failure(cls, source: str, error: str) -> "ExtractionResult":
        return cls(success=False, source=source, error=error)


@dataclass(frozen=True)
class CheckOutcome:
    monitor_id: str
    product_url: str
    ok: bool
    current_price: float | None = None
    in_stock: bool | None = None
    alert: PriceAlert | None = None
    error: str | None = None
    source: str | None = None
    disabled: bool = False
    skipped: bool = False
    target_reached: bool = False
    target_alert: PriceAlert | None = None


@dataclass(frozen=True)
class CycleReport:
    ok: bool
    started_at: str
    finished_at: str
    checked: int = 0
    succeeded: int = 0
    failed: int = 0
    alerts_created: int = 0
    outcomes: list[CheckOutcome] = field(default_factory=list)
    store_stats: dict[str, dict[str, int]] = field(default_factory=dict)
    error: str | None = None


@dataclass(frozen=True)
class DailySummary:
    ok: bool
    since: str
    checks: int = 0
    drops: int = 0
    targets_reached: int = 0
    drop_lines: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass(frozen=True)
class ControlResult:
    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)
