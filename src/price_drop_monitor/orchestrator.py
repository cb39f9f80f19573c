from __future__ import annotations

import logging
import time
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Protocol, TypeVar

from .errors import MonitorConflictError, MonitorNotFoundError
from .models import (
    FAILURE_DISABLE_THRESHOLD,
    AlertKind,
    CheckOutcome,
    CycleReport,
    DailySummary,
    ExtractionResult,
    MonitoredItem,
    PriceHistoryEntry,
    PriceSource,
)
from .pricing import (
    build_price_alert,
    build_target_alert,
    comparison_baseline,
    detect_drop,
    is_plausible_price,
    target_reached,
)
from .resilience import (
    NO_RETRY,
    READ_BREAKER,
    READ_RETRY,
    WRITE_BREAKER,
    WRITE_RETRY,
    CircuitBreakerRegistry,
    RetryPolicy,
    retry_call,
)
from .store import MonitorStore
from .stores.common import normalize_domain
from .timeutil import hours_ago_iso, utc_now


logger = logging.getLogger(__name__)

T = TypeVar("T")

READ_BREAKER_NAME = "store.read"
WRITE_BREAKER_NAME = "store.write"
SUMMARY_WINDOW_HOURS = 24


class Extractor(Protocol):
    def extract(self, url: str) -> ExtractionResult: ...


class MonitoringOrchestrator:
    """Checks monitored items, records history, and raises drop alerts.

    A failing item never aborts a cycle; only failing to load the active list does.
    """

    def __init__(
        self,
        store: MonitorStore,
        extractor: Extractor,
        *,
        breakers: CircuitBreakerRegistry | None = None,
        politeness_delay_seconds: float = 2.0,
        read_retry: RetryPolicy = READ_RETRY,
        write_retry: RetryPolicy = WRITE_RETRY,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
        log_progress: bool = True,
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._breakers = breakers or CircuitBreakerRegistry()
        self._delay = max(0.0, politeness_delay_seconds)
        self._read_retry = read_retry
        self._write_retry = write_retry
        self._sleep = sleep
        self._clock = clock
        self._log_progress = log_progress

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    def _now_iso(self) -> str:
        return self._clock().isoformat()

    def _read(self, label: str, fn: Callable[[], T]) -> T:
        breaker = self._breakers.get(READ_BREAKER_NAME, READ_BREAKER)
        return breaker.call(lambda: retry_call(fn, label=label, policy=self._read_retry, sleep=self._sleep))

    def _write(self, label: str, fn: Callable[[], T], *, policy: RetryPolicy | None = None) -> T:
        breaker = self._breakers.get(WRITE_BREAKER_NAME, WRITE_BREAKER)
        retry = policy or self._write_retry
        return breaker.call(lambda: retry_call(fn, label=label, policy=retry, sleep=self._sleep))

    def _progress(self, msg: str, *args: Any) -> None:
        if self._log_progress:
            logger.info(msg, *args)

    # -- cycle ---------------------------------------------------------------

    def check_all(self) -> CycleReport:
        started_at = self._now_iso()
        try:
            items = self._read("list_active_monitors", self._store.list_active_monitors)
        except Exception as e:
            logger.error("[monitor] failed to load active monitors: %s: %s", type(e).__name__, e)
            return CycleReport(ok=False, started_at=started_at, finished_at=self._now_iso(), error=str(e))

        self._progress("[monitor] start items=%d", len(items))
        outcomes: list[CheckOutcome] = []
        store_stats: dict[str, dict[str, int]] = {}
        for i, item in enumerate(items):
            if i > 0 and self._delay > 0:
                self._sleep(self._delay)
            outcome = self._check_item(item)
            outcomes.append(outcome)
            stats = store_stats.setdefault(item.store_name or normalize_domain(item.product_url), {"success": 0, "failure": 0})
            stats["success" if outcome.ok else "failure"] += 1

        succeeded = sum(1 for o in outcomes if o.ok)
        alerts = sum((o.alert is not None) + (o.target_alert is not None) for o in outcomes)
        report = CycleReport(
            ok=True,
            started_at=started_at,
            finished_at=self._now_iso(),
            checked=len(outcomes),
            succeeded=succeeded,
            failed=len(outcomes) - succeeded,
            alerts_created=alerts,
            outcomes=outcomes,
            store_stats=store_stats,
        )
        logger.info(
            "[monitor] done checked=%d ok=%d failed=%d alerts=%d",
            report.checked,
            report.succeeded,
            report.failed,
            report.alerts_created,
        )
        for name, stats in sorted(store_stats.items()):
            total = stats["success"] + stats["failure"]
            self._progress("[monitor] store=%s success=%d/%d", name, stats["success"], total)
        return report

    def check_one(self, monitor_id: str) -> CheckOutcome:
        try:
            item = self._read("get_monitor", lambda: self._store.get_monitor(monitor_id))
        except Exception as e:
            return CheckOutcome(monitor_id=monitor_id, product_url="", ok=False, error=f"{type(e).__name__}: {e}")
        if item is None:
            return CheckOutcome(monitor_id=monitor_id, product_url="", ok=False, skipped=True, error=f"Monitor not found: {monitor_id}")
        if not item.is_active:
            return CheckOutcome(
                monitor_id=monitor_id,
                product_url=item.product_url,
                ok=False,
                skipped=True,
                error=f"Tracking is disabled for this monitor after {item.price_check_failures} failed checks",
            )
        return self._check_item(item)

    # -- per item ------------------------------------------------------------

    def _check_item(self, item: MonitoredItem) -> CheckOutcome:
        try:
            result = self._extractor.extract(item.product_url)
        except Exception as e:
            result = ExtractionResult.failure("none", f"{type(e).__name__}: {e}")

        price = result.effective_price
        try:
            if result.success and price is not None and price > 0:
                if is_plausible_price(price, item.retail_price or result.retail_price):
                    return self._record_success(item, result, price)
                return self._record_failure(item, f"Implausible price: {price}", result.source)
            return self._record_failure(item, result.error or "Extraction failed", result.source)
        except Exception as e:
            logger.error("[check] monitor=%s persistence error: %s: %s", item.id, type(e).__name__, e)
            return CheckOutcome(
                monitor_id=item.id,
                product_url=item.product_url,
                ok=False,
                error=f"{type(e).__name__}: {e}",
                source=result.source,
            )

    def _record_success(self, item: MonitoredItem, result: ExtractionResult, price: float) -> CheckOutcome:
        now = self._now_iso()
        entry = PriceHistoryEntry(
            monitor_id=item.id,
            price=price,
            in_stock=result.in_stock,
            checked_at=now,
            source=PriceSource.AUTOMATED_CHECK,
        )
        self._write("append_history", lambda: self._store.append_history(entry))

        drop = detect_drop(price, comparison_baseline(item, result))
        fields: dict[str, Any] = {
            "last_price": price,
            "last_checked_at": now,
            "lowest_price": min(item.lowest_price, price) if item.lowest_price is not None else price,
            "price_check_failures": 0,
        }
        if item.retail_price is None and result.retail_price is not None:
            fields["retail_price"] = result.retail_price

        alert = None
        if drop is not None:
            pending = build_price_alert(item, drop, result=result, created_at=now)
            alert = self._write("insert_alert", lambda: self._store.insert_alert(pending))
            fields["notification_sent"] = False

        reached = target_reached(item, price)
        target_alert = None
        if reached and not self._read(
            "has_unread_target_alert", lambda: self._store.has_unread_target_alert(item.id)
        ):
            pending_target = build_target_alert(item, price, result=result, created_at=now)
            target_alert = self._write("insert_alert", lambda: self._store.insert_alert(pending_target))
            fields["notification_sent"] = False

        self._write("update_monitor", lambda: self._store.update_monitor(item.id, fields))

        self._progress(
            "[check] monitor=%s status=ok price=%.2f source=%s drop=%s target_reached=%s",
            item.id,
            price,
            result.source,
            f"{drop.percentage_off}%/{drop.severity.value}" if drop else "none",
            reached,
        )
        return CheckOutcome(
            monitor_id=item.id,
            product_url=item.product_url,
            ok=True,
            current_price=price,
            in_stock=result.in_stock,
            alert=alert,
            source=result.source,
            target_reached=reached,
            target_alert=target_alert,
        )

    def _record_failure(self, item: MonitoredItem, error: str, source: str | None) -> CheckOutcome:
        # Not idempotent: a retried RPC whose first attempt committed would count twice.
        count = self._write(
            "increment_failures", lambda: self._store.increment_failures(item.id), policy=NO_RETRY
        )
        disabled = count >= FAILURE_DISABLE_THRESHOLD
        if disabled:
            fields = {"is_active": False, "price_check_failures": FAILURE_DISABLE_THRESHOLD}
            self._write("disable_monitor", lambda: self._store.update_monitor(item.id, fields))
            logger.warning("[check] monitor=%s disabled after %d failures", item.id, count)
        self._progress("[check] monitor=%s status=error failures=%d error=%s", item.id, count, error)
        return CheckOutcome(
            monitor_id=item.id,
            product_url=item.product_url,
            ok=False,
            error=error,
            source=source,
            disabled=disabled,
        )

    # -- summary -------------------------------------------------------------

    def daily_summary(self) -> DailySummary:
        since = hours_ago_iso(SUMMARY_WINDOW_HOURS, now=self._clock())
        try:
            checks = self._read("count_history_since", lambda: self._store.count_history_since(since))
            alerts = self._read("alerts_since", lambda: self._store.alerts_since(since))
        except Exception as e:
            logger.error("[summary] failed: %s: %s", type(e).__name__, e)
            return DailySummary(ok=False, since=since, error=str(e))

        lines = [f"{a.title} {a.message}" for a in alerts]
        drops = sum(1 for a in alerts if a.kind == AlertKind.DROP)
        targets = len(alerts) - drops
        logger.info("[summary] since=%s checks=%d drops=%d targets=%d", since, checks, drops, targets)
        for line in lines:
            logger.info("[summary] %s", line)
        return DailySummary(
            ok=True, since=since, checks=checks, drops=drops, targets_reached=targets, drop_lines=lines
        )

    # -- item management -----------------------------------------------------

    def add(
        self,
        user_id: str,
        product_url: str,
        store_name: str | None = None,
        target_price: float | None = None,
        retail_price: float | None = None,
    ) -> MonitoredItem:
        existing = self._read("find_active_monitor", lambda: self._store.find_active_monitor(user_id, product_url))
        if existing is not None:
            raise MonitorConflictError(user_id, product_url)

        item = MonitoredItem(
            id=str(uuid.uuid4()),
            user_id=user_id,
            product_url=product_url,
            store_name=store_name or normalize_domain(product_url),
            target_price=target_price,
            retail_price=retail_price,
            created_at=self._now_iso(),
        )
        created = self._write("insert_monitor", lambda: self._store.insert_monitor(item))
        logger.info("[monitor] added id=%s url=%s", created.id, created.product_url)

        outcome = self._check_item(created)
        if not outcome.ok:
            logger.warning("[monitor] initial check failed id=%s error=%s", created.id, outcome.error)
        return created

    def _require(self, monitor_id: str) -> MonitoredItem:
        item = self._read("get_monitor", lambda: self._store.get_monitor(monitor_id))
        if item is None:
            raise MonitorNotFoundError(monitor_id)
        return item

    def remove(self, monitor_id: str) -> None:
        self._require(monitor_id)
        self._write("delete_monitor", lambda: self._store.delete_monitor(monitor_id))
        logger.info("[monitor] removed id=%s", monitor_id)

    def enable_tracking(self, monitor_id: str) -> MonitoredItem:
        item = self._require(monitor_id)
        if item.is_active:
            return item
        other = self._read("find_active_monitor", lambda: self._store.find_active_monitor(item.user_id, item.product_url))
        if other is not None and other.id != item.id:
            raise MonitorConflictError(item.user_id, item.product_url)
        fields = {"is_active": True, "price_check_failures": 0}
        self._write("enable_tracking", lambda: self._store.update_monitor(monitor_id, fields))
        logger.info("[monitor] tracking re-enabled id=%s", monitor_id)
        return replace(item, is_active=True, price_check_failures=0)

    def mark_alert_read(self, alert_id: str) -> bool:
        return self._write("mark_alert_read", lambda: self._store.mark_alert_read(alert_id))
