from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import Any

from supabase import Client, create_client

from .errors import MonitorConflictError, StoreError
from .models import AlertKind, MonitoredItem, PriceAlert, PriceHistoryEntry, PriceSource, Severity


logger = logging.getLogger(__name__)

MONITORS_TABLE = "price_monitors"
HISTORY_TABLE = "price_history"
ALERTS_TABLE = "price_alerts"
INCREMENT_FAILURES_RPC = "increment_price_check_failures"
UNIQUE_VIOLATION = "23505"


class MonitorStore(ABC):
    """Query/command interface over the durable store.

    Implementations raise on failure; callers wrap calls with a breaker and retry.
    """

    @abstractmethod
    def list_active_monitors(self) -> list[MonitoredItem]: ...

    @abstractmethod
    def get_monitor(self, monitor_id: str) -> MonitoredItem | None: ...

    @abstractmethod
    def find_active_monitor(self, user_id: str, product_url: str) -> MonitoredItem | None: ...

    @abstractmethod
    def insert_monitor(self, item: MonitoredItem) -> MonitoredItem: ...

    @abstractmethod
    def update_monitor(self, monitor_id: str, fields: dict[str, Any]) -> None: ...

    @abstractmethod
    def increment_failures(self, monitor_id: str) -> int:
        """Atomically add one to the failure counter and return the new value."""

    @abstractmethod
    def append_history(self, entry: PriceHistoryEntry) -> None: ...

    @abstractmethod
    def insert_alert(self, alert: PriceAlert) -> PriceAlert: ...

    @abstractmethod
    def count_history_since(self, since_iso: str) -> int: ...

    @abstractmethod
    def alerts_since(self, since_iso: str) -> list[PriceAlert]: ...

    @abstractmethod
    def has_unread_target_alert(self, monitor_id: str) -> bool: ...

    @abstractmethod
    def delete_monitor(self, monitor_id: str) -> None:
        """Delete the item and its price history. Its alerts are kept."""

    @abstractmethod
    def mark_alert_read(self, alert_id: str) -> bool: ...


def _opt_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


def item_from_row(row: dict[str, Any]) -> MonitoredItem:
    return MonitoredItem(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        product_url=row["product_url"],
        store_name=row.get("store_name") or "",
        target_price=_opt_float(row.get("target_price")),
        retail_price=_opt_float(row.get("retail_price")),
        last_price=_opt_float(row.get("last_price")),
        last_checked_at=row.get("last_checked_at"),
        lowest_price=_opt_float(row.get("lowest_price")),
        price_check_failures=int(row.get("price_check_failures") or 0),
        is_active=bool(row.get("is_active", True)),
        notification_sent=bool(row.get("notification_sent", False)),
        created_at=row.get("created_at"),
    )


def item_to_row(item: MonitoredItem) -> dict[str, Any]:
    row = asdict(item)
    if row.get("created_at") is None:
        row.pop("created_at", None)
    return row


def alert_from_row(row: dict[str, Any]) -> PriceAlert:
    return PriceAlert(
        id=str(row["id"]) if row.get("id") is not None else None,
        monitor_id=str(row["monitor_id"]) if row.get("monitor_id") is not None else None,
        user_id=str(row["user_id"]),
        severity=Severity(row["severity"]),
        title=row.get("title") or "",
        message=row.get("message") or "",
        current_price=float(row["current_price"]),
        previous_price=float(row["previous_price"]),
        percentage_off=int(row["percentage_off"]),
        is_read=bool(row.get("is_read", False)),
        kind=AlertKind(row.get("alert_kind") or AlertKind.DROP.value),
        created_at=row.get("created_at") or "",
    )


def alert_to_row(alert: PriceAlert) -> dict[str, Any]:
    row = asdict(alert)
    row["severity"] = alert.severity.value
    row["alert_kind"] = AlertKind(row.pop("kind")).value
    if row.get("id") is None:
        row.pop("id", None)
    return row


def history_to_row(entry: PriceHistoryEntry) -> dict[str, Any]:
    return {
        "monitor_id": entry.monitor_id,
        "price": entry.price,
        "in_stock": entry.in_stock,
        "checked_at": entry.checked_at,
        "source": PriceSource(entry.source).value,
    }


class SupabaseMonitorStore(MonitorStore):
    def __init__(self, client: Client) -> None:
        self._client = client

    @classmethod
    def from_credentials(cls, url: str, key: str) -> "SupabaseMonitorStore":
        client = create_client(url, key)
        logger.info("[store] connected url=%s", url)
        return cls(client)

    @staticmethod
    def _execute(query: Any, op: str) -> Any:
        try:
            return query.execute()
        except Exception as e:
            code = getattr(e, "code", None)
            raise StoreError(
                f"{op} failed: {type(e).__name__}: {e}",
                code=str(code) if code is not None else None,
            ) from e

    def list_active_monitors(self) -> list[MonitoredItem]:
        q = self._client.table(MONITORS_TABLE).select("*").eq("is_active", True).order("created_at")
        resp = self._execute(q, "list_active_monitors")
        return [item_from_row(r) for r in (resp.data or [])]

    def get_monitor(self, monitor_id: str) -> MonitoredItem | None:
        q = self._client.table(MONITORS_TABLE).select("*").eq("id", monitor_id).limit(1)
        rows = self._execute(q, "get_monitor").data or []
        return item_from_row(rows[0]) if rows else None

    def find_active_monitor(self, user_id: str, product_url: str) -> MonitoredItem | None:
        q = (
            self._client.table(MONITORS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("product_url", product_url)
            .eq("is_active", True)
            .limit(1)
        )
        rows = self._execute(q, "find_active_monitor").data or []
        return item_from_row(rows[0]) if rows else None

    def insert_monitor(self, item: MonitoredItem) -> MonitoredItem:
        q = self._client.table(MONITORS_TABLE).insert(item_to_row(item))
        try:
            rows = self._execute(q, "insert_monitor").data or []
        except StoreError as e:
            # price_monitors_active_user_url rejected a second active row.
            if e.code == UNIQUE_VIOLATION or "duplicate key" in str(e):
                raise MonitorConflictError(item.user_id, item.product_url) from e
            raise
        return item_from_row(rows[0]) if rows else item

    def update_monitor(self, monitor_id: str, fields: dict[str, Any]) -> None:
        q = self._client.table(MONITORS_TABLE).update(fields).eq("id", monitor_id)
        self._execute(q, "update_monitor")

    def increment_failures(self, monitor_id: str) -> int:
        q = self._client.rpc(INCREMENT_FAILURES_RPC, {"monitor_id": monitor_id})
        data = self._execute(q, "increment_failures").data
        if isinstance(data, list):
            data = data[0] if data else None
        if isinstance(data, dict):
            data = next(iter(data.values()), None)
        if data is None:
            raise StoreError(f"increment_failures returned no value for monitor={monitor_id}")
        return int(data)

    def append_history(self, entry: PriceHistoryEntry) -> None:
        q = self._client.table(HISTORY_TABLE).insert(history_to_row(entry))
        self._execute(q, "append_history")

    def insert_alert(self, alert: PriceAlert) -> PriceAlert:
        q = self._client.table(ALERTS_TABLE).insert(alert_to_row(alert))
        rows = self._execute(q, "insert_alert").data or []
        return alert_from_row(rows[0]) if rows else alert

    def count_history_since(self, since_iso: str) -> int:
        q = self._client.table(HISTORY_TABLE).select("id", count="exact").gte("checked_at", since_iso)
        resp = self._execute(q, "count_history_since")
        if resp.count is not None:
            return int(resp.count)
        return len(resp.data or [])

    def alerts_since(self, since_iso: str) -> list[PriceAlert]:
        q = self._client.table(ALERTS_TABLE).select("*").gte("created_at", since_iso).order("created_at")
        resp = self._execute(q, "alerts_since")
        return [alert_from_row(r) for r in (resp.data or [])]

    def has_unread_target_alert(self, monitor_id: str) -> bool:
        q = (
            self._client.table(ALERTS_TABLE)
            .select("id")
            .eq("monitor_id", monitor_id)
            .eq("alert_kind", AlertKind.TARGET.value)
            .eq("is_read", False)
            .limit(1)
        )
        return bool(self._execute(q, "has_unread_target_alert").data)

    def delete_monitor(self, monitor_id: str) -> None:
        # price_alerts.monitor_id is nulled by the foreign key, so alerts survive.
        self._execute(self._client.table(HISTORY_TABLE).delete().eq("monitor_id", monitor_id), "delete_history")
        self._execute(self._client.table(MONITORS_TABLE).delete().eq("id", monitor_id), "delete_monitor")

    def mark_alert_read(self, alert_id: str) -> bool:
        q = self._client.table(ALERTS_TABLE).update({"is_read": True}).eq("id", alert_id)
        rows = self._execute(q, "mark_alert_read").data or []
        return bool(rows)
