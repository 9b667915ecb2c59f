"""
Dashboard statistics derived from order, table and inventory snapshots.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from pymongo import DESCENDING

from schemas import ORDERS, utcnow

KITCHEN_ACTIVE = ("pending", "preparing", "ready")


def start_of_day(now: Optional[datetime] = None) -> datetime:
    now = now or utcnow()
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def dashboard_stats(todays_orders: Iterable[Dict[str, Any]],
                    recent_orders: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    revenue = 0.0
    active = 0
    total = 0
    for order in todays_orders:
        total += 1
        if order.get("status") == "paid" or order.get("payment_status") == "paid":
            revenue += float(order.get("total_amount") or 0)
        if order.get("status") in KITCHEN_ACTIVE:
            active += 1
    return {
        "active_orders": active,
        "todays_revenue": round(revenue, 2),
        "total_orders_today": total,
        "recent_orders": recent_orders or [],
    }


def table_summary(tables: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    counts = {"available": 0, "occupied": 0, "reserved": 0}
    for table in tables:
        status = table.get("status")
        if status in counts:
            counts[status] += 1
    return counts


def restock_level(item: Dict[str, Any]) -> float:
    """Quantity a restock brings an item back up to."""
    return float(item.get("threshold_level") or 0) * 3


def stock_percent(item: Dict[str, Any]) -> int:
    full = restock_level(item)
    if not full:
        return 100
    return min(100, int(round(float(item.get("quantity") or 0) / full * 100)))


def inventory_summary(items: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    low, healthy = [], []
    for item in items:
        item = dict(item, stock_percent=stock_percent(item))
        if item.get("quantity", 0) <= item.get("threshold_level", 0):
            low.append(item)
        else:
            healthy.append(item)
    return {"low_stock": low, "healthy": healthy, "low_stock_count": len(low)}


def collect_dashboard(store, now: Optional[datetime] = None) -> Dict[str, Any]:
    todays = store.get_documents(ORDERS, {"created_at": {"$gte": start_of_day(now)}})
    recent = store.get_documents(ORDERS, sort=[("created_at", DESCENDING)], limit=5)
    return dashboard_stats(todays, recent)


def live_dashboard(store, callback: Callable[[Dict[str, Any]], None],
                   now: Optional[datetime] = None) -> Callable[[], None]:
    """
    Push fresh stats to ``callback`` whenever today's or the most recent
    orders change. Returns one handle that stops both feeds.
    """
    state: Dict[str, Any] = {"today": [], "recent": []}

    def emit():
        callback(dashboard_stats(state["today"], state["recent"]))

    def on_today(snapshot):
        state["today"] = snapshot.documents
        emit()

    def on_recent(snapshot):
        state["recent"] = snapshot.documents
        emit()

    day_start = start_of_day(now)
    unsub_today = store.subscribe(ORDERS, {"created_at": {"$gte": day_start}}, on_today)
    unsub_recent = store.subscribe(ORDERS, None, on_recent, sort=[("created_at", DESCENDING)], limit=5)

    def unsubscribe():
        unsub_today()
        unsub_recent()

    return unsubscribe
