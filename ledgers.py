"""
Owned collections of tables, orders and reservations.

Each ledger is the only writer of its own collection. Cross references
(order -> table, table -> order, reservation -> table) are plain id lookups.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError
from pymongo import ASCENDING, DESCENDING

from database import Batch, DocumentStore
from errors import InvalidTransition, NotFound, ValidationFailed
from schemas import (
    ACTIVE_ORDER_STATUSES,
    ORDERS,
    RESERVATIONS,
    TABLES,
    Order,
    OrderItem,
    Reservation,
    Table,
    to_utc_naive,
    utcnow,
)

logger = logging.getLogger(__name__)

TABLE_STATUSES = ("available", "occupied", "reserved")

# Kitchen progression; "paid" is reached only through a payment.
NEXT_STATUS = {
    "pending": "preparing",
    "preparing": "ready",
    "ready": "served",
}

KITCHEN_COLUMNS = ("pending", "preparing", "ready")


def _validate(model_cls, data: Dict[str, Any]):
    try:
        return model_cls(**data)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationFailed(errors) from e


class TableRegistry:
    def __init__(self, store: DocumentStore):
        self.store = store

    def create(self, number: int, capacity: int) -> str:
        table = _validate(Table, {"number": number, "capacity": capacity})
        if self.store.get_documents(TABLES, {"number": table.number}, limit=1):
            raise ValidationFailed(f"Table {table.number} already exists")
        return self.store.create_document(TABLES, table)

    def get(self, table_id: str) -> Dict[str, Any]:
        table = self.store.get_document(TABLES, table_id)
        if not table:
            raise NotFound(f"Table not found: {table_id}")
        return table

    def list(self) -> List[Dict[str, Any]]:
        return self.store.get_documents(TABLES, sort=[("number", ASCENDING)])

    def available(self) -> List[Dict[str, Any]]:
        return self.store.get_documents(TABLES, {"status": "available"}, sort=[("number", ASCENDING)])

    def set_status(self, table_id: str, status: str) -> Dict[str, Any]:
        """Unconditional status set; always drops the current-order link."""
        if status not in TABLE_STATUSES:
            raise ValidationFailed(f"Invalid table status: {status}")
        patch: Dict[str, Any] = {"status": status, "current_order_id": None, "updated_at": utcnow()}
        if not self.store.update_document(TABLES, table_id, patch):
            raise NotFound(f"Table not found: {table_id}")
        return self.get(table_id)

    def occupy(self, table_id: str, order_id: str) -> Dict[str, Any]:
        if not self.store.update_document(TABLES, table_id, self._occupied(order_id)):
            raise NotFound(f"Table not found: {table_id}")
        return self.get(table_id)

    def free(self, table_id: str) -> Dict[str, Any]:
        return self.set_status(table_id, "available")

    def reserve(self, table_id: str) -> Dict[str, Any]:
        return self.set_status(table_id, "reserved")

    # Batch staging, used by the order ledger to pair table and order writes.
    def stage_occupy(self, batch: Batch, table_id: str, order_id: str) -> None:
        batch.update(TABLES, table_id, self._occupied(order_id))

    def stage_free(self, batch: Batch, table_id: str) -> None:
        batch.update(TABLES, table_id, {"status": "available", "current_order_id": None, "updated_at": utcnow()})

    @staticmethod
    def _occupied(order_id: str) -> Dict[str, Any]:
        return {"status": "occupied", "current_order_id": order_id, "updated_at": utcnow()}


class OrderLedger:
    def __init__(self, store: DocumentStore, tables: TableRegistry):
        self.store = store
        self.tables = tables

    def create_order(self, table_id: str, items: Iterable[Any], total_amount: float,
                     notes: Optional[str] = None, waiter_id: Optional[str] = None) -> str:
        """
        Write a new pending order and occupy its table in one batch.

        All validation happens before anything is written: an empty cart, a
        quantity below one, an unknown table or a total that does not match
        the item lines is rejected.
        """
        items = list(items or [])
        if not items:
            raise ValidationFailed("Order must contain at least one item")
        snapshot_items: List[OrderItem] = []
        for it in items:
            if isinstance(it, OrderItem):
                snapshot_items.append(it)
            else:
                snapshot_items.append(_validate(OrderItem, dict(it)))

        computed = round(sum(it.price * it.quantity for it in snapshot_items), 2)
        if abs(computed - float(total_amount)) > 0.005:
            raise ValidationFailed(
                f"Total amount {total_amount} does not match item total {computed}"
            )

        table = self.store.get_document(TABLES, table_id)
        if not table:
            raise ValidationFailed(f"Unknown table: {table_id}")

        now = utcnow()
        order = Order(
            table_id=table_id,
            table_number=table.get("number"),
            waiter_id=waiter_id,
            items=snapshot_items,
            total_amount=computed,
            notes=notes or None,
            created_at=now,
            updated_at=now,
        )

        batch = self.store.batch()
        order_id = batch.new_id()
        batch.set(ORDERS, order_id, order)
        self.tables.stage_occupy(batch, table_id, order_id)
        batch.commit()
        logger.info("Order %s created for table %s (%.2f)", order_id, table.get("number"), computed)
        return order_id

    def get(self, order_id: str) -> Dict[str, Any]:
        order = self.store.get_document(ORDERS, order_id)
        if not order:
            raise NotFound(f"Order not found: {order_id}")
        return order

    def advance_status(self, order_id: str, new_status: str) -> Dict[str, Any]:
        if new_status == "paid":
            raise InvalidTransition("Orders become paid only through a payment")
        order = self.get(order_id)
        current = order["status"]
        if NEXT_STATUS.get(current) != new_status:
            raise InvalidTransition(f"Cannot move order from {current} to {new_status}")
        # No version check: two stations bumping at once resolve last-write-wins.
        self.store.update_document(ORDERS, order_id, {"status": new_status, "updated_at": utcnow()})
        logger.info("Order %s: %s -> %s", order_id, current, new_status)
        return self.get(order_id)

    def bump(self, order_id: str) -> Dict[str, Any]:
        order = self.get(order_id)
        nxt = NEXT_STATUS.get(order["status"])
        if nxt is None:
            raise InvalidTransition(f"Order in status {order['status']} cannot be bumped")
        return self.advance_status(order_id, nxt)

    def mark_paid(self, order_id: str, payment_reference: str) -> Dict[str, Any]:
        if not payment_reference:
            raise ValidationFailed("Payment reference is required")
        order = self.get(order_id)
        if order["status"] == "paid":
            raise InvalidTransition(f"Order {order_id} is already paid")

        batch = self.store.batch()
        batch.update(ORDERS, order_id, {
            "status": "paid",
            "payment_status": "paid",
            "payment_id": payment_reference,
            "updated_at": utcnow(),
        })
        table = self.store.get_document(TABLES, order["table_id"])
        if table and table.get("current_order_id") == order_id:
            self.tables.stage_free(batch, order["table_id"])
        elif table:
            logger.warning("Table %s no longer holds order %s; leaving it %s",
                           order["table_id"], order_id, table.get("status"))
        batch.commit()
        logger.info("Order %s paid (%s)", order_id, payment_reference)
        return self.get(order_id)

    def active_orders(self, table_id: Optional[str] = None) -> List[Dict[str, Any]]:
        filt: Dict[str, Any] = {"status": {"$in": list(ACTIVE_ORDER_STATUSES)}}
        if table_id:
            filt["table_id"] = table_id
        return self.store.get_documents(ORDERS, filt, sort=[("created_at", DESCENDING)])

    def open_order_for_table(self, table_id: str) -> Optional[Dict[str, Any]]:
        orders = self.active_orders(table_id)
        return orders[0] if orders else None

    def kitchen_board(self) -> Dict[str, List[Dict[str, Any]]]:
        orders = self.store.get_documents(
            ORDERS, {"status": {"$in": list(KITCHEN_COLUMNS)}}, sort=[("created_at", ASCENDING)]
        )
        board: Dict[str, List[Dict[str, Any]]] = {status: [] for status in KITCHEN_COLUMNS}
        for order in orders:
            board[order["status"]].append(order)
        return board


class ReservationLedger:
    EDITABLE = ("customer_name", "customer_phone", "party_size", "reservation_time", "status", "notes")

    def __init__(self, store: DocumentStore):
        self.store = store

    def create(self, table_id: str, customer_name: str, party_size: int, reservation_time: datetime,
               customer_phone: Optional[str] = None, notes: Optional[str] = None) -> str:
        reservation = _validate(Reservation, {
            "table_id": table_id,
            "customer_name": customer_name,
            "customer_phone": customer_phone or None,
            "party_size": party_size,
            "reservation_time": reservation_time,
            "notes": notes or None,
        })
        reservation_id = self.store.create_document(RESERVATIONS, reservation)
        logger.info("Reservation %s for %s on table %s", reservation_id, customer_name, table_id)
        return reservation_id

    def get(self, reservation_id: str) -> Dict[str, Any]:
        reservation = self.store.get_document(RESERVATIONS, reservation_id)
        if not reservation:
            raise NotFound(f"Reservation not found: {reservation_id}")
        return reservation

    def list(self) -> List[Dict[str, Any]]:
        return self.store.get_documents(RESERVATIONS, sort=[("reservation_time", ASCENDING)])

    def update(self, reservation_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        current = self.get(reservation_id)
        unknown = set(patch) - set(self.EDITABLE)
        if unknown:
            raise ValidationFailed(f"Fields cannot be changed: {', '.join(sorted(unknown))}")
        merged = {k: current.get(k) for k in Reservation.model_fields if k in current}
        merged.update(patch)
        validated = _validate(Reservation, merged)
        changes = {k: getattr(validated, k) for k in patch}
        self.store.update_document(RESERVATIONS, reservation_id, changes)
        return self.get(reservation_id)

    def cancel(self, reservation_id: str) -> Dict[str, Any]:
        """Flip status to cancelled. Table state is not touched here."""
        self.get(reservation_id)
        self.store.update_document(RESERVATIONS, reservation_id, {"status": "cancelled"})
        logger.info("Reservation %s cancelled", reservation_id)
        return self.get(reservation_id)

    def for_table(self, table_id: str) -> List[Dict[str, Any]]:
        return self.store.get_documents(
            RESERVATIONS, {"table_id": table_id, "status": "confirmed"},
            sort=[("reservation_time", ASCENDING)],
        )

    def upcoming(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = to_utc_naive(now) if now else utcnow()
        return self.store.get_documents(
            RESERVATIONS, {"status": "confirmed", "reservation_time": {"$gte": now}},
            sort=[("reservation_time", ASCENDING)],
        )
