"""
Cross-entity rules keeping orders, tables and reservations consistent.

Creating an order occupies its table and paying it frees the table, both in
one batch. Reservation steps are separate writes: a reservation is created
and then its table marked reserved; a cancellation frees the table only if a
fresh read finds no confirmed reservation left for it. Two cancellations
racing on the same table can both see one reservation remaining, leaving the
table reserved; the manual override corrects that.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from errors import PartialFailure, PaymentFailed, RestaurantError, ValidationFailed
from ledgers import OrderLedger, ReservationLedger, TableRegistry
from schemas import MENU_ITEMS, TABLES

logger = logging.getLogger(__name__)


def _check_fits(table: Dict[str, Any], party_size: Optional[int]) -> None:
    if party_size is not None and party_size > table.get("capacity", 0):
        raise ValidationFailed(
            f"Party of {party_size} does not fit table {table.get('number')} (seats {table.get('capacity')})"
        )


class WorkflowCoordinator:
    def __init__(self, store, tables: Optional[TableRegistry] = None,
                 orders: Optional[OrderLedger] = None,
                 reservations: Optional[ReservationLedger] = None):
        self.store = store
        self.tables = tables or TableRegistry(store)
        self.orders = orders or OrderLedger(store, self.tables)
        self.reservations = reservations or ReservationLedger(store)

    # ----------------------------
    # Orders
    # ----------------------------
    def create_order(self, table_id: str, items: Iterable[Any], total_amount: float,
                     notes: Optional[str] = None, waiter_id: Optional[str] = None) -> str:
        return self.orders.create_order(table_id, items, total_amount, notes=notes, waiter_id=waiter_id)

    def advance_order(self, order_id: str, new_status: str) -> Dict[str, Any]:
        return self.orders.advance_status(order_id, new_status)

    def bump_order(self, order_id: str) -> Dict[str, Any]:
        return self.orders.bump(order_id)

    def mark_paid(self, order_id: str, payment_reference: str) -> Dict[str, Any]:
        return self.orders.mark_paid(order_id, payment_reference)

    def take_payment(self, order_id: str, gateway, currency: str = "INR") -> Dict[str, Any]:
        """
        Start payment for an order through ``gateway``.

        A gateway that captures on the spot settles the order right away.
        Otherwise the checkout details are returned and the order stays
        unpaid until the payment is confirmed with ``mark_paid``.
        """
        order = self.orders.get(order_id)
        if order["status"] == "paid":
            raise PaymentFailed(f"Order {order_id} is already paid")
        result = gateway.initiate_payment(order["total_amount"], currency, receipt=order_id)
        if not result.success:
            logger.warning("Payment for order %s failed: %s", order_id, result.error)
            raise PaymentFailed(result.error or "Payment failed")
        if result.captured and result.payment_id:
            order = self.orders.mark_paid(order_id, result.payment_id)
        return {"captured": result.captured, "order": order, "receipt": result.receipt}

    # ----------------------------
    # Reservations
    # ----------------------------
    def create_reservation(self, table_id: str, customer_name: str, party_size: int,
                           reservation_time: datetime, customer_phone: Optional[str] = None,
                           notes: Optional[str] = None) -> str:
        table = self.store.get_document(TABLES, table_id)
        if not table:
            raise ValidationFailed(f"Unknown table: {table_id}")
        _check_fits(table, party_size)

        reservation_id = self.reservations.create(
            table_id, customer_name, party_size, reservation_time,
            customer_phone=customer_phone, notes=notes,
        )
        try:
            self.reserve_table(table_id)
        except RestaurantError as e:
            logger.error("Reservation %s stored but table %s not marked reserved: %s",
                         reservation_id, table_id, e.detail)
            raise PartialFailure(
                f"Reservation {reservation_id} created but table status update failed; retry reserving the table",
                completed_id=reservation_id,
                pending_step="reserve_table",
            ) from e
        return reservation_id

    def reserve_table(self, table_id: str) -> Dict[str, Any]:
        """Idempotent; a seated table stays occupied."""
        table = self.tables.get(table_id)
        if table["status"] in ("reserved", "occupied"):
            return table
        return self.tables.reserve(table_id)

    def update_reservation(self, reservation_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Edit a reservation. A new party size is checked against the table first;
        a move out of "confirmed" releases the table the way a cancel does, and
        a move back into it marks the table reserved again.
        """
        current = self.reservations.get(reservation_id)
        if patch.get("party_size") is not None:
            table = self.store.get_document(TABLES, current["table_id"])
            if table:
                _check_fits(table, patch["party_size"])
        updated = self.reservations.update(reservation_id, patch)
        was_confirmed = current["status"] == "confirmed"
        if was_confirmed and updated["status"] != "confirmed":
            self._release_if_unbooked(updated["table_id"])
        elif not was_confirmed and updated["status"] == "confirmed":
            self.reserve_table(updated["table_id"])
        return updated

    def cancel_reservation(self, reservation_id: str) -> Dict[str, Any]:
        reservation = self.reservations.cancel(reservation_id)
        self._release_if_unbooked(reservation["table_id"])
        return reservation

    def _release_if_unbooked(self, table_id: str) -> None:
        # Decide from a fresh read, not from anything cached before the cancel.
        remaining = self.reservations.for_table(table_id)
        if remaining:
            logger.info("Table %s keeps %d confirmed reservation(s)", table_id, len(remaining))
            return
        table = self.store.get_document(TABLES, table_id)
        if table and table.get("status") == "reserved":
            self.tables.free(table_id)
            logger.info("Table %s released after its last reservation ended", table_id)

    # ----------------------------
    # Floor-plan corrections
    # ----------------------------
    def override_table_status(self, table_id: str, status: str) -> Dict[str, Any]:
        logger.info("Manual status override: table %s -> %s", table_id, status)
        return self.tables.set_status(table_id, status)

    # ----------------------------
    # Voice ordering
    # ----------------------------
    def voice_order(self, transcript: str, parser, cart=None) -> List[Any]:
        """Parse a transcript against the available menu; recognised lines go into ``cart``."""
        menu = self.store.get_documents(MENU_ITEMS, {"is_available": True})
        items = parser.parse(transcript, menu)
        if cart is not None:
            for item in items:
                cart.add_item(item)
        return items
