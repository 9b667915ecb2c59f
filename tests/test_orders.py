import threading

import mongomock
import pytest
from pymongo.errors import OperationFailure

from errors import InvalidTransition, StoreWriteError, ValidationFailed
from schemas import ORDERS, TABLES


def test_create_order_occupies_table(coordinator, table_id, line_a):
    order_id = coordinator.create_order(table_id, [line_a], 200)

    order = coordinator.orders.get(order_id)
    table = coordinator.tables.get(table_id)
    assert order["status"] == "pending"
    assert order["payment_status"] == "unpaid"
    assert order["total_amount"] == 200
    assert order["table_number"] == 1
    assert table["status"] == "occupied"
    assert table["current_order_id"] == order_id


@pytest.mark.parametrize("items, total", [
    ([], 0),
    ([{"menu_item_id": "a", "name": "A", "quantity": 0, "price": 10}], 0),
    ([{"menu_item_id": "a", "name": "A", "quantity": 1, "price": -5}], -5),
    ([{"menu_item_id": "a", "name": "A", "quantity": 2, "price": 10}], 25),
])
def test_create_order_rejects_bad_input_before_writing(coordinator, store, table_id, items, total):
    with pytest.raises(ValidationFailed):
        coordinator.create_order(table_id, items, total)
    assert store.get_documents(ORDERS) == []
    assert coordinator.tables.get(table_id)["status"] == "available"


def test_create_order_rejects_unknown_table(coordinator, store, line_a):
    with pytest.raises(ValidationFailed):
        coordinator.create_order("650000000000000000000000", [line_a], 200)
    assert store.get_documents(ORDERS) == []


def test_order_and_table_are_written_together(coordinator, store, table_id, line_a, monkeypatch):
    original = mongomock.collection.Collection.update_one

    def reject_table_writes(self, filter, update, *args, **kwargs):
        if self.name == TABLES:
            raise OperationFailure("write rejected")
        return original(self, filter, update, *args, **kwargs)

    monkeypatch.setattr(mongomock.collection.Collection, "update_one", reject_table_writes)

    with pytest.raises(StoreWriteError):
        coordinator.create_order(table_id, [line_a], 200)

    assert store.get_documents(ORDERS) == []
    table = store.get_document(TABLES, table_id)
    assert table["status"] == "available"
    assert table["current_order_id"] is None


def test_reader_never_sees_half_a_batch(coordinator, store, table_id, line_a, monkeypatch):
    original = mongomock.collection.Collection.update_one
    readers = []
    seen = {}

    def read_floor():
        seen["orders"] = len(store.get_documents(ORDERS))
        seen["table"] = store.get_document(TABLES, table_id)["status"]

    def update_with_reader(self, filter, update, *args, **kwargs):
        if self.name == TABLES and not readers:
            reader = threading.Thread(target=read_floor)
            readers.append(reader)
            reader.start()
            reader.join(0.2)
        return original(self, filter, update, *args, **kwargs)

    monkeypatch.setattr(mongomock.collection.Collection, "update_one", update_with_reader)

    coordinator.create_order(table_id, [line_a], 200)

    readers[0].join(5)
    assert seen == {"orders": 1, "table": "occupied"}


def test_status_moves_forward_one_step_at_a_time(coordinator, table_id, line_a):
    order_id = coordinator.create_order(table_id, [line_a], 200)

    assert coordinator.advance_order(order_id, "preparing")["status"] == "preparing"
    assert coordinator.advance_order(order_id, "ready")["status"] == "ready"
    assert coordinator.advance_order(order_id, "served")["status"] == "served"

    with pytest.raises(InvalidTransition):
        coordinator.advance_order(order_id, "pending")


@pytest.mark.parametrize("target", ["ready", "served", "pending", "paid"])
def test_pending_order_cannot_skip_ahead(coordinator, table_id, line_a, target):
    order_id = coordinator.create_order(table_id, [line_a], 200)
    with pytest.raises(InvalidTransition):
        coordinator.advance_order(order_id, target)
    assert coordinator.orders.get(order_id)["status"] == "pending"


def test_advance_updates_timestamp(coordinator, table_id, line_a):
    order_id = coordinator.create_order(table_id, [line_a], 200)
    before = coordinator.orders.get(order_id)["updated_at"]
    after = coordinator.advance_order(order_id, "preparing")["updated_at"]
    assert after >= before


def test_bump_walks_the_kitchen_board(coordinator, table_id, line_a):
    order_id = coordinator.create_order(table_id, [line_a], 200)
    assert coordinator.orders.kitchen_board()["pending"][0]["id"] == order_id

    coordinator.bump_order(order_id)
    coordinator.bump_order(order_id)
    board = coordinator.orders.kitchen_board()
    assert [o["id"] for o in board["ready"]] == [order_id]

    assert coordinator.bump_order(order_id)["status"] == "served"
    with pytest.raises(InvalidTransition):
        coordinator.bump_order(order_id)


def test_mark_paid_frees_the_table(coordinator, table_id, line_a):
    order_id = coordinator.create_order(table_id, [line_a], 200)
    for status in ("preparing", "ready", "served"):
        coordinator.advance_order(order_id, status)

    order = coordinator.mark_paid(order_id, "pay_123")
    table = coordinator.tables.get(table_id)

    assert order["status"] == "paid"
    assert order["payment_status"] == "paid"
    assert order["payment_id"] == "pay_123"
    assert table["status"] == "available"
    assert table["current_order_id"] is None


def test_guest_can_pay_before_food_arrives(coordinator, table_id, line_a):
    order_id = coordinator.create_order(table_id, [line_a], 200)
    assert coordinator.mark_paid(order_id, "pay_early")["status"] == "paid"
    assert coordinator.tables.get(table_id)["status"] == "available"


def test_paid_is_terminal(coordinator, table_id, line_a):
    order_id = coordinator.create_order(table_id, [line_a], 200)
    coordinator.mark_paid(order_id, "pay_1")

    with pytest.raises(InvalidTransition):
        coordinator.mark_paid(order_id, "pay_2")
    with pytest.raises(InvalidTransition):
        coordinator.advance_order(order_id, "preparing")
    assert coordinator.orders.get(order_id)["payment_id"] == "pay_1"


def test_mark_paid_leaves_a_reseated_table_alone(coordinator, table_id, line_a):
    first = coordinator.create_order(table_id, [line_a], 200)
    second = coordinator.create_order(table_id, [line_a], 200)

    coordinator.mark_paid(first, "pay_first")

    table = coordinator.tables.get(table_id)
    assert table["status"] == "occupied"
    assert table["current_order_id"] == second


def test_active_orders_exclude_paid(coordinator, table_id, line_a):
    open_id = coordinator.create_order(table_id, [line_a], 200)
    paid_id = coordinator.create_order(table_id, [line_a], 200)
    coordinator.mark_paid(paid_id, "pay_x")

    assert [o["id"] for o in coordinator.orders.active_orders()] == [open_id]
    assert coordinator.orders.open_order_for_table(table_id)["id"] == open_id


def test_occupied_table_points_at_unpaid_order(coordinator, table_id, line_a):
    coordinator.create_order(table_id, [line_a], 200)
    for table in coordinator.tables.list():
        if table["status"] == "occupied":
            order = coordinator.orders.get(table["current_order_id"])
            assert order["status"] != "paid"
