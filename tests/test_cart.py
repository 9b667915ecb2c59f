import pytest

from cart import Cart, CartItem
from errors import ValidationFailed
from schemas import ORDERS


def line(menu_item_id="item-a", quantity=1, price=100.0, **kwargs):
    return CartItem(menu_item_id=menu_item_id, name=menu_item_id.title(), quantity=quantity, price=price, **kwargs)


def test_same_item_lines_are_merged():
    cart = Cart()
    cart.add_item(line(quantity=1))
    cart.add_item(line(quantity=2))
    cart.add_item(line(addons=["Cheese"]))

    assert [i.quantity for i in cart.items] == [3, 1]
    assert cart.total() == 400.0


def test_quantity_below_one_removes_line():
    cart = Cart()
    item = cart.add_item(line())
    cart.update_quantity(item.id, 4)
    assert cart.items[0].quantity == 4
    cart.update_quantity(item.id, 0)
    assert cart.items == []


def test_remove_item():
    cart = Cart()
    keep = cart.add_item(line("item-a"))
    drop = cart.add_item(line("item-b", price=50))
    cart.remove_item(drop.id)
    assert [i.id for i in cart.items] == [keep.id]


def test_submit_requires_table_and_items(coordinator, table_id):
    cart = Cart()
    cart.add_item(line())
    with pytest.raises(ValidationFailed):
        cart.submit(coordinator)

    empty = Cart()
    empty.select_table(coordinator.tables.get(table_id))
    with pytest.raises(ValidationFailed):
        empty.submit(coordinator)


def test_submit_creates_order_and_clears(coordinator, store, table_id):
    cart = Cart()
    cart.select_table(coordinator.tables.get(table_id))
    cart.add_item(line(quantity=2))
    cart.add_item(line("item-b", price=45.5))

    order_id = cart.submit(coordinator, notes="no onions", waiter_id="w1")

    order = store.get_document(ORDERS, order_id)
    assert order["total_amount"] == 245.5
    assert order["notes"] == "no onions"
    assert "id" not in order["items"][0]
    assert cart.items == [] and cart.table is None
    assert coordinator.tables.get(table_id)["status"] == "occupied"


def test_failed_submit_keeps_cart(coordinator):
    cart = Cart()
    cart.select_table({"id": "650000000000000000000000", "number": 9})
    cart.add_item(line())
    with pytest.raises(ValidationFailed):
        cart.submit(coordinator)
    assert len(cart.items) == 1
