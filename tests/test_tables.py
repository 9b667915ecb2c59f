import pytest

from errors import NotFound, ValidationFailed


def test_tables_listed_by_number(coordinator):
    coordinator.tables.create(3, 2)
    coordinator.tables.create(1, 4)
    coordinator.tables.create(2, 6)
    assert [t["number"] for t in coordinator.tables.list()] == [1, 2, 3]
    assert all(t["status"] == "available" for t in coordinator.tables.available())


def test_table_numbers_are_unique(coordinator, table_id):
    with pytest.raises(ValidationFailed):
        coordinator.tables.create(1, 2)


def test_free_is_idempotent(coordinator, table_id, line_a):
    coordinator.create_order(table_id, [line_a], 200)

    assert coordinator.tables.free(table_id)["status"] == "available"
    again = coordinator.tables.free(table_id)
    assert again["status"] == "available"
    assert again["current_order_id"] is None


def test_reserve_is_idempotent(coordinator, table_id):
    coordinator.reserve_table(table_id)
    assert coordinator.reserve_table(table_id)["status"] == "reserved"


def test_reserving_a_seated_table_keeps_it_occupied(coordinator, table_id, line_a):
    order_id = coordinator.create_order(table_id, [line_a], 200)
    table = coordinator.reserve_table(table_id)
    assert table["status"] == "occupied"
    assert table["current_order_id"] == order_id


def test_manual_override_bypasses_order_linkage(coordinator, table_id, line_a):
    order_id = coordinator.create_order(table_id, [line_a], 200)

    table = coordinator.override_table_status(table_id, "available")

    assert table["status"] == "available"
    assert table["current_order_id"] is None
    # The order itself is untouched by a floor-plan correction.
    assert coordinator.orders.get(order_id)["status"] == "pending"


def test_override_rejects_unknown_status(coordinator, table_id):
    with pytest.raises(ValidationFailed):
        coordinator.override_table_status(table_id, "closed")


def test_unknown_table(coordinator):
    with pytest.raises(NotFound):
        coordinator.tables.free("650000000000000000000000")
    with pytest.raises(NotFound):
        coordinator.tables.get("not-an-id")


def test_occupy_links_the_order(coordinator, table_id):
    table = coordinator.tables.occupy(table_id, "650000000000000000000001")
    assert table["status"] == "occupied"
    assert table["current_order_id"] == "650000000000000000000001"
    with pytest.raises(NotFound):
        coordinator.tables.occupy("650000000000000000000000", "650000000000000000000001")


@pytest.mark.parametrize("status", ["reserved", "occupied"])
def test_override_drops_the_order_link(coordinator, table_id, line_a, status):
    order_id = coordinator.create_order(table_id, [line_a], 200)

    table = coordinator.override_table_status(table_id, status)
    assert table["current_order_id"] is None

    # Paying the old order no longer touches a table the operator repurposed.
    coordinator.mark_paid(order_id, "pay_late")
    assert coordinator.tables.get(table_id)["status"] == status
