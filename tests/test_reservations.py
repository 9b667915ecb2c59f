from datetime import datetime, timedelta, timezone

import pytest

from errors import NotFound, PartialFailure, StoreWriteError, ValidationFailed
from schemas import RESERVATIONS, utcnow


def tomorrow_at_7pm():
    return (utcnow() + timedelta(days=1)).replace(hour=19, minute=0, second=0, microsecond=0)


@pytest.fixture
def t2(coordinator):
    return coordinator.tables.create(2, 4)


def test_reservation_reserves_then_cancel_frees(coordinator, t2):
    reservation_id = coordinator.create_reservation(t2, "Asha", 2, tomorrow_at_7pm())

    assert coordinator.reservations.get(reservation_id)["status"] == "confirmed"
    assert coordinator.tables.get(t2)["status"] == "reserved"

    cancelled = coordinator.cancel_reservation(reservation_id)

    assert cancelled["status"] == "cancelled"
    assert coordinator.tables.get(t2)["status"] == "available"


def test_party_larger_than_table_is_rejected_before_writing(coordinator, store, t2):
    with pytest.raises(ValidationFailed):
        coordinator.create_reservation(t2, "Big group", 6, tomorrow_at_7pm())
    assert store.get_documents(RESERVATIONS) == []
    assert coordinator.tables.get(t2)["status"] == "available"


@pytest.mark.parametrize("name, size", [("", 2), ("Ravi", 0)])
def test_reservation_field_validation(coordinator, store, t2, name, size):
    with pytest.raises(ValidationFailed):
        coordinator.create_reservation(t2, name, size, tomorrow_at_7pm())
    assert store.get_documents(RESERVATIONS) == []


def test_reservation_for_unknown_table(coordinator):
    with pytest.raises(ValidationFailed):
        coordinator.create_reservation("650000000000000000000000", "Asha", 2, tomorrow_at_7pm())


def test_table_stays_reserved_while_bookings_remain(coordinator, t2):
    first = coordinator.create_reservation(t2, "Asha", 2, tomorrow_at_7pm())
    second = coordinator.create_reservation(t2, "Ben", 3, tomorrow_at_7pm() + timedelta(hours=2))

    coordinator.cancel_reservation(first)
    assert coordinator.tables.get(t2)["status"] == "reserved"
    assert [r["id"] for r in coordinator.reservations.for_table(t2)] == [second]

    coordinator.cancel_reservation(second)
    assert coordinator.tables.get(t2)["status"] == "available"


def test_cancel_does_not_free_a_seated_table(coordinator, t2, line_a):
    reservation_id = coordinator.create_reservation(t2, "Asha", 2, tomorrow_at_7pm())
    order_id = coordinator.create_order(t2, [line_a], 200)

    coordinator.cancel_reservation(reservation_id)

    table = coordinator.tables.get(t2)
    assert table["status"] == "occupied"
    assert table["current_order_id"] == order_id


def test_table_update_failure_leaves_retryable_reservation(coordinator, t2, monkeypatch):
    real_reserve = coordinator.tables.reserve

    def broken(table_id):
        raise StoreWriteError("connection reset")

    monkeypatch.setattr(coordinator.tables, "reserve", broken)
    with pytest.raises(PartialFailure) as exc:
        coordinator.create_reservation(t2, "Asha", 2, tomorrow_at_7pm())

    reservation_id = exc.value.completed_id
    assert coordinator.reservations.get(reservation_id)["status"] == "confirmed"
    assert coordinator.tables.get(t2)["status"] == "available"

    monkeypatch.setattr(coordinator.tables, "reserve", real_reserve)
    assert coordinator.reserve_table(t2)["status"] == "reserved"


def test_upcoming_only_counts_future_confirmed(coordinator, t2):
    now = utcnow()
    coordinator.create_reservation(t2, "Past", 2, now - timedelta(hours=3))
    future = coordinator.create_reservation(t2, "Future", 2, now + timedelta(hours=3))
    cancelled = coordinator.create_reservation(t2, "Cancelled", 2, now + timedelta(hours=4))
    coordinator.cancel_reservation(cancelled)

    assert [r["id"] for r in coordinator.reservations.upcoming(now)] == [future]


def test_aware_times_are_stored_as_utc(coordinator, t2):
    ist = timezone(timedelta(hours=5, minutes=30))
    when = datetime(2030, 1, 5, 19, 30, tzinfo=ist)
    reservation_id = coordinator.create_reservation(t2, "Asha", 2, when)
    stored = coordinator.reservations.get(reservation_id)["reservation_time"]
    assert stored == datetime(2030, 1, 5, 14, 0)


def test_update_reservation(coordinator, t2):
    reservation_id = coordinator.create_reservation(t2, "Asha", 2, tomorrow_at_7pm())

    updated = coordinator.reservations.update(reservation_id, {"party_size": 3, "notes": "window seat"})

    assert updated["party_size"] == 3
    assert updated["notes"] == "window seat"
    with pytest.raises(ValidationFailed):
        coordinator.reservations.update(reservation_id, {"status": "maybe"})
    with pytest.raises(ValidationFailed):
        coordinator.reservations.update(reservation_id, {"created_at": utcnow()})


def test_cancel_unknown_reservation(coordinator):
    with pytest.raises(NotFound):
        coordinator.cancel_reservation("650000000000000000000000")


@pytest.mark.parametrize("status", ["cancelled", "no_show", "completed"])
def test_ending_the_last_booking_by_edit_frees_the_table(coordinator, t2, status):
    reservation_id = coordinator.create_reservation(t2, "Asha", 2, tomorrow_at_7pm())

    updated = coordinator.update_reservation(reservation_id, {"status": status})

    assert updated["status"] == status
    assert coordinator.tables.get(t2)["status"] == "available"


def test_reconfirming_a_booking_reserves_the_table_again(coordinator, t2):
    reservation_id = coordinator.create_reservation(t2, "Asha", 2, tomorrow_at_7pm())
    coordinator.cancel_reservation(reservation_id)

    coordinator.update_reservation(reservation_id, {"status": "confirmed"})

    assert coordinator.tables.get(t2)["status"] == "reserved"


def test_edit_cannot_outgrow_the_table(coordinator, t2):
    reservation_id = coordinator.create_reservation(t2, "Asha", 2, tomorrow_at_7pm())

    with pytest.raises(ValidationFailed):
        coordinator.update_reservation(reservation_id, {"party_size": 12})

    assert coordinator.reservations.get(reservation_id)["party_size"] == 2
    assert coordinator.update_reservation(reservation_id, {"party_size": 4})["party_size"] == 4
