from datetime import date
from decimal import Decimal

import pytest

from lending_library import database
from lending_library.errors import (
    AlreadyReturnedError,
    BookNotFoundError,
    OutOfStockError,
    ReservationNotFoundError,
    UserNotFoundError,
)
from lending_library.models import ReservationStatus
from lending_library.reservations import (
    ReservationService,
    calculate_late_fee,
    calculate_total_fee,
    expected_return_date,
)


def _count_reservations() -> int:
    conn = database.get_db_connection()
    try:
        return conn.execute("SELECT COUNT(*) FROM reservations").fetchone()[0]
    finally:
        conn.close()


def test_create_reservation_success(service, books, juan, lotr):
    view = service.create_reservation(juan.id, lotr.external_id, 7, date(2024, 1, 15))

    assert view.id is not None
    assert view.user_id == juan.id
    assert view.user_name == "Juan Pérez"
    assert view.book_external_id == 258027
    assert view.book_title == "The Lord of the Rings"
    assert view.status is ReservationStatus.ACTIVE
    assert view.expected_return_date == date(2024, 1, 22)
    assert view.actual_return_date is None
    assert view.daily_rate == Decimal("15.99")
    assert view.total_fee == Decimal("111.93")
    assert view.late_fee == Decimal("0")
    assert view.created_at is not None
    assert books.get_book(258027).available_quantity == 4


def test_create_reservation_book_not_available(service, books, juan):
    books.create_book(1, "Empty Shelf", "Nobody", Decimal("5.00"), stock_quantity=2, available_quantity=0)

    with pytest.raises(OutOfStockError):
        service.create_reservation(juan.id, 1, 3, date(2024, 1, 15))

    assert _count_reservations() == 0
    assert books.get_book(1).available_quantity == 0


def test_create_reservation_unknown_user(service, books, lotr):
    with pytest.raises(UserNotFoundError):
        service.create_reservation(999, lotr.external_id, 3, date(2024, 1, 15))
    assert books.get_book(lotr.external_id).available_quantity == 5


def test_create_reservation_unknown_book(service, juan):
    with pytest.raises(BookNotFoundError):
        service.create_reservation(juan.id, 42, 3, date(2024, 1, 15))
    assert _count_reservations() == 0


def test_create_reservation_rolls_back_stock_on_failure(service, books, juan, lotr, monkeypatch):
    def boom(conn, reservation_id):
        raise RuntimeError("disk full")

    monkeypatch.setattr(ReservationService, "_get_view", staticmethod(boom))

    with pytest.raises(RuntimeError):
        service.create_reservation(juan.id, lotr.external_id, 7, date(2024, 1, 15))

    assert _count_reservations() == 0
    assert books.get_book(lotr.external_id).available_quantity == 5


def test_last_copy_can_only_be_rented_once(service, books, juan):
    books.create_book(7, "Rare Print", "Anon", Decimal("3.00"), stock_quantity=1)
    service.create_reservation(juan.id, 7, 2, date(2024, 1, 15))

    with pytest.raises(OutOfStockError):
        service.create_reservation(juan.id, 7, 2, date(2024, 1, 15))
    assert len(service.get_all_reservations()) == 1


def test_return_book_on_time(service, books, juan, lotr):
    created = service.create_reservation(juan.id, lotr.external_id, 7, date(2024, 1, 15))

    view = service.return_book(created.id, date(2024, 1, 22))

    assert view.status is ReservationStatus.RETURNED
    assert view.actual_return_date == date(2024, 1, 22)
    assert view.late_fee == Decimal("0")
    assert books.get_book(lotr.external_id).available_quantity == 5


def test_return_book_early_has_no_late_fee(service, juan, lotr):
    created = service.create_reservation(juan.id, lotr.external_id, 7, date(2024, 1, 15))
    view = service.return_book(created.id, date(2024, 1, 16))
    assert view.late_fee == Decimal("0")


def test_return_book_overdue(service, books, juan, lotr):
    created = service.create_reservation(juan.id, lotr.external_id, 7, date(2024, 1, 15))

    view = service.return_book(created.id, date(2024, 1, 25))  # 3 days late

    assert view.late_fee == Decimal("7.20")  # 15.99 * 0.15 * 3 = 7.1955
    assert view.status is ReservationStatus.RETURNED
    assert view.total_fee == Decimal("111.93")
    assert books.get_book(lotr.external_id).available_quantity == 5


def test_return_book_defaults_to_today(service, juan, lotr):
    created = service.create_reservation(juan.id, lotr.external_id, 2, date(2024, 1, 15))
    view = service.return_book(created.id)
    # due 2024-01-17, today is 2024-01-20
    assert view.actual_return_date == date(2024, 1, 20)
    assert view.late_fee == Decimal("7.20")


def test_return_book_twice_fails_without_touching_stock(service, books, juan, lotr):
    created = service.create_reservation(juan.id, lotr.external_id, 7, date(2024, 1, 15))
    service.return_book(created.id, date(2024, 1, 22))

    with pytest.raises(AlreadyReturnedError):
        service.return_book(created.id, date(2024, 1, 23))

    assert books.get_book(lotr.external_id).available_quantity == 5
    assert service.get_reservation_by_id(created.id).actual_return_date == date(2024, 1, 22)


def test_return_unknown_reservation(service):
    with pytest.raises(ReservationNotFoundError):
        service.return_book(123, date(2024, 1, 22))


def test_late_fee_uses_book_price_at_return_time(service, books, juan, lotr):
    # Price changes between rental and return move the late-fee base but not the snapshot
    created = service.create_reservation(juan.id, lotr.external_id, 7, date(2024, 1, 15))
    books.update_book(lotr.external_id, price=Decimal("20.00"))

    view = service.return_book(created.id, date(2024, 1, 23))

    assert view.late_fee == Decimal("3.00")
    assert view.daily_rate == Decimal("15.99")
    assert view.total_fee == Decimal("111.93")


def test_late_fee_rate_is_configurable(service, juan, lotr, monkeypatch):
    from lending_library.config import settings

    monkeypatch.setattr(settings, "late_fee_rate", Decimal("0.10"))
    created = service.create_reservation(juan.id, lotr.external_id, 7, date(2024, 1, 15))

    view = service.return_book(created.id, date(2024, 1, 24))  # 2 days late

    assert view.late_fee == Decimal("3.20")  # 15.99 * 0.10 * 2 = 3.198


def test_get_overdue_reservations(service, books, users, juan, lotr):
    ana = users.create_user("Ana Gómez", "ana@example.com")
    overdue = service.create_reservation(juan.id, lotr.external_id, 7, date(2024, 1, 1))   # due 01-08
    due_today = service.create_reservation(ana.id, lotr.external_id, 7, date(2024, 1, 13))  # due 01-20
    future = service.create_reservation(ana.id, lotr.external_id, 14, date(2024, 1, 15))  # due 01-29
    returned = service.create_reservation(juan.id, lotr.external_id, 3, date(2024, 1, 1))
    service.return_book(returned.id, date(2024, 1, 10))

    ids = [v.id for v in service.get_overdue_reservations()]

    assert ids == [overdue.id]
    assert due_today.id not in ids
    assert future.id not in ids


def test_overdue_is_evaluated_at_query_time(users, books, juan, lotr):
    clock = {"today": date(2024, 1, 20)}
    service = ReservationService(users=users, books=books, today=lambda: clock["today"])
    created = service.create_reservation(juan.id, lotr.external_id, 5, date(2024, 1, 15))  # due 01-20

    assert service.get_overdue_reservations() == []
    clock["today"] = date(2024, 1, 21)
    assert [v.id for v in service.get_overdue_reservations()] == [created.id]


def test_active_and_user_queries(service, users, juan, lotr):
    ana = users.create_user("Ana Gómez", "ana@example.com")
    first = service.create_reservation(juan.id, lotr.external_id, 7, date(2024, 1, 15))
    second = service.create_reservation(ana.id, lotr.external_id, 7, date(2024, 1, 15))
    third = service.create_reservation(juan.id, lotr.external_id, 7, date(2024, 1, 16))
    service.return_book(first.id, date(2024, 1, 20))

    assert [v.id for v in service.get_all_reservations()] == [first.id, second.id, third.id]
    assert [v.id for v in service.get_active_reservations()] == [second.id, third.id]
    assert [v.id for v in service.get_reservations_by_user_id(juan.id)] == [first.id, third.id]
    assert [v.id for v in service.get_reservations_by_user_id(ana.id)] == [second.id]
    assert service.get_reservations_by_user_id(999) == []


def test_get_reservation_by_id_is_idempotent_and_round_trips(service, juan, lotr):
    created = service.create_reservation(juan.id, lotr.external_id, 7, date(2024, 1, 15))

    first = service.get_reservation_by_id(created.id)
    second = service.get_reservation_by_id(created.id)

    assert first == second
    assert first.to_dict() == created.to_dict()


def test_get_reservation_by_id_not_found(service):
    with pytest.raises(ReservationNotFoundError):
        service.get_reservation_by_id(1)


def test_calculate_total_fee():
    assert calculate_total_fee(Decimal("15.99"), 7) == Decimal("111.93")
    assert calculate_total_fee(Decimal("15.99"), 0) == Decimal("0")
    assert calculate_total_fee(Decimal("15.99"), -1) == Decimal("0")
    assert calculate_total_fee(None, 3) == Decimal("0")
    assert calculate_total_fee(Decimal("2.50"), None) == Decimal("0")


@pytest.mark.parametrize(
    "price, days, expected",
    [
        ("15.99", 3, "7.20"),
        ("10.00", 1, "1.50"),
        ("0.30", 1, "0.05"),  # 0.045 rounds half-up, not half-even
        ("15.99", 0, "0"),
    ],
)
def test_calculate_late_fee(price, days, expected):
    assert calculate_late_fee(Decimal(price), days) == Decimal(expected)


def test_calculate_late_fee_without_price():
    assert calculate_late_fee(None, 4) == Decimal("0")


def test_create_reservation_past_calendar_range(service, books, juan, lotr):
    with pytest.raises(ValueError):
        service.create_reservation(juan.id, lotr.external_id, 3000000, date(2024, 1, 15))

    assert _count_reservations() == 0
    assert books.get_book(lotr.external_id).available_quantity == 5


def test_expected_return_date():
    assert expected_return_date(date(2024, 1, 15), 7) == date(2024, 1, 22)
    assert expected_return_date(date(2024, 2, 25), 5) == date(2024, 3, 1)
    with pytest.raises(ValueError):
        expected_return_date(date(9999, 12, 30), 7)
