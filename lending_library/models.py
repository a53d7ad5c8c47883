from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum


def _as_date(value) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(value)


def _as_datetime(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    # SQLite CURRENT_TIMESTAMP yields "YYYY-MM-DD HH:MM:SS"
    return datetime.fromisoformat(value)


def _as_decimal(value) -> Decimal | None:
    if value is None or isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class ReservationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RETURNED = "RETURNED"


class User:
    """A registered library user."""

    def __init__(self, name: str, email: str, phone: str | None = None,
                 id: int | None = None, created_at: datetime | None = None) -> None:
        self.id = id
        self.name = name.strip()
        self.email = email.strip().lower()
        self.phone = phone.strip() if phone else None
        self.created_at = _as_datetime(created_at)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.name} <{self.email}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(
            id=data.get("id"),
            name=data["name"],
            email=data["email"],
            phone=data.get("phone"),
            created_at=data.get("created_at"),
        )


class Book:
    """A title in the library with its rental price and stock counters."""

    def __init__(self, external_id: int, title: str, author: str, price: Decimal,
                 stock_quantity: int, available_quantity: int | None = None,
                 created_at: datetime | None = None) -> None:
        self.external_id = int(external_id)
        self.title = title.strip()
        self.author = author.strip()
        self.price = _as_decimal(price)
        self.stock_quantity = int(stock_quantity)
        self.available_quantity = (
            self.stock_quantity if available_quantity is None else int(available_quantity)
        )
        self.created_at = _as_datetime(created_at)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ID: {self.external_id})"

    def to_dict(self) -> dict:
        return {
            "external_id": self.external_id,
            "title": self.title,
            "author": self.author,
            "price": self.price,
            "stock_quantity": self.stock_quantity,
            "available_quantity": self.available_quantity,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            external_id=data["external_id"],
            title=data["title"],
            author=data["author"],
            price=data["price"],
            stock_quantity=data["stock_quantity"],
            available_quantity=data.get("available_quantity"),
            created_at=data.get("created_at"),
        )


class Reservation:
    """A persisted rental of one book copy by one user."""

    def __init__(self, user_id: int, book_external_id: int, rental_days: int,
                 start_date: date, expected_return_date: date, daily_rate: Decimal,
                 total_fee: Decimal, status: ReservationStatus = ReservationStatus.ACTIVE,
                 late_fee: Decimal = Decimal("0"), actual_return_date: date | None = None,
                 id: int | None = None, created_at: datetime | None = None) -> None:
        self.id = id
        self.user_id = user_id
        self.book_external_id = book_external_id
        self.rental_days = rental_days
        self.start_date = _as_date(start_date)
        self.expected_return_date = _as_date(expected_return_date)
        self.actual_return_date = _as_date(actual_return_date)
        self.daily_rate = _as_decimal(daily_rate)
        self.total_fee = _as_decimal(total_fee)
        self.late_fee = _as_decimal(late_fee)
        self.status = ReservationStatus(status)
        self.created_at = _as_datetime(created_at)

    @property
    def is_active(self) -> bool:
        return self.status is ReservationStatus.ACTIVE

    @staticmethod
    def from_dict(data: dict) -> "Reservation":
        return Reservation(
            id=data.get("id"),
            user_id=data["user_id"],
            book_external_id=data["book_external_id"],
            rental_days=data["rental_days"],
            start_date=data["start_date"],
            expected_return_date=data["expected_return_date"],
            actual_return_date=data.get("actual_return_date"),
            daily_rate=data["daily_rate"],
            total_fee=data["total_fee"],
            late_fee=data.get("late_fee") or "0",
            status=data["status"],
            created_at=data.get("created_at"),
        )


class ReservationView:
    """Read-only projection of a reservation joined with its user and book."""

    def __init__(self, reservation: Reservation, user_name: str, book_title: str) -> None:
        self.id = reservation.id
        self.user_id = reservation.user_id
        self.user_name = user_name
        self.book_external_id = reservation.book_external_id
        self.book_title = book_title
        self.rental_days = reservation.rental_days
        self.start_date = reservation.start_date
        self.expected_return_date = reservation.expected_return_date
        self.actual_return_date = reservation.actual_return_date
        self.daily_rate = reservation.daily_rate
        self.total_fee = reservation.total_fee
        self.late_fee = reservation.late_fee
        self.status = reservation.status
        self.created_at = reservation.created_at

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ReservationView):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:  # pragma: no cover
        return f"ReservationView({self.to_dict()!r})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "book_external_id": self.book_external_id,
            "book_title": self.book_title,
            "rental_days": self.rental_days,
            "start_date": self.start_date,
            "expected_return_date": self.expected_return_date,
            "actual_return_date": self.actual_return_date,
            "daily_rate": self.daily_rate,
            "total_fee": self.total_fee,
            "late_fee": self.late_fee,
            "status": self.status,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_row(row: dict) -> "ReservationView":
        """Build a view from a reservation row joined with users.name and books.title."""
        return ReservationView(Reservation.from_dict(row), row["user_name"], row["book_title"])
