import logging
import sqlite3
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List, Optional

from . import database
from .books import BookService
from .config import settings
from .errors import AlreadyReturnedError, ReservationNotFoundError
from .models import Reservation, ReservationStatus, ReservationView
from .users import UserService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

_VIEW_QUERY = """
    SELECT r.id, r.user_id, r.book_external_id, r.rental_days, r.start_date,
           r.expected_return_date, r.actual_return_date, r.daily_rate, r.total_fee,
           r.late_fee, r.status, r.created_at,
           u.name AS user_name, b.title AS book_title
    FROM reservations r
    JOIN users u ON u.id = r.user_id
    JOIN books b ON b.external_id = r.book_external_id
"""


def expected_return_date(start_date: date, rental_days: int) -> date:
    """Due date of a rental; ValueError when it falls outside the calendar range."""
    try:
        return start_date + timedelta(days=rental_days)
    except OverflowError as exc:
        raise ValueError(f"Rental of {rental_days} days from {start_date} is out of range.") from exc


def calculate_total_fee(daily_rate: Optional[Decimal], rental_days: Optional[int]) -> Decimal:
    """Rental price for the whole period; zero when an operand is missing or days are negative."""
    if daily_rate is None or rental_days is None or rental_days < 0:
        return ZERO
    return daily_rate * Decimal(rental_days)


def calculate_late_fee(book_price: Optional[Decimal], days_late: int,
                       rate: Optional[Decimal] = None, places: Optional[int] = None) -> Decimal:
    """Charge ``rate`` of the book price per day late, rounded half-up.

    >>> calculate_late_fee(Decimal("15.99"), 3)
    Decimal('7.20')
    """
    if book_price is None or days_late <= 0:
        return ZERO
    rate = settings.late_fee_rate if rate is None else rate
    places = settings.fee_decimal_places if places is None else places
    fee = book_price * rate * Decimal(days_late)
    return fee.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


class ReservationService:
    """Reservation lifecycle: rent a book, return it, and query reservations.

    Every mutating call runs inside one ``database.transaction()``; a failure at any
    step rolls back the stock counter and the reservation row together.
    """

    def __init__(self, users: Optional[UserService] = None, books: Optional[BookService] = None,
                 today: Callable[[], date] = date.today) -> None:
        self.users = users or UserService()
        self.books = books or BookService()
        self._today = today

    # ------------------------- Lifecycle ------------------------- #
    def create_reservation(self, user_id: int, book_external_id: int, rental_days: int,
                           start_date: date) -> ReservationView:
        with database.transaction() as conn:
            user = self.users.get_user_entity(user_id, conn)
            book = self.books.get_book(book_external_id, conn)
            self.books.decrease_available_quantity(book.external_id, conn)

            reservation = Reservation(
                user_id=user.id,
                book_external_id=book.external_id,
                rental_days=rental_days,
                start_date=start_date,
                expected_return_date=expected_return_date(start_date, rental_days),
                daily_rate=book.price,
                total_fee=calculate_total_fee(book.price, rental_days),
            )
            view = self._get_view(conn, self._insert(conn, reservation))

        logger.info(
            f"Reservation {view.id} created: user={user_id}, book={book_external_id}, "
            f"days={rental_days}, total_fee={view.total_fee}"
        )
        return view

    def return_book(self, reservation_id: int, return_date: Optional[date] = None) -> ReservationView:
        return_date = return_date or self._today()

        with database.transaction() as conn:
            reservation = self._get_reservation(conn, reservation_id)
            if not reservation.is_active:
                raise AlreadyReturnedError(reservation_id)

            reservation.actual_return_date = return_date
            reservation.status = ReservationStatus.RETURNED

            late_fee = ZERO
            if return_date > reservation.expected_return_date:
                days_late = (return_date - reservation.expected_return_date).days
                # The current book price is the base, not the daily_rate snapshot
                book = self.books.get_book(reservation.book_external_id, conn)
                late_fee = calculate_late_fee(book.price, days_late)
                logger.info(f"Reservation {reservation_id} returned {days_late} day(s) late, fee={late_fee}")
            reservation.late_fee = late_fee

            self.books.increase_available_quantity(reservation.book_external_id, conn)
            conn.execute(
                "UPDATE reservations SET actual_return_date = ?, late_fee = ?, status = ? "
                "WHERE id = ? AND status = ?",
                (return_date.isoformat(), str(late_fee), ReservationStatus.RETURNED.value,
                 reservation_id, ReservationStatus.ACTIVE.value),
            )
            view = self._get_view(conn, reservation_id)

        logger.info(f"Reservation {reservation_id} returned on {return_date.isoformat()}")
        return view

    # ------------------------- Queries ------------------------- #
    def get_reservation_by_id(self, reservation_id: int) -> ReservationView:
        conn = database.get_db_connection()
        try:
            return self._get_view(conn, reservation_id)
        finally:
            conn.close()

    def get_all_reservations(self) -> List[ReservationView]:
        return self._query_views("ORDER BY r.id")

    def get_reservations_by_user_id(self, user_id: int) -> List[ReservationView]:
        return self._query_views("WHERE r.user_id = ? ORDER BY r.id", (user_id,))

    def get_active_reservations(self) -> List[ReservationView]:
        return self._query_views("WHERE r.status = ? ORDER BY r.id", (ReservationStatus.ACTIVE.value,))

    def get_overdue_reservations(self) -> List[ReservationView]:
        """Active reservations whose expected return date is strictly before today."""
        today = self._today().isoformat()
        return self._query_views(
            "WHERE r.status = ? AND r.expected_return_date < ? ORDER BY r.expected_return_date, r.id",
            (ReservationStatus.ACTIVE.value, today),
        )

    # ------------------------- Persistence helpers ------------------------- #
    def _query_views(self, clause: str, params: tuple = ()) -> List[ReservationView]:
        conn = database.get_db_connection()
        try:
            rows = conn.execute(f"{_VIEW_QUERY} {clause}", params).fetchall()
            return [ReservationView.from_row(dict(row)) for row in rows]
        finally:
            conn.close()

    @staticmethod
    def _insert(conn: sqlite3.Connection, reservation: Reservation) -> int:
        """Persist a new reservation and return its store-assigned id."""
        cursor = conn.execute(
            "INSERT INTO reservations (user_id, book_external_id, rental_days, start_date, "
            "expected_return_date, daily_rate, total_fee, late_fee, status) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (reservation.user_id, reservation.book_external_id, reservation.rental_days,
             reservation.start_date.isoformat(), reservation.expected_return_date.isoformat(),
             str(reservation.daily_rate), str(reservation.total_fee), str(reservation.late_fee),
             reservation.status.value),
        )
        return cursor.lastrowid

    @staticmethod
    def _get_view(conn: sqlite3.Connection, reservation_id: int) -> ReservationView:
        row = conn.execute(f"{_VIEW_QUERY} WHERE r.id = ?", (reservation_id,)).fetchone()
        if row is None:
            raise ReservationNotFoundError(reservation_id)
        return ReservationView.from_row(dict(row))

    @staticmethod
    def _get_reservation(conn: sqlite3.Connection, reservation_id: int) -> Reservation:
        row = conn.execute("SELECT * FROM reservations WHERE id = ?", (reservation_id,)).fetchone()
        if row is None:
            raise ReservationNotFoundError(reservation_id)
        return Reservation.from_dict(dict(row))
