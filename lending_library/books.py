import logging
import sqlite3
from decimal import Decimal
from typing import List, Optional

import httpx

from . import database
from .config import settings
from .errors import (
    BookInUseError,
    BookNotFoundError,
    DuplicateBookError,
    ExternalServiceError,
    OutOfStockError,
)
from .models import Book

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = "external_id, title, author, price, stock_quantity, available_quantity, created_at"


class BookService:
    """Book catalog and stock tracker.

    ``available_quantity`` is the shared counter touched by reservations; it only
    changes through guarded UPDATE statements so it never drops below zero.
    """

    # ------------------------- Core operations ------------------------- #
    def create_book(self, external_id: int, title: str, author: str, price: Decimal,
                    stock_quantity: int, available_quantity: Optional[int] = None) -> Book:
        book = Book(external_id=external_id, title=title, author=author, price=price,
                    stock_quantity=stock_quantity, available_quantity=available_quantity)
        self._validate(book)

        with database.transaction() as conn:
            if self._exists(conn, book.external_id):
                raise DuplicateBookError(book.external_id)
            conn.execute(
                "INSERT INTO books (external_id, title, author, price, stock_quantity, available_quantity) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (book.external_id, book.title, book.author, str(book.price),
                 book.stock_quantity, book.available_quantity),
            )
            created = self.get_book(book.external_id, conn)
        logger.info(f"Book created: external_id={created.external_id}, stock={created.stock_quantity}")
        return created

    def import_book(self, external_id: int, price: Decimal, stock_quantity: int) -> Book:
        """Fetch title and author from the external catalog, then create the book."""
        data = self._fetch_catalog_entry(external_id)
        title = data.get("title")
        if not title:
            raise BookNotFoundError(external_id)

        author_names = [a["name"] for a in data.get("authors") or [] if isinstance(a, dict) and a.get("name")]
        author = "; ".join(author_names) if author_names else "Unknown Author"
        return self.create_book(external_id, title, author, price, stock_quantity)

    def get_book(self, external_id: int, conn: Optional[sqlite3.Connection] = None) -> Book:
        """Return the book or raise BookNotFoundError.

        Pass ``conn`` to read inside the caller's transaction.
        """
        if conn is None:
            conn = database.get_db_connection()
            try:
                return self.get_book(external_id, conn)
            finally:
                conn.close()

        row = conn.execute(
            f"SELECT {_BOOK_COLUMNS} FROM books WHERE external_id = ?", (external_id,)
        ).fetchone()
        if row is None:
            raise BookNotFoundError(external_id)
        return Book.from_dict(dict(row))

    def list_books(self) -> List[Book]:
        conn = database.get_db_connection()
        try:
            rows = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books ORDER BY title").fetchall()
            return [Book.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()

    def update_book(self, external_id: int, *, title: Optional[str] = None, author: Optional[str] = None,
                    price: Optional[Decimal] = None, stock_quantity: Optional[int] = None) -> Book:
        """Update the given fields. A stock change shifts the available count by the same delta."""
        if title is None and author is None and price is None and stock_quantity is None:
            raise ValueError("Nothing to update. Provide title, author, price and/or stock quantity.")

        with database.transaction() as conn:
            book = self.get_book(external_id, conn)
            if title is not None and title.strip():
                book.title = title.strip()
            if author is not None and author.strip():
                book.author = author.strip()
            if price is not None:
                book.price = Decimal(str(price))
            if stock_quantity is not None:
                delta = int(stock_quantity) - book.stock_quantity
                if book.available_quantity + delta < 0:
                    raise OutOfStockError(external_id)
                book.stock_quantity = int(stock_quantity)
                book.available_quantity += delta
            self._validate(book)

            conn.execute(
                "UPDATE books SET title = ?, author = ?, price = ?, stock_quantity = ?, available_quantity = ? "
                "WHERE external_id = ?",
                (book.title, book.author, str(book.price), book.stock_quantity,
                 book.available_quantity, external_id),
            )
            updated = self.get_book(external_id, conn)
        logger.info(f"Book updated: external_id={external_id}")
        return updated

    def delete_book(self, external_id: int) -> None:
        with database.transaction() as conn:
            self.get_book(external_id, conn)
            in_use = conn.execute(
                "SELECT COUNT(*) FROM reservations WHERE book_external_id = ?", (external_id,)
            ).fetchone()[0]
            if in_use:
                raise BookInUseError(
                    f"Book {external_id} is referenced by {in_use} reservation(s) and cannot be deleted."
                )
            conn.execute("DELETE FROM books WHERE external_id = ?", (external_id,))
        logger.info(f"Book deleted: external_id={external_id}")

    # ------------------------- Stock counter ------------------------- #
    def decrease_available_quantity(self, external_id: int, conn: Optional[sqlite3.Connection] = None) -> None:
        """Take one copy out of stock or raise OutOfStockError."""
        if conn is None:
            with database.transaction() as conn:
                return self.decrease_available_quantity(external_id, conn)

        cursor = conn.execute(
            "UPDATE books SET available_quantity = available_quantity - 1 "
            "WHERE external_id = ? AND available_quantity > 0",
            (external_id,),
        )
        if cursor.rowcount == 0:
            # Distinguish a missing book from an empty shelf
            self.get_book(external_id, conn)
            logger.warning(f"No stock left for book {external_id}")
            raise OutOfStockError(external_id)
        logger.info(f"Stock decreased for book {external_id}")

    def increase_available_quantity(self, external_id: int, conn: Optional[sqlite3.Connection] = None) -> None:
        """Put one copy back into stock."""
        if conn is None:
            with database.transaction() as conn:
                return self.increase_available_quantity(external_id, conn)

        cursor = conn.execute(
            "UPDATE books SET available_quantity = available_quantity + 1 WHERE external_id = ?",
            (external_id,),
        )
        if cursor.rowcount == 0:
            raise BookNotFoundError(external_id)
        logger.info(f"Stock increased for book {external_id}")

    # ------------------------- External catalog ------------------------- #
    def _fetch_catalog_entry(self, external_id: int) -> dict:
        url = f"{settings.catalog_base_url.rstrip('/')}/books/{external_id}/"
        try:
            resp = httpx.get(url, timeout=settings.catalog_timeout, follow_redirects=True)
        except httpx.RequestError as exc:
            logger.error(f"Catalog request failed for book {external_id}: {exc}")
            raise ExternalServiceError("Book catalog unreachable") from exc

        if resp.status_code == 404:
            raise BookNotFoundError(external_id)
        if resp.status_code != 200:
            logger.error(f"Catalog returned {resp.status_code} for book {external_id}")
            raise ExternalServiceError(f"Book catalog answered with status {resp.status_code}")
        return resp.json()

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _validate(book: Book) -> None:
        if not book.title:
            raise ValueError("Title cannot be empty.")
        if book.price is None or book.price < 0:
            raise ValueError("Price must be zero or positive.")
        if book.stock_quantity < 0:
            raise ValueError("Stock quantity cannot be negative.")
        if not 0 <= book.available_quantity <= book.stock_quantity:
            raise ValueError("Available quantity must be between 0 and the stock quantity.")

    @staticmethod
    def _exists(conn: sqlite3.Connection, external_id: int) -> bool:
        return conn.execute("SELECT 1 FROM books WHERE external_id = ?", (external_id,)).fetchone() is not None
