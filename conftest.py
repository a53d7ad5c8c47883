from datetime import date
from decimal import Decimal

import pytest

from lending_library import database
from lending_library.books import BookService
from lending_library.reservations import ReservationService
from lending_library.users import UserService

# Fixed "today" for lifecycle tests so overdue checks are deterministic
TODAY = date(2024, 1, 20)


@pytest.fixture
def db_file(tmp_path, request, monkeypatch):
    # Create a unique database file for each test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    # Make sure every service helper uses this database file
    monkeypatch.setattr(database, "DATABASE_FILE", db_file)
    database.initialize_database()
    yield db_file


@pytest.fixture
def users(db_file):
    return UserService()


@pytest.fixture
def books(db_file):
    return BookService()


@pytest.fixture
def service(users, books):
    return ReservationService(users=users, books=books, today=lambda: TODAY)


@pytest.fixture
def juan(users):
    return users.create_user("Juan Pérez", "juan@example.com")


@pytest.fixture
def lotr(books):
    return books.create_book(
        258027, "The Lord of the Rings", "J. R. R. Tolkien", Decimal("15.99"),
        stock_quantity=10, available_quantity=5,
    )
