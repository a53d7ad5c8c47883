import logging
import sqlite3
from typing import List, Optional

from . import database
from .errors import DuplicateEmailError, UserHasReservationsError, UserNotFoundError
from .models import User

logger = logging.getLogger(__name__)

_USER_COLUMNS = "id, name, email, phone, created_at"


class UserService:
    """User directory: registration, lookup and maintenance of library users."""

    def create_user(self, name: str, email: str, phone: Optional[str] = None) -> User:
        user = User(name=name, email=email, phone=phone)
        if not user.name:
            raise ValueError("Name cannot be empty.")
        if not user.email:
            raise ValueError("Email cannot be empty.")

        with database.transaction() as conn:
            if self._email_taken(conn, user.email):
                raise DuplicateEmailError(user.email)
            cursor = conn.execute(
                "INSERT INTO users (name, email, phone) VALUES (?, ?, ?)",
                (user.name, user.email, user.phone),
            )
            created = self.get_user_entity(cursor.lastrowid, conn)
        logger.info(f"User created: id={created.id}, email={created.email}")
        return created

    def get_user_by_id(self, user_id: int) -> User:
        return self.get_user_entity(user_id)

    def get_user_entity(self, user_id: int, conn: Optional[sqlite3.Connection] = None) -> User:
        """Return the user or raise UserNotFoundError.

        Pass ``conn`` to read inside the caller's transaction.
        """
        if conn is None:
            conn = database.get_db_connection()
            try:
                return self.get_user_entity(user_id, conn)
            finally:
                conn.close()

        row = conn.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            raise UserNotFoundError(user_id)
        return User.from_dict(dict(row))

    def get_all_users(self) -> List[User]:
        conn = database.get_db_connection()
        try:
            rows = conn.execute(f"SELECT {_USER_COLUMNS} FROM users ORDER BY id").fetchall()
            return [User.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()

    def update_user(self, user_id: int, name: str, email: str, phone: Optional[str] = None) -> User:
        changes = User(name=name, email=email, phone=phone)
        if not changes.name or not changes.email:
            raise ValueError("Name and email are required.")

        with database.transaction() as conn:
            current = self.get_user_entity(user_id, conn)
            if changes.email != current.email and self._email_taken(conn, changes.email):
                raise DuplicateEmailError(changes.email)
            conn.execute(
                "UPDATE users SET name = ?, email = ?, phone = ? WHERE id = ?",
                (changes.name, changes.email, changes.phone, user_id),
            )
            updated = self.get_user_entity(user_id, conn)
        logger.info(f"User updated: id={user_id}")
        return updated

    def delete_user(self, user_id: int) -> None:
        with database.transaction() as conn:
            self.get_user_entity(user_id, conn)
            count = conn.execute(
                "SELECT COUNT(*) FROM reservations WHERE user_id = ?", (user_id,)
            ).fetchone()[0]
            if count:
                raise UserHasReservationsError(
                    f"User {user_id} has {count} reservation(s) and cannot be deleted."
                )
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        logger.info(f"User deleted: id={user_id}")

    @staticmethod
    def _email_taken(conn: sqlite3.Connection, email: str) -> bool:
        return conn.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone() is not None
