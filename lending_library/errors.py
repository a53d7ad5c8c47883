"""Error kinds raised by the services.

The API layer maps each family to one HTTP status: NotFoundError -> 404,
ConflictError -> 409, ExternalServiceError -> 502.
"""


class LibraryError(Exception):
    """Base exception for lending library errors."""


class NotFoundError(LibraryError, LookupError):
    """A requested record does not exist."""


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: int) -> None:
        super().__init__(f"User not found with ID: {user_id}")
        self.user_id = user_id


class BookNotFoundError(NotFoundError):
    def __init__(self, external_id: int) -> None:
        super().__init__(f"Book not found with external ID: {external_id}")
        self.external_id = external_id


class ReservationNotFoundError(NotFoundError):
    def __init__(self, reservation_id: int) -> None:
        super().__init__(f"Reservation not found with ID: {reservation_id}")
        self.reservation_id = reservation_id


class ConflictError(LibraryError):
    """The operation clashes with the current state of a record."""


class OutOfStockError(ConflictError):
    def __init__(self, external_id: int) -> None:
        super().__init__(f"No copies available for book with external ID: {external_id}")
        self.external_id = external_id


class AlreadyReturnedError(ConflictError):
    def __init__(self, reservation_id: int) -> None:
        super().__init__(f"Reservation {reservation_id} has already been returned")
        self.reservation_id = reservation_id


class DuplicateBookError(ConflictError):
    def __init__(self, external_id: int) -> None:
        super().__init__(f"Book with external ID {external_id} already exists.")
        self.external_id = external_id


class DuplicateEmailError(ConflictError):
    def __init__(self, email: str) -> None:
        super().__init__(f"A user with email {email} already exists.")
        self.email = email


class BookInUseError(ConflictError):
    """The book is referenced by reservations and cannot be deleted."""


class UserHasReservationsError(ConflictError):
    """The user is referenced by reservations and cannot be deleted."""


class ExternalServiceError(LibraryError):
    """The external book catalog could not be reached or answered badly."""
