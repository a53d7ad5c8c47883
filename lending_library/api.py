import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from fastapi import FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from . import database
from .books import BookService
from .config import settings
from .errors import ConflictError, ExternalServiceError, NotFoundError
from .models import ReservationStatus
from .reservations import ReservationService
from .users import UserService

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

users = UserService()
books = BookService()
reservations = ReservationService(users=users, books=books)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Make sure the schema exists before serving requests
    database.initialize_database()
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error mapping ---
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def bad_request_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ExternalServiceError)
async def external_service_handler(request: Request, exc: ExternalServiceError):
    logger.error(f"External service failure on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


# --- Models ---
class CamelModel(BaseModel):
    """Accept and emit camelCase JSON while keeping snake_case attributes."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserCreateModel(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=200, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: str | None = Field(default=None, max_length=40)


class UserModel(CamelModel):
    id: int
    name: str
    email: str
    phone: str | None = None
    created_at: datetime | None = None


class BookCreateModel(CamelModel):
    external_id: int = Field(gt=0, description="Identifier of the book in the external catalog")
    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    price: Decimal = Field(ge=0)
    stock_quantity: int = Field(ge=0)
    available_quantity: int | None = Field(default=None, ge=0)


class BookImportModel(CamelModel):
    external_id: int = Field(gt=0)
    price: Decimal = Field(ge=0)
    stock_quantity: int = Field(ge=0)


class BookUpdateModel(CamelModel):
    title: str | None = None
    author: str | None = None
    price: Decimal | None = Field(default=None, ge=0)
    stock_quantity: int | None = Field(default=None, ge=0)


class BookModel(CamelModel):
    external_id: int
    title: str
    author: str
    price: Decimal
    stock_quantity: int
    available_quantity: int
    created_at: datetime | None = None


class ReservationRequestModel(CamelModel):
    user_id: int
    book_external_id: int
    rental_days: int = Field(gt=0, le=36500)
    start_date: date


class ReturnBookRequestModel(CamelModel):
    return_date: date


class ReservationResponseModel(CamelModel):
    id: int
    user_id: int
    user_name: str
    book_external_id: int
    book_title: str
    rental_days: int
    start_date: date
    expected_return_date: date
    actual_return_date: date | None = None
    daily_rate: Decimal
    total_fee: Decimal
    late_fee: Decimal
    status: ReservationStatus
    created_at: datetime | None = None


# --- Health check ---
@app.get("/health")
def health():
    """Lightweight health endpoint with a quick database probe."""
    db_ok = True
    try:
        conn = database.get_db_connection()
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except Exception as e:
        logger.warning(f"Database health probe failed: {e}")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
    }


# --- Reservations ---
@app.post("/api/reservations", response_model=ReservationResponseModel, status_code=201)
def create_reservation(payload: ReservationRequestModel):
    view = reservations.create_reservation(
        payload.user_id, payload.book_external_id, payload.rental_days, payload.start_date
    )
    return view.to_dict()


@app.get("/api/reservations", response_model=List[ReservationResponseModel])
def list_reservations(user_id: Optional[int] = Query(default=None, alias="userId")):
    if user_id is not None:
        views = reservations.get_reservations_by_user_id(user_id)
    else:
        views = reservations.get_all_reservations()
    return [v.to_dict() for v in views]


@app.get("/api/reservations/active", response_model=List[ReservationResponseModel])
def list_active_reservations():
    return [v.to_dict() for v in reservations.get_active_reservations()]


@app.get("/api/reservations/overdue", response_model=List[ReservationResponseModel])
def list_overdue_reservations():
    return [v.to_dict() for v in reservations.get_overdue_reservations()]


@app.get("/api/reservations/{reservation_id}", response_model=ReservationResponseModel)
def get_reservation(reservation_id: int):
    return reservations.get_reservation_by_id(reservation_id).to_dict()


@app.post("/api/reservations/{reservation_id}/return", response_model=ReservationResponseModel)
def return_book(reservation_id: int, payload: ReturnBookRequestModel):
    return reservations.return_book(reservation_id, payload.return_date).to_dict()


# --- Users ---
@app.post("/api/users", response_model=UserModel, status_code=201)
def create_user(payload: UserCreateModel):
    return users.create_user(payload.name, payload.email, payload.phone).to_dict()


@app.get("/api/users", response_model=List[UserModel])
def list_users():
    return [u.to_dict() for u in users.get_all_users()]


@app.get("/api/users/{user_id}", response_model=UserModel)
def get_user(user_id: int):
    return users.get_user_by_id(user_id).to_dict()


@app.put("/api/users/{user_id}", response_model=UserModel)
def update_user(user_id: int, payload: UserCreateModel):
    return users.update_user(user_id, payload.name, payload.email, payload.phone).to_dict()


@app.delete("/api/users/{user_id}", status_code=204)
def delete_user(user_id: int):
    users.delete_user(user_id)
    return Response(status_code=204)


# --- Books ---
@app.post("/api/books", response_model=BookModel, status_code=201)
def create_book(payload: BookCreateModel):
    book = books.create_book(
        payload.external_id, payload.title, payload.author, payload.price,
        payload.stock_quantity, payload.available_quantity,
    )
    return book.to_dict()


@app.post("/api/books/import", response_model=BookModel, status_code=201)
def import_book(payload: BookImportModel):
    return books.import_book(payload.external_id, payload.price, payload.stock_quantity).to_dict()


@app.get("/api/books", response_model=List[BookModel])
def list_books():
    return [b.to_dict() for b in books.list_books()]


@app.get("/api/books/{external_id}", response_model=BookModel)
def get_book(external_id: int):
    return books.get_book(external_id).to_dict()


@app.put("/api/books/{external_id}", response_model=BookModel)
def update_book(external_id: int, payload: BookUpdateModel):
    book = books.update_book(
        external_id,
        title=payload.title,
        author=payload.author,
        price=payload.price,
        stock_quantity=payload.stock_quantity,
    )
    return book.to_dict()


@app.delete("/api/books/{external_id}", status_code=204)
def delete_book(external_id: int):
    books.delete_book(external_id)
    return Response(status_code=204)
