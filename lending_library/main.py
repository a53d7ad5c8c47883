import logging
import subprocess
import sys
from datetime import datetime
from typing import Optional

import typer

from . import database
from .config import settings
from .errors import ConflictError, NotFoundError
from .reservations import ReservationService
from .ui_helpers import print_reservation, print_reservations, set_output_mode

APP_NAME = "Lending Library CLI"

app = typer.Typer(help=APP_NAME)


def _service() -> ReservationService:
    database.initialize_database()
    return ReservationService()


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log service activity to stderr"),
):
    """Global CLI options (output mode, verbosity)."""
    logging.basicConfig(level=settings.log_level if verbose else logging.WARNING)
    if output:
        set_output_mode(output)


@app.command("init-db")
def cli_init_db():
    """Create the database tables if they do not exist."""
    database.initialize_database()
    print(f"Database initialized at {database.DATABASE_FILE}")


@app.command("reservations")
def cli_reservations(
    user: Optional[int] = typer.Option(None, "--user", "-u", help="Only reservations of this user ID"),
    active: bool = typer.Option(False, "--active", help="Only active reservations"),
    overdue: bool = typer.Option(False, "--overdue", help="Only active reservations past their due date"),
):
    """List reservations."""
    service = _service()
    if overdue:
        views, title = service.get_overdue_reservations(), "Overdue reservations"
    elif active:
        views, title = service.get_active_reservations(), "Active reservations"
    elif user is not None:
        views, title = service.get_reservations_by_user_id(user), f"Reservations of user {user}"
    else:
        views, title = service.get_all_reservations(), "Reservations"
    print_reservations(views, title=title)


@app.command("return")
def cli_return(
    reservation_id: int,
    on: Optional[datetime] = typer.Option(
        None, "--date", "-d", formats=["%Y-%m-%d"], help="Return date (default: today)"
    ),
):
    """Return the book of a reservation and charge any late fee."""
    service = _service()
    try:
        view = service.return_book(reservation_id, on.date() if on else None)
    except NotFoundError as e:
        print(f"Not found: {e}")
        raise typer.Exit(code=1)
    except ConflictError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print(f"Reservation {view.id} returned. Late fee: {view.late_fee}")
    print_reservation(view)


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from API_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default from API_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Start the REST API with uvicorn."""
    host = host or settings.api_host
    port = port or int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "lending_library.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    subprocess.run(args)


if __name__ == "__main__":
    app()
