"""Command line interface for the bookstore service."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional

import typer
import uvicorn

from . import catalog, ledger, transfers
from .authz import Actor
from .config import Settings, get_settings
from .database import init_database, session_scope
from .errors import BookstoreError
from .log import configure_logging

app = typer.Typer(help="Run and administer the bookstore inventory and checkout service.")


def _print_header(title: str) -> None:
    typer.secho(title, bold=True, fg=typer.colors.CYAN)


def _resolve_settings() -> Settings:
    settings = get_settings()
    configure_logging(settings.log_level, json=settings.log_json)
    init_database()
    return settings


def _fail(exc: BookstoreError) -> None:
    typer.secho(exc.message, fg=typer.colors.RED)
    raise typer.Exit(code=1) from exc


@app.command()
def run(
    host: Optional[str] = typer.Option(None, help="Hostname to bind"),
    port: Optional[int] = typer.Option(None, help="Port to expose"),
    reload: Optional[bool] = typer.Option(None, help="Enable auto-reload"),
    log_level: Optional[str] = typer.Option(None, help="Uvicorn log level"),
) -> None:
    """Start the FastAPI service using Uvicorn."""

    settings = _resolve_settings()

    uvicorn.run(
        "bookstore_core.app:create_app",
        host=host or settings.host,
        port=port or settings.port,
        reload=settings.reload if reload is None else reload,
        log_level=log_level or settings.log_level,
        factory=True,
    )


@app.command()
def init_db() -> None:
    """Create the database tables."""

    settings = _resolve_settings()
    typer.echo(f"Database initialised at {settings.database_path or settings.database_url}")


@app.command()
def show_config() -> None:
    """Print the effective configuration."""

    settings = get_settings()
    _print_header("Configuration")
    for name in Settings.__dataclass_fields__:
        typer.echo(f"{name}: {getattr(settings, name)}")


@app.command("create-book")
def create_book_cmd(
    title: str = typer.Argument(..., help="Book title"),
    author: str = typer.Argument(..., help="Author name"),
    isbn: str = typer.Argument(..., help="Unique ISBN"),
    price: str = typer.Argument(..., help="Unit price, e.g. 12.50"),
    stock: int = typer.Option(0, help="Initial online stock"),
) -> None:
    """Add a book to the catalog."""

    _resolve_settings()
    try:
        amount = Decimal(price)
    except InvalidOperation as exc:
        typer.secho(f"Invalid price: {price}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    with session_scope() as session:
        try:
            book = catalog.create_book(
                session, Actor.system(), title=title, author=author, isbn=isbn, price=amount, stock=stock
            )
        except BookstoreError as exc:
            _fail(exc)
        typer.secho(f"Created book #{book.id} {book.title} (stock={book.stock})", fg=typer.colors.GREEN)


@app.command("set-store-stock")
def set_store_stock_cmd(
    store_id: int = typer.Argument(..., help="Store id"),
    book_id: int = typer.Argument(..., help="Book id"),
    stock: int = typer.Argument(..., help="New on-hand quantity"),
    threshold: Optional[int] = typer.Option(None, "--threshold", help="Low stock threshold"),
) -> None:
    """Set the stock level of a book at a store."""

    _resolve_settings()
    with session_scope() as session:
        try:
            row = ledger.set_store_stock(session, Actor.system(), store_id, book_id, stock, threshold)
        except BookstoreError as exc:
            _fail(exc)
        typer.secho(
            f"Store {row.store_id} book {row.book_id}: stock={row.stock} threshold={row.low_stock_threshold}",
            fg=typer.colors.GREEN,
        )


@app.command("set-warehouse-stock")
def set_warehouse_stock_cmd(
    warehouse_id: int = typer.Argument(..., help="Warehouse id"),
    book_id: int = typer.Argument(..., help="Book id"),
    stock: int = typer.Argument(..., help="New on-hand quantity"),
    threshold: Optional[int] = typer.Option(None, "--threshold", help="Low stock threshold"),
) -> None:
    """Set the stock level of a book at a warehouse."""

    _resolve_settings()
    with session_scope() as session:
        try:
            row = ledger.set_warehouse_stock(session, Actor.system(), warehouse_id, book_id, stock, threshold)
        except BookstoreError as exc:
            _fail(exc)
        typer.secho(
            f"Warehouse {row.warehouse_id} book {row.book_id}: stock={row.stock}",
            fg=typer.colors.GREEN,
        )


@app.command()
def transfer(
    from_warehouse_id: int = typer.Argument(..., help="Source warehouse id"),
    to_store_id: int = typer.Argument(..., help="Destination store id"),
    book_id: int = typer.Argument(..., help="Book id"),
    quantity: int = typer.Argument(..., help="Units to move"),
    note: Optional[str] = typer.Option(None, help="Free text kept on the transfer log"),
) -> None:
    """Move stock from a warehouse to a store."""

    _resolve_settings()
    with session_scope() as session:
        try:
            record = transfers.transfer_from_warehouse(
                session,
                Actor.system(),
                from_warehouse_id=from_warehouse_id,
                to_store_id=to_store_id,
                book_id=book_id,
                quantity=quantity,
                note=note,
            )
        except BookstoreError as exc:
            _fail(exc)
        typer.secho(
            f"Transfer #{record.id}: {quantity} unit(s) of book {book_id} "
            f"from warehouse {from_warehouse_id} to store {to_store_id}",
            fg=typer.colors.GREEN,
        )


@app.command("low-stock")
def low_stock(store_id: int = typer.Argument(..., help="Store id")) -> None:
    """List books at or below their low stock threshold in a store."""

    _resolve_settings()
    with session_scope() as session:
        try:
            rows = ledger.list_store_stocks(session, Actor.system(), store_id, low_only=True)
        except BookstoreError as exc:
            _fail(exc)
        if not rows:
            typer.echo("No low stock items.")
            return
        _print_header(f"Low stock in store {store_id}")
        for row in rows:
            typer.echo(f"- #{row.book_id} {row.book.title} | stock={row.stock} | threshold={row.low_stock_threshold}")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    main()
