"""Stock ledger: the only code that changes stock counters.

Three pools exist per book: the online pool on :class:`Book`, one row per
store in :class:`StoreStock` and one row per warehouse in
:class:`WarehouseStock`. Every decrement is a single conditional UPDATE
(``stock = stock - qty WHERE stock >= qty``) so the database, not the
application, rules on the last unit. ``decrement*`` and ``increment*``
never open or commit a transaction; they run inside the caller's unit of
work (see :func:`bookstore_core.database.atomic`).
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .authz import Actor, Capability, require
from .config import get_settings
from .database import atomic
from .errors import InsufficientStock, NotFound
from .validation import check_quantity, check_stock_level, ensure_valid

logger = structlog.get_logger(__name__)

_NO_SYNC = {"synchronize_session": False}


def _expire_cached(session: Session, model: type[models.Base], ident: Any) -> None:
    """Drop a stale in-memory copy after a bulk UPDATE touched its row."""

    cached = session.identity_map.get(session.identity_key(model, ident))
    if cached is not None:
        session.expire(cached, ["stock"])


def _conditional_decrement(session: Session, model: Any, criteria: list[Any], quantity: int) -> bool:
    statement = (
        update(model)
        .where(*criteria, model.stock >= quantity)
        .values(stock=model.stock - quantity)
    )
    result = session.execute(statement, execution_options=_NO_SYNC)
    return result.rowcount == 1


def _add(session: Session, model: Any, criteria: list[Any], quantity: int) -> bool:
    statement = update(model).where(*criteria).values(stock=model.stock + quantity)
    result = session.execute(statement, execution_options=_NO_SYNC)
    return result.rowcount == 1


def _current_stock(session: Session, model: Any, criteria: list[Any]) -> int:
    value = session.execute(select(model.stock).where(*criteria)).scalar_one_or_none()
    return value or 0


def _title(session: Session, book_id: int) -> str | None:
    return session.execute(select(models.Book.title).where(models.Book.id == book_id)).scalar_one_or_none()


# -- online pool -------------------------------------------------------------


def check_availability(session: Session, book_id: int, quantity: int) -> bool:
    """Advisory read: true iff *quantity* units are on hand right now."""

    stock = session.execute(select(models.Book.stock).where(models.Book.id == book_id)).scalar_one_or_none()
    return stock is not None and quantity <= stock


def decrement(session: Session, book_id: int, quantity: int) -> None:
    criteria = [models.Book.id == book_id]
    if not _conditional_decrement(session, models.Book, criteria, quantity):
        available = _current_stock(session, models.Book, criteria)
        raise InsufficientStock(book_id, quantity, available, title=_title(session, book_id))
    _expire_cached(session, models.Book, book_id)


def increment(session: Session, book_id: int, quantity: int) -> None:
    if not _add(session, models.Book, [models.Book.id == book_id], quantity):
        raise NotFound("Book", book_id)
    _expire_cached(session, models.Book, book_id)


# -- store pool --------------------------------------------------------------


def _store_criteria(store_id: int, book_id: int) -> list[Any]:
    return [models.StoreStock.store_id == store_id, models.StoreStock.book_id == book_id]


def decrement_store(session: Session, store_id: int, book_id: int, quantity: int) -> None:
    criteria = _store_criteria(store_id, book_id)
    if not _conditional_decrement(session, models.StoreStock, criteria, quantity):
        available = _current_stock(session, models.StoreStock, criteria)
        raise InsufficientStock(
            book_id, quantity, available, title=_title(session, book_id), location=f"store {store_id}"
        )
    _expire_cached(session, models.StoreStock, (store_id, book_id))


def increment_store(session: Session, store_id: int, book_id: int, quantity: int) -> None:
    """Add units to a store row, creating the row on first use."""

    criteria = _store_criteria(store_id, book_id)
    if not _add(session, models.StoreStock, criteria, quantity):
        _insert_or_add(
            session,
            models.StoreStock(store_id=store_id, book_id=book_id, stock=quantity, low_stock_threshold=_threshold()),
            models.StoreStock,
            criteria,
            quantity,
        )
    _expire_cached(session, models.StoreStock, (store_id, book_id))


# -- warehouse pool ----------------------------------------------------------


def _warehouse_criteria(warehouse_id: int, book_id: int) -> list[Any]:
    return [models.WarehouseStock.warehouse_id == warehouse_id, models.WarehouseStock.book_id == book_id]


def decrement_warehouse(session: Session, warehouse_id: int, book_id: int, quantity: int) -> None:
    criteria = _warehouse_criteria(warehouse_id, book_id)
    if not _conditional_decrement(session, models.WarehouseStock, criteria, quantity):
        available = _current_stock(session, models.WarehouseStock, criteria)
        raise InsufficientStock(
            book_id, quantity, available, title=_title(session, book_id), location=f"warehouse {warehouse_id}"
        )
    _expire_cached(session, models.WarehouseStock, (warehouse_id, book_id))


def increment_warehouse(session: Session, warehouse_id: int, book_id: int, quantity: int) -> None:
    criteria = _warehouse_criteria(warehouse_id, book_id)
    if not _add(session, models.WarehouseStock, criteria, quantity):
        _insert_or_add(
            session,
            models.WarehouseStock(
                warehouse_id=warehouse_id, book_id=book_id, stock=quantity, low_stock_threshold=_threshold()
            ),
            models.WarehouseStock,
            criteria,
            quantity,
        )
    _expire_cached(session, models.WarehouseStock, (warehouse_id, book_id))


def _threshold() -> int:
    return get_settings().default_low_stock_threshold


def _insert_or_add(session: Session, row: Any, model: Any, criteria: list[Any], quantity: int) -> None:
    # Another transaction may create the row between our UPDATE and INSERT.
    try:
        with session.begin_nested():
            session.add(row)
    except IntegrityError:
        _add(session, model, criteria, quantity)


# -- administrative adjustments ----------------------------------------------


def _get_or_404(session: Session, model: Any, ident: int, label: str) -> Any:
    instance = session.get(model, ident)
    if instance is None:
        raise NotFound(label, ident)
    return instance


def restock_book(session: Session, actor: Actor, book_id: int, quantity: int) -> models.Book:
    """Receive *quantity* units into the online pool."""

    require(actor, Capability.INVENTORY_UPDATE)
    ensure_valid(check_quantity(quantity))
    with atomic(session):
        increment(session, book_id, quantity)
        book = _get_or_404(session, models.Book, book_id, "Book")
    logger.info("book_restocked", book_id=book_id, quantity=quantity, stock=book.stock, actor=actor.user_id)
    return book


def set_store_stock(
    session: Session,
    actor: Actor,
    store_id: int,
    book_id: int,
    stock: int,
    low_stock_threshold: int | None = None,
) -> models.StoreStock:
    require(actor, Capability.INVENTORY_UPDATE)
    ensure_valid(check_stock_level(stock, low_stock_threshold))
    with atomic(session):
        _get_or_404(session, models.Store, store_id, "Store")
        _get_or_404(session, models.Book, book_id, "Book")
        row = session.get(models.StoreStock, (store_id, book_id))
        if row is None:
            row = models.StoreStock(
                store_id=store_id,
                book_id=book_id,
                stock=stock,
                low_stock_threshold=low_stock_threshold or _threshold(),
            )
            session.add(row)
        else:
            row.stock = stock
            if low_stock_threshold is not None:
                row.low_stock_threshold = low_stock_threshold
    logger.info("store_stock_set", store_id=store_id, book_id=book_id, stock=stock, actor=actor.user_id)
    return row


def set_warehouse_stock(
    session: Session,
    actor: Actor,
    warehouse_id: int,
    book_id: int,
    stock: int,
    low_stock_threshold: int | None = None,
) -> models.WarehouseStock:
    require(actor, Capability.INVENTORY_UPDATE)
    ensure_valid(check_stock_level(stock, low_stock_threshold))
    with atomic(session):
        _get_or_404(session, models.Warehouse, warehouse_id, "Warehouse")
        _get_or_404(session, models.Book, book_id, "Book")
        row = session.get(models.WarehouseStock, (warehouse_id, book_id))
        if row is None:
            row = models.WarehouseStock(
                warehouse_id=warehouse_id,
                book_id=book_id,
                stock=stock,
                low_stock_threshold=low_stock_threshold or _threshold(),
            )
            session.add(row)
        else:
            row.stock = stock
            if low_stock_threshold is not None:
                row.low_stock_threshold = low_stock_threshold
    logger.info(
        "warehouse_stock_set", warehouse_id=warehouse_id, book_id=book_id, stock=stock, actor=actor.user_id
    )
    return row


def list_store_stocks(
    session: Session, actor: Actor, store_id: int, *, low_only: bool = False
) -> list[models.StoreStock]:
    require(actor, Capability.INVENTORY_VIEW)
    _get_or_404(session, models.Store, store_id, "Store")
    statement = select(models.StoreStock).where(models.StoreStock.store_id == store_id)
    if low_only:
        statement = statement.where(models.StoreStock.stock <= models.StoreStock.low_stock_threshold)
    statement = statement.order_by(models.StoreStock.stock, models.StoreStock.book_id)
    return list(session.scalars(statement))


def list_warehouse_stocks(
    session: Session, actor: Actor, warehouse_id: int, *, low_only: bool = False
) -> list[models.WarehouseStock]:
    require(actor, Capability.INVENTORY_VIEW)
    _get_or_404(session, models.Warehouse, warehouse_id, "Warehouse")
    statement = select(models.WarehouseStock).where(models.WarehouseStock.warehouse_id == warehouse_id)
    if low_only:
        statement = statement.where(models.WarehouseStock.stock <= models.WarehouseStock.low_stock_threshold)
    statement = statement.order_by(models.WarehouseStock.stock, models.WarehouseStock.book_id)
    return list(session.scalars(statement))
