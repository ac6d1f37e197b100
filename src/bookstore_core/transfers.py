"""Warehouse to store transfers."""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import ledger, models
from .authz import Actor, Capability, require
from .catalog import get_book
from .config import get_settings
from .database import atomic
from .errors import Conflict
from .locations import get_store, get_warehouse
from .validation import check_transfer, ensure_valid

logger = structlog.get_logger(__name__)


def transfer_from_warehouse(
    session: Session,
    actor: Actor,
    *,
    from_warehouse_id: int,
    to_store_id: int,
    book_id: int,
    quantity: int,
    note: str | None = None,
) -> models.StoreTransfer:
    """Move *quantity* units from a warehouse row to a store row.

    The warehouse decrement, the store increment and the log entry commit
    together or not at all.
    """

    require(actor, Capability.INVENTORY_TRANSFER)
    ensure_valid(check_transfer(from_warehouse_id, to_store_id, book_id, quantity, note))

    with atomic(session):
        get_warehouse(session, from_warehouse_id)
        store = get_store(session, to_store_id)
        get_book(session, book_id)
        if not store.is_active:
            raise Conflict("Destination store must be active", store_id=to_store_id)

        ledger.decrement_warehouse(session, from_warehouse_id, book_id, quantity)
        ledger.increment_store(session, to_store_id, book_id, quantity)
        transfer = models.StoreTransfer(
            from_warehouse_id=from_warehouse_id,
            to_store_id=to_store_id,
            book_id=book_id,
            quantity=quantity,
            note=note,
            created_by=actor.user_id,
        )
        session.add(transfer)

    logger.info(
        "stock_transferred",
        transfer_id=transfer.id,
        from_warehouse_id=from_warehouse_id,
        to_store_id=to_store_id,
        book_id=book_id,
        quantity=quantity,
        actor=actor.user_id,
    )
    return transfer


def list_transfers(
    session: Session, actor: Actor, *, store_id: int | None = None, limit: int = 50
) -> list[models.StoreTransfer]:
    require(actor, Capability.INVENTORY_VIEW)
    limit = min(max(limit, 1), get_settings().max_page_size)
    statement = select(models.StoreTransfer)
    if store_id is not None:
        statement = statement.where(models.StoreTransfer.to_store_id == store_id)
    statement = statement.order_by(models.StoreTransfer.created_at.desc(), models.StoreTransfer.id.desc()).limit(limit)
    return list(session.scalars(statement))
