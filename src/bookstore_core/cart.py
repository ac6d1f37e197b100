"""Per-user cart: a staging area with no authority over inventory.

Quantities are clamped to the stock seen at the time of the call so that
obviously impossible requests are trimmed early; checkout re-validates
everything against the ledger.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

import structlog
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from . import models
from .authz import Actor, Capability, require
from .catalog import get_book
from .database import atomic
from .errors import InsufficientStock, NotFound
from .validation import check_cart_line, ensure_valid

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CartLine:
    item: models.CartItem
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.item.quantity


@dataclass(frozen=True)
class CartView:
    user_id: str
    lines: list[CartLine]

    @property
    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0.00"))

    @property
    def total_quantity(self) -> int:
        return sum(line.item.quantity for line in self.lines)


def _find_item(session: Session, user_id: str, book_id: int) -> models.CartItem | None:
    statement = select(models.CartItem).where(
        models.CartItem.user_id == user_id, models.CartItem.book_id == book_id
    )
    statement = statement.execution_options(populate_existing=True)
    return session.scalars(statement).first()


def list_items(session: Session, user_id: str) -> list[models.CartItem]:
    statement = select(models.CartItem).where(models.CartItem.user_id == user_id).order_by(models.CartItem.id)
    statement = statement.execution_options(populate_existing=True)
    return list(session.scalars(statement))


def get_cart(session: Session, actor: Actor) -> CartView:
    """Return the caller's cart priced at current catalog prices."""

    require(actor, Capability.CART_USE)
    items = list_items(session, actor.user_id)
    return CartView(user_id=actor.user_id, lines=[CartLine(item=item, unit_price=item.book.price) for item in items])


def add_item(session: Session, actor: Actor, book_id: int, quantity: int) -> models.CartItem:
    require(actor, Capability.CART_USE)
    ensure_valid(check_cart_line(book_id, quantity))
    with atomic(session):
        book = get_book(session, book_id)
        item = _find_item(session, actor.user_id, book_id)
        requested = quantity + (item.quantity if item else 0)
        clamped = min(requested, book.stock)
        if clamped <= 0:
            raise InsufficientStock(book_id, requested, book.stock, title=book.title)
        if item is None:
            item = models.CartItem(user_id=actor.user_id, book_id=book_id, quantity=clamped)
            session.add(item)
        item.quantity = clamped
        item.price_snapshot = book.price
        item.stock_snapshot = book.stock
    if clamped < requested:
        logger.info("cart_quantity_clamped", user_id=actor.user_id, book_id=book_id, requested=requested, stock=clamped)
    return item


def update_quantity(session: Session, actor: Actor, book_id: int, quantity: int) -> models.CartItem | None:
    """Set the line quantity, clamped to ``[0, stock]``; zero removes the line.

    Returns ``None`` when the line was removed.
    """

    require(actor, Capability.CART_USE)
    ensure_valid(check_cart_line(book_id, quantity, minimum=0))
    with atomic(session):
        item = _find_item(session, actor.user_id, book_id)
        if item is None:
            raise NotFound("Cart item", book_id)
        book = get_book(session, book_id)
        clamped = max(0, min(quantity, book.stock))
        if clamped == 0:
            session.delete(item)
            removed = True
        else:
            item.quantity = clamped
            item.price_snapshot = book.price
            item.stock_snapshot = book.stock
            removed = False
    if removed:
        logger.info("cart_item_removed", user_id=actor.user_id, book_id=book_id, requested=quantity)
        return None
    return item


def remove_item(session: Session, actor: Actor, book_id: int) -> None:
    require(actor, Capability.CART_USE)
    with atomic(session):
        item = _find_item(session, actor.user_id, book_id)
        if item is None:
            raise NotFound("Cart item", book_id)
        session.delete(item)


def clear(session: Session, user_id: str) -> int:
    """Delete every line for *user_id* inside the caller's transaction."""

    result = session.execute(delete(models.CartItem).where(models.CartItem.user_id == user_id))
    return result.rowcount


def clear_cart(session: Session, actor: Actor) -> None:
    require(actor, Capability.CART_USE)
    with atomic(session):
        clear(session, actor.user_id)
