"""Catalog records: books with a derived stock status."""

from __future__ import annotations

from decimal import Decimal

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .authz import Actor, Capability, require
from .database import atomic
from .errors import Conflict, NotFound
from .validation import FieldError, ValidationResult, check_price, ensure_valid

logger = structlog.get_logger(__name__)


def get_book(session: Session, book_id: int) -> models.Book:
    book = session.get(models.Book, book_id, populate_existing=True)
    if book is None:
        raise NotFound("Book", book_id)
    return book


def list_books(session: Session, *, search: str | None = None, skip: int = 0, limit: int = 50) -> list[models.Book]:
    statement = select(models.Book)
    if search:
        pattern = f"%{search.strip()}%"
        statement = statement.where(
            or_(models.Book.title.ilike(pattern), models.Book.author.ilike(pattern), models.Book.isbn == search.strip())
        )
    statement = statement.order_by(models.Book.title).offset(skip).limit(limit)
    return list(session.scalars(statement))


def _check_book(title: str | None, author: str | None, isbn: str | None, price: Decimal | None, stock: int | None):
    errors: list[FieldError] = []
    for name, value in (("title", title), ("author", author), ("isbn", isbn)):
        if value is not None and not value.strip():
            errors.append(FieldError(name, "must not be blank"))
    if price is not None:
        errors.extend(check_price(price))
    if stock is not None and (not isinstance(stock, int) or stock < 0):
        errors.append(FieldError("stock", "must be a non-negative integer"))
    return ValidationResult(errors=errors)


def create_book(
    session: Session,
    actor: Actor,
    *,
    title: str,
    author: str,
    isbn: str,
    price: Decimal,
    stock: int = 0,
) -> models.Book:
    require(actor, Capability.CATALOG_MANAGE)
    ensure_valid(_check_book(title, author, isbn, price, stock))
    book = models.Book(title=title.strip(), author=author.strip(), isbn=isbn.strip(), price=price, stock=stock)
    try:
        with atomic(session):
            session.add(book)
    except IntegrityError as exc:
        raise Conflict(f"A book with ISBN '{isbn}' already exists", isbn=isbn) from exc
    logger.info("book_created", book_id=book.id, isbn=book.isbn, stock=stock, actor=actor.user_id)
    return book


def update_book(
    session: Session,
    actor: Actor,
    book_id: int,
    *,
    title: str | None = None,
    author: str | None = None,
    price: Decimal | None = None,
    stock: int | None = None,
) -> models.Book:
    """Administrative edit; ``stock`` here is an explicit adjustment, not a sale."""

    require(actor, Capability.CATALOG_MANAGE)
    ensure_valid(_check_book(title, author, None, price, stock))
    with atomic(session):
        book = get_book(session, book_id)
        if title is not None:
            book.title = title.strip()
        if author is not None:
            book.author = author.strip()
        if price is not None:
            book.price = price
        if stock is not None:
            logger.info("book_stock_adjusted", book_id=book_id, previous=book.stock, stock=stock, actor=actor.user_id)
            book.stock = stock
    return book
