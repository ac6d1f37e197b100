"""Stores and warehouses."""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .authz import Actor, Capability, require
from .database import atomic
from .errors import Conflict, NotFound
from .validation import FieldError, ValidationResult, ensure_valid

logger = structlog.get_logger(__name__)


def _require_text(**fields: str | None) -> ValidationResult[None]:
    errors = [FieldError(name, "must not be blank") for name, value in fields.items() if value is not None and not value.strip()]
    return ValidationResult(errors=errors)


def get_store(session: Session, store_id: int) -> models.Store:
    store = session.get(models.Store, store_id)
    if store is None:
        raise NotFound("Store", store_id)
    return store


def list_stores(session: Session, *, active_only: bool = False) -> list[models.Store]:
    statement = select(models.Store)
    if active_only:
        statement = statement.where(models.Store.is_active.is_(True))
    return list(session.scalars(statement.order_by(models.Store.state, models.Store.city, models.Store.name)))


def create_store(
    session: Session,
    actor: Actor,
    *,
    code: str,
    name: str,
    city: str,
    state: str,
    address: str | None = None,
    is_active: bool = True,
) -> models.Store:
    require(actor, Capability.INVENTORY_UPDATE)
    ensure_valid(_require_text(code=code, name=name, city=city, state=state))
    store = models.Store(code=code.strip(), name=name.strip(), city=city, state=state, address=address, is_active=is_active)
    try:
        with atomic(session):
            session.add(store)
    except IntegrityError as exc:
        raise Conflict(f"Store code '{code}' already exists", code=code) from exc
    logger.info("store_created", store_id=store.id, code=store.code, actor=actor.user_id)
    return store


def set_store_active(session: Session, actor: Actor, store_id: int, is_active: bool) -> models.Store:
    require(actor, Capability.INVENTORY_UPDATE)
    with atomic(session):
        store = get_store(session, store_id)
        store.is_active = is_active
    return store


def get_warehouse(session: Session, warehouse_id: int) -> models.Warehouse:
    warehouse = session.get(models.Warehouse, warehouse_id)
    if warehouse is None:
        raise NotFound("Warehouse", warehouse_id)
    return warehouse


def list_warehouses(session: Session) -> list[models.Warehouse]:
    return list(session.scalars(select(models.Warehouse).order_by(models.Warehouse.name)))


def create_warehouse(
    session: Session,
    actor: Actor,
    *,
    code: str,
    name: str,
    city: str | None = None,
    is_active: bool = True,
) -> models.Warehouse:
    require(actor, Capability.INVENTORY_UPDATE)
    ensure_valid(_require_text(code=code, name=name))
    warehouse = models.Warehouse(code=code.strip(), name=name.strip(), city=city, is_active=is_active)
    try:
        with atomic(session):
            session.add(warehouse)
    except IntegrityError as exc:
        raise Conflict(f"Warehouse code '{code}' already exists", code=code) from exc
    logger.info("warehouse_created", warehouse_id=warehouse.id, code=warehouse.code, actor=actor.user_id)
    return warehouse
