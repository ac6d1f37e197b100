from __future__ import annotations

from typing import Generator, Optional

from fastapi import Header
from sqlalchemy.orm import Session

from ..authz import Actor, Role
from ..config import get_settings
from ..database import session_scope
from ..errors import Unauthenticated, ValidationFailed


def get_db() -> Generator[Session, None, None]:
    with session_scope() as session:
        yield session


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """Build the caller identity forwarded by the upstream auth layer."""

    if not x_user_id or not x_user_id.strip():
        raise Unauthenticated()
    try:
        role = Role((x_user_role or Role.CUSTOMER.value).strip().lower())
    except ValueError as exc:
        raise ValidationFailed([{"field": "X-User-Role", "message": "is not a known role"}]) from exc
    return Actor(user_id=x_user_id.strip(), role=role)


def pagination_params(limit: int = 50, offset: int = 0) -> tuple[int, int]:
    settings = get_settings()
    if limit > settings.max_page_size:
        limit = settings.max_page_size
    return max(limit, 1), max(offset, 0)
