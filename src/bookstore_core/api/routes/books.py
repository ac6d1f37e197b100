from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ... import catalog, ledger
from ...authz import Actor
from ...schemas import BookCreate, BookRead, BookUpdate, RestockRequest
from ..deps import get_actor, get_db, pagination_params

router = APIRouter(prefix="/books", tags=["catalog"])


@router.post("", response_model=BookRead, status_code=status.HTTP_201_CREATED)
def create_book(payload: BookCreate, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return catalog.create_book(db, actor, **payload.model_dump())


@router.get("", response_model=list[BookRead])
def list_books(
    search: Optional[str] = None,
    pagination: tuple[int, int] = Depends(pagination_params),
    db: Session = Depends(get_db),
):
    limit, offset = pagination
    return catalog.list_books(db, search=search, skip=offset, limit=limit)


@router.get("/{book_id}", response_model=BookRead)
def get_book(book_id: int, db: Session = Depends(get_db)):
    return catalog.get_book(db, book_id)


@router.patch("/{book_id}", response_model=BookRead)
def update_book(
    book_id: int, payload: BookUpdate, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)
):
    return catalog.update_book(db, actor, book_id, **payload.model_dump(exclude_unset=True))


@router.post("/{book_id}/restock", response_model=BookRead)
def restock_book(
    book_id: int, payload: RestockRequest, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)
):
    return ledger.restock_book(db, actor, book_id, payload.quantity)
