from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ... import ledger, locations, transfers
from ...authz import Actor
from ...schemas import StockLevelSet, StoreCreate, StoreRead, StoreStockRead, TransferCreate, TransferRead
from ..deps import get_actor, get_db

router = APIRouter(prefix="/stores", tags=["stores"])


@router.post("", response_model=StoreRead, status_code=status.HTTP_201_CREATED)
def create_store(payload: StoreCreate, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return locations.create_store(db, actor, **payload.model_dump())


@router.get("", response_model=list[StoreRead])
def list_stores(active_only: bool = False, db: Session = Depends(get_db)):
    return locations.list_stores(db, active_only=active_only)


@router.post("/transfer-from-warehouse", response_model=TransferRead, status_code=status.HTTP_201_CREATED)
def transfer_from_warehouse(
    payload: TransferCreate, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)
):
    return transfers.transfer_from_warehouse(db, actor, **payload.model_dump())


@router.get("/transfers", response_model=list[TransferRead])
def list_transfers(
    store_id: Optional[int] = None,
    limit: int = 50,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return transfers.list_transfers(db, actor, store_id=store_id, limit=limit)


@router.get("/{store_id}/stocks", response_model=list[StoreStockRead])
def list_store_stocks(
    store_id: int, low_only: bool = False, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)
):
    return ledger.list_store_stocks(db, actor, store_id, low_only=low_only)


@router.put("/{store_id}/stocks/{book_id}", response_model=StoreStockRead)
def set_store_stock(
    store_id: int,
    book_id: int,
    payload: StockLevelSet,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return ledger.set_store_stock(db, actor, store_id, book_id, payload.stock, payload.low_stock_threshold)
