from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ... import ledger, locations
from ...authz import Actor, Capability, require
from ...schemas import StockLevelSet, WarehouseCreate, WarehouseRead, WarehouseStockRead
from ..deps import get_actor, get_db

router = APIRouter(prefix="/warehouses", tags=["warehouses"])


@router.post("", response_model=WarehouseRead, status_code=status.HTTP_201_CREATED)
def create_warehouse(payload: WarehouseCreate, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return locations.create_warehouse(db, actor, **payload.model_dump())


@router.get("", response_model=list[WarehouseRead])
def list_warehouses(actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    require(actor, Capability.INVENTORY_VIEW)
    return locations.list_warehouses(db)


@router.get("/{warehouse_id}/stocks", response_model=list[WarehouseStockRead])
def list_warehouse_stocks(
    warehouse_id: int, low_only: bool = False, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)
):
    return ledger.list_warehouse_stocks(db, actor, warehouse_id, low_only=low_only)


@router.put("/{warehouse_id}/stocks/{book_id}", response_model=WarehouseStockRead)
def set_warehouse_stock(
    warehouse_id: int,
    book_id: int,
    payload: StockLevelSet,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return ledger.set_warehouse_stock(db, actor, warehouse_id, book_id, payload.stock, payload.low_stock_threshold)
