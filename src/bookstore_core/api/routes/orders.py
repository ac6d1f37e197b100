from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ... import orders
from ...authz import Actor
from ...models import OrderStatus
from ...schemas import OrderCreate, OrderRead, OrderStatusUpdate, PromoPreviewRead, PromoPreviewRequest
from ..deps import get_actor, get_db, pagination_params

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
def create_order(payload: OrderCreate, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    request = orders.CheckoutRequest(**payload.model_dump())
    return orders.create_order(db, actor, request)


@router.post("/validate-promo", response_model=PromoPreviewRead)
def validate_promo(
    payload: PromoPreviewRequest, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)
) -> PromoPreviewRead:
    evaluation = orders.preview_promotion(db, actor, payload.code)
    return PromoPreviewRead(
        valid=evaluation.ok,
        code=evaluation.code,
        message=evaluation.message,
        reason=evaluation.reason.value if evaluation.reason else None,
        subtotal=evaluation.subtotal,
        discount_amount=evaluation.discount,
        total=evaluation.total,
    )


@router.get("", response_model=list[OrderRead])
def list_orders(
    status_filter: Optional[OrderStatus] = None,
    all_users: bool = False,
    pagination: tuple[int, int] = Depends(pagination_params),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    limit, offset = pagination
    return orders.list_orders(db, actor, status=status_filter, all_users=all_users, skip=offset, limit=limit)


@router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return orders.get_order(db, actor, order_id)


@router.patch("/{order_id}/status", response_model=OrderRead)
def update_order_status(
    order_id: int, payload: OrderStatusUpdate, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)
):
    return orders.update_status(db, actor, order_id, payload.status)


@router.delete("/{order_id}", response_model=OrderRead)
def cancel_order(order_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return orders.cancel_order(db, actor, order_id)
