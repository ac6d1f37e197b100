from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from ... import cart
from ...authz import Actor
from ...schemas import CartItemCreate, CartItemRead, CartItemUpdate, CartLineRead, CartRead
from ..deps import get_actor, get_db

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("", response_model=CartRead)
def get_cart(actor: Actor = Depends(get_actor), db: Session = Depends(get_db)) -> CartRead:
    view = cart.get_cart(db, actor)
    return CartRead(
        user_id=view.user_id,
        items=[
            CartLineRead(
                book_id=line.item.book_id,
                title=line.item.book.title,
                quantity=line.item.quantity,
                unit_price=line.unit_price,
                line_total=line.line_total,
                stock_status=line.item.book.stock_status,
            )
            for line in view.lines
        ],
        total_quantity=view.total_quantity,
        subtotal=view.subtotal,
    )


@router.post("", response_model=CartItemRead, status_code=status.HTTP_201_CREATED)
def add_item(payload: CartItemCreate, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return cart.add_item(db, actor, payload.book_id, payload.quantity)


@router.patch(
    "/{book_id}",
    response_model=CartItemRead,
    responses={status.HTTP_204_NO_CONTENT: {"description": "Quantity clamped to zero, line removed"}},
)
def update_item(
    book_id: int, payload: CartItemUpdate, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)
):
    item = cart.update_quantity(db, actor, book_id, payload.quantity)
    if item is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return item


@router.delete("/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_item(book_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)) -> None:
    cart.remove_item(db, actor, book_id)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
def clear_cart(actor: Actor = Depends(get_actor), db: Session = Depends(get_db)) -> None:
    cart.clear_cart(db, actor)
