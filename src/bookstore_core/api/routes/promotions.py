from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ... import promotions
from ...authz import Actor
from ...schemas import PromotionCreate, PromotionRead, PromotionUpdate
from ..deps import get_actor, get_db

router = APIRouter(prefix="/promotions", tags=["promotions"])


@router.post("", response_model=PromotionRead, status_code=status.HTTP_201_CREATED)
def create_promotion(payload: PromotionCreate, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return promotions.create_promotion(db, actor, **payload.model_dump())


@router.get("", response_model=list[PromotionRead])
def list_promotions(active_only: bool = False, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return promotions.list_promotions(db, actor, active_only=active_only)


@router.get("/{promotion_id}", response_model=PromotionRead)
def get_promotion(promotion_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return promotions.get_promotion(db, actor, promotion_id)


@router.patch("/{promotion_id}", response_model=PromotionRead)
def update_promotion(
    promotion_id: int, payload: PromotionUpdate, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)
):
    return promotions.update_promotion(db, actor, promotion_id, **payload.model_dump(exclude_unset=True))
