"""Promotion codes: evaluation against a subtotal and the redemption quota.

:func:`evaluate` and :func:`validate` never touch ``redeemed_count``; a
redemption is consumed only by :func:`redeem`, which the order assembler
calls inside its commit.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .authz import Actor, Capability, require
from .database import atomic
from .errors import Conflict, InvalidPromotion, NotFound
from .validation import FieldError, ValidationResult, check_promotion_rules, ensure_valid

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


class Rejection(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    NOT_STARTED = "NOT_STARTED"
    EXPIRED = "EXPIRED"
    BELOW_MIN_SUBTOTAL = "BELOW_MIN_SUBTOTAL"
    QUOTA_EXHAUSTED = "QUOTA_EXHAUSTED"


@dataclass(frozen=True)
class PromotionEvaluation:
    code: str
    subtotal: Decimal
    discount: Decimal = Decimal("0.00")
    promotion_id: int | None = None
    name: str | None = None
    reason: Rejection | None = None
    message: str = "Promo code applied."

    @property
    def ok(self) -> bool:
        return self.reason is None

    @property
    def total(self) -> Decimal:
        return self.subtotal - self.discount

    def raise_for_rejection(self) -> None:
        if self.reason is not None:
            raise InvalidPromotion(self.reason.value, self.message, promo_code=self.code)


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _naive_utc(value: datetime | None) -> datetime | None:
    """Windows are stored as naive UTC."""

    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def compute_discount(promotion: models.PromotionCode, subtotal: Decimal) -> Decimal:
    """Return the discount for *subtotal*, always within ``[0, subtotal]``."""

    value = Decimal(promotion.discount_value)
    if promotion.discount_type is models.DiscountType.PERCENT:
        amount = subtotal * value / Decimal(100)
    else:
        amount = value
    if promotion.max_discount_amount is not None:
        amount = min(amount, Decimal(promotion.max_discount_amount))
    return quantize(max(Decimal(0), min(amount, subtotal)))


def evaluate(
    promotion: models.PromotionCode | None, code: str, subtotal: Decimal, now: datetime
) -> PromotionEvaluation:
    """Run the rejection checks in order and compute the discount."""

    subtotal = quantize(subtotal)
    if promotion is None:
        return PromotionEvaluation(code, subtotal, reason=Rejection.NOT_FOUND, message="Promo code not found.")

    def reject(reason: Rejection, message: str) -> PromotionEvaluation:
        return PromotionEvaluation(
            code, subtotal, promotion_id=promotion.id, name=promotion.name, reason=reason, message=message
        )

    if not promotion.is_active:
        return reject(Rejection.INACTIVE, "Promo code is not active.")
    if promotion.starts_at is not None and now < promotion.starts_at:
        return reject(Rejection.NOT_STARTED, "Promo code is not active yet.")
    if promotion.ends_at is not None and now > promotion.ends_at:
        return reject(Rejection.EXPIRED, "Promo code has expired.")
    min_subtotal = Decimal(promotion.min_subtotal or 0)
    if subtotal < min_subtotal:
        return reject(
            Rejection.BELOW_MIN_SUBTOTAL, f"Minimum subtotal for this promo is ${quantize(min_subtotal)}."
        )
    if promotion.max_redemptions is not None and promotion.redeemed_count >= promotion.max_redemptions:
        return reject(Rejection.QUOTA_EXHAUSTED, "Promo code cannot be redeemed anymore.")

    return PromotionEvaluation(
        code,
        subtotal,
        discount=compute_discount(promotion, subtotal),
        promotion_id=promotion.id,
        name=promotion.name,
    )


def find_by_code(session: Session, code: str) -> models.PromotionCode | None:
    statement = (
        select(models.PromotionCode)
        .where(models.PromotionCode.code == normalize_code(code))
        .execution_options(populate_existing=True)
    )
    return session.scalars(statement).first()


def validate(session: Session, code: str, subtotal: Decimal, now: datetime | None = None) -> PromotionEvaluation:
    normalized = normalize_code(code)
    return evaluate(find_by_code(session, normalized), normalized, subtotal, now or datetime.utcnow())


def redeem(session: Session, promotion_id: int) -> None:
    """Consume one redemption inside the caller's transaction.

    The quota is re-checked by the UPDATE itself; losing the race for the
    last redemption raises :class:`InvalidPromotion`.
    """

    table = models.PromotionCode
    statement = (
        update(table)
        .where(
            table.id == promotion_id,
            table.is_active.is_(True),
            or_(table.max_redemptions.is_(None), table.redeemed_count < table.max_redemptions),
        )
        .values(redeemed_count=table.redeemed_count + 1)
    )
    result = session.execute(statement, execution_options={"synchronize_session": False})
    if result.rowcount != 1:
        current = session.get(table, promotion_id, populate_existing=True)
        if current is None or not current.is_active:
            raise InvalidPromotion(Rejection.INACTIVE.value, "Promo code is not active.")
        raise InvalidPromotion(Rejection.QUOTA_EXHAUSTED.value, "Promo code cannot be redeemed anymore.")
    cached = session.identity_map.get(session.identity_key(table, promotion_id))
    if cached is not None:
        session.expire(cached, ["redeemed_count"])


# -- administration ----------------------------------------------------------


def get_promotion(session: Session, actor: Actor, promotion_id: int) -> models.PromotionCode:
    require(actor, Capability.PROMOTIONS_MANAGE)
    promotion = session.get(models.PromotionCode, promotion_id, populate_existing=True)
    if promotion is None:
        raise NotFound("Promotion", promotion_id)
    return promotion


def list_promotions(session: Session, actor: Actor, *, active_only: bool = False) -> list[models.PromotionCode]:
    require(actor, Capability.PROMOTIONS_MANAGE)
    statement = select(models.PromotionCode)
    if active_only:
        statement = statement.where(models.PromotionCode.is_active.is_(True))
    statement = statement.order_by(models.PromotionCode.is_active.desc(), models.PromotionCode.created_at.desc())
    return list(session.scalars(statement))


def create_promotion(
    session: Session,
    actor: Actor,
    *,
    code: str,
    name: str,
    discount_type: models.DiscountType,
    discount_value: Decimal,
    min_subtotal: Decimal = Decimal("0"),
    max_discount_amount: Decimal | None = None,
    starts_at: datetime | None = None,
    ends_at: datetime | None = None,
    max_redemptions: int | None = None,
    is_active: bool = True,
) -> models.PromotionCode:
    require(actor, Capability.PROMOTIONS_MANAGE)
    starts_at, ends_at = _naive_utc(starts_at), _naive_utc(ends_at)
    ensure_valid(
        check_promotion_rules(
            code=code,
            discount_type=discount_type,
            discount_value=discount_value,
            min_subtotal=min_subtotal,
            max_discount_amount=max_discount_amount,
            starts_at=starts_at,
            ends_at=ends_at,
            max_redemptions=max_redemptions,
        )
    )
    promotion = models.PromotionCode(
        code=normalize_code(code),
        name=name.strip(),
        discount_type=discount_type,
        discount_value=discount_value,
        min_subtotal=min_subtotal,
        max_discount_amount=max_discount_amount,
        starts_at=starts_at,
        ends_at=ends_at,
        max_redemptions=max_redemptions,
        redeemed_count=0,
        is_active=is_active,
    )
    try:
        with atomic(session):
            session.add(promotion)
    except IntegrityError as exc:
        raise Conflict(f"Promo code '{promotion.code}' already exists", code=promotion.code) from exc
    logger.info("promotion_created", promotion_id=promotion.id, code=promotion.code, actor=actor.user_id)
    return promotion


_EDITABLE = (
    "code",
    "name",
    "discount_type",
    "discount_value",
    "min_subtotal",
    "max_discount_amount",
    "starts_at",
    "ends_at",
    "max_redemptions",
    "is_active",
)

_REQUIRED = ("code", "name", "discount_type", "discount_value", "min_subtotal", "is_active")


def update_promotion(session: Session, actor: Actor, promotion_id: int, **changes) -> models.PromotionCode:
    """Apply an admin edit; only the keys present in *changes* are touched."""

    require(actor, Capability.PROMOTIONS_MANAGE)
    unknown = set(changes) - set(_EDITABLE)
    if unknown:
        raise ValueError(f"Unknown promotion fields: {sorted(unknown)}")
    nulls = [FieldError(name, "must not be null") for name in _REQUIRED if name in changes and changes[name] is None]
    ensure_valid(ValidationResult(errors=nulls))
    for name in ("starts_at", "ends_at"):
        if name in changes:
            changes[name] = _naive_utc(changes[name])
    try:
        with atomic(session):
            promotion = get_promotion(session, actor, promotion_id)
            merged = {name: changes.get(name, getattr(promotion, name)) for name in _EDITABLE}
            ensure_valid(
                check_promotion_rules(
                    code=merged["code"],
                    discount_type=merged["discount_type"],
                    discount_value=Decimal(merged["discount_value"]),
                    min_subtotal=Decimal(merged["min_subtotal"]),
                    max_discount_amount=merged["max_discount_amount"],
                    starts_at=merged["starts_at"],
                    ends_at=merged["ends_at"],
                    max_redemptions=merged["max_redemptions"],
                    redeemed_count=promotion.redeemed_count,
                )
            )
            for name, value in changes.items():
                if name == "code":
                    value = normalize_code(value)
                elif name == "name":
                    value = value.strip()
                setattr(promotion, name, value)
    except IntegrityError as exc:
        raise Conflict(f"Promo code '{changes.get('code')}' already exists", code=changes.get("code")) from exc
    logger.info("promotion_updated", promotion_id=promotion_id, fields=sorted(changes), actor=actor.user_id)
    return promotion
