"""Order assembler: turns a cart into an order in one atomic commit.

Checkout moves through ``DRAFT -> VALIDATING -> COMMITTING`` and ends in
``CONFIRMED`` or ``REJECTED``. Everything before ``COMMITTING`` is
advisory. The commit is the only place where stock is decremented and a
promotion redemption is consumed; if any line or the promotion fails there,
the whole transaction rolls back and the cart is left untouched.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from . import cart, ledger, models, promotions
from .authz import Actor, Capability, authorize, require
from .database import atomic
from .errors import (
    BookstoreError,
    ConcurrencyConflict,
    Conflict,
    EmptyCart,
    InsufficientStock,
    InvalidPromotion,
    InvalidTransition,
    NotFound,
)
from .locations import get_store
from .promotions import PromotionEvaluation, Rejection, quantize
from .validation import FieldError, ValidationResult, ensure_valid

logger = structlog.get_logger(__name__)

OrderStatus = models.OrderStatus

CANCELLABLE = (OrderStatus.PENDING, OrderStatus.CONFIRMED)

CART_CHANGED = "Your cart changed during checkout, please try again."

# Forward moves allowed through the status endpoint; cancellation has its own path.
TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


class CheckoutState(str, enum.Enum):
    DRAFT = "DRAFT"
    VALIDATING = "VALIDATING"
    COMMITTING = "COMMITTING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"


@dataclass
class CheckoutRequest:
    promo_code: str | None = None
    delivery_type: models.DeliveryType = models.DeliveryType.HOME_DELIVERY
    store_id: int | None = None
    shipping_full_name: str | None = None
    shipping_phone: str | None = None
    shipping_address: str | None = None
    payment_receipt_url: str | None = None


@dataclass(frozen=True)
class CheckoutLine:
    book_id: int
    title: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class Checkout:
    user_id: str
    request: CheckoutRequest
    state: CheckoutState = CheckoutState.DRAFT
    lines: list[CheckoutLine] = field(default_factory=list)
    promotion: PromotionEvaluation | None = None
    order: models.Order | None = None
    failure: BookstoreError | None = None

    @property
    def subtotal(self) -> Decimal:
        return quantize(sum((line.line_total for line in self.lines), Decimal("0")))

    @property
    def discount(self) -> Decimal:
        return self.promotion.discount if self.promotion else Decimal("0.00")

    @property
    def total(self) -> Decimal:
        return self.subtotal - self.discount

    @property
    def from_store(self) -> bool:
        return self.request.delivery_type is models.DeliveryType.STORE_PICKUP


def _advance(checkout: Checkout, state: CheckoutState, **context) -> None:
    logger.info(
        "checkout_state",
        user_id=checkout.user_id,
        previous=checkout.state.value,
        state=state.value,
        **context,
    )
    checkout.state = state


def _reject(checkout: Checkout, error: BookstoreError) -> BookstoreError:
    checkout.failure = error
    _advance(checkout, CheckoutState.REJECTED, code=error.code, **error.details)
    return error


def _check_request(request: CheckoutRequest) -> ValidationResult[None]:
    errors: list[FieldError] = []
    if request.delivery_type is models.DeliveryType.STORE_PICKUP and request.store_id is None:
        errors.append(FieldError("store_id", "is required for store pickup"))
    if request.delivery_type is models.DeliveryType.HOME_DELIVERY and request.store_id is not None:
        errors.append(FieldError("store_id", "is only allowed for store pickup"))
    return ValidationResult(errors=errors)


def _check_cart_unchanged(session: Session, checkout: Checkout) -> None:
    current = {(item.book_id, item.quantity) for item in cart.list_items(session, checkout.user_id)}
    if not current:
        raise EmptyCart()
    if current != {(line.book_id, line.quantity) for line in checkout.lines}:
        raise ConcurrencyConflict(CART_CHANGED)


def _priced_lines(session: Session, user_id: str) -> list[CheckoutLine]:
    return [
        CheckoutLine(book_id=item.book_id, title=item.book.title, quantity=item.quantity, unit_price=item.book.price)
        for item in cart.list_items(session, user_id)
    ]


def prepare_checkout(session: Session, actor: Actor, request: CheckoutRequest | None = None) -> Checkout:
    """Run the DRAFT and VALIDATING phases; nothing is written."""

    require(actor, Capability.ORDERS_PLACE)
    request = request or CheckoutRequest()
    ensure_valid(_check_request(request))
    checkout = Checkout(user_id=actor.user_id, request=request)

    checkout.lines = _priced_lines(session, actor.user_id)
    if not checkout.lines:
        raise _reject(checkout, EmptyCart())

    _advance(checkout, CheckoutState.VALIDATING, lines=len(checkout.lines))
    if checkout.from_store:
        store = get_store(session, request.store_id)
        if not store.is_active:
            raise _reject(checkout, Conflict("An active pickup store is required", store_id=store.id))

    if request.promo_code and request.promo_code.strip():
        evaluation = promotions.validate(session, request.promo_code, checkout.subtotal)
        if not evaluation.ok:
            raise _reject(
                checkout,
                InvalidPromotion(evaluation.reason.value, evaluation.message, promo_code=evaluation.code),
            )
        checkout.promotion = evaluation
    return checkout


def commit_checkout(session: Session, checkout: Checkout) -> models.Order:
    """Run the COMMITTING phase as one transaction.

    The cart is re-read under the write lock; it must still hold exactly the
    validated lines, which are deleted together with the stock decrements.
    """

    if checkout.state is not CheckoutState.VALIDATING:
        raise RuntimeError(f"Checkout is {checkout.state.value}, expected VALIDATING")
    _advance(checkout, CheckoutState.COMMITTING)
    request = checkout.request
    try:
        with atomic(session):
            _check_cart_unchanged(session, checkout)
            # Fixed lock order keeps concurrent multi-line checkouts from deadlocking.
            for line in sorted(checkout.lines, key=lambda line: line.book_id):
                if checkout.from_store:
                    ledger.decrement_store(session, request.store_id, line.book_id, line.quantity)
                else:
                    ledger.decrement(session, line.book_id, line.quantity)

            if checkout.promotion is not None:
                promotions.redeem(session, checkout.promotion.promotion_id)

            order = models.Order(
                user_id=checkout.user_id,
                status=OrderStatus.PENDING,
                delivery_type=request.delivery_type,
                store_id=request.store_id,
                subtotal_price=checkout.subtotal,
                discount_amount=checkout.discount,
                promo_code=checkout.promotion.code if checkout.promotion else None,
                total_price=checkout.total,
                shipping_full_name=request.shipping_full_name,
                shipping_phone=request.shipping_phone,
                shipping_address=request.shipping_address,
                payment_receipt_url=request.payment_receipt_url,
                items=[
                    models.OrderItem(
                        book_id=line.book_id, title=line.title, quantity=line.quantity, unit_price=line.unit_price
                    )
                    for line in checkout.lines
                ],
            )
            session.add(order)
            if cart.clear(session, checkout.user_id) != len(checkout.lines):
                raise ConcurrencyConflict(CART_CHANGED)
            session.flush()
    except (EmptyCart, InsufficientStock, InvalidPromotion, ConcurrencyConflict) as exc:
        if isinstance(exc, InvalidPromotion) and checkout.promotion is not None:
            exc.details["promo_code"] = checkout.promotion.code
        _reject(checkout, exc)
        raise

    checkout.order = order
    _advance(checkout, CheckoutState.CONFIRMED, order_id=order.id, total=str(order.total_price))
    return order


def create_order(session: Session, actor: Actor, request: CheckoutRequest | None = None) -> models.Order:
    return commit_checkout(session, prepare_checkout(session, actor, request))


def preview_promotion(session: Session, actor: Actor, code: str) -> PromotionEvaluation:
    """Evaluate *code* against the caller's cart without consuming it."""

    require(actor, Capability.ORDERS_PLACE)
    lines = _priced_lines(session, actor.user_id)
    subtotal = quantize(sum((line.line_total for line in lines), Decimal("0")))
    if not code.strip():
        return PromotionEvaluation(
            code="", subtotal=subtotal, reason=Rejection.NOT_FOUND, message="Promo code is required."
        )
    return promotions.validate(session, code, subtotal)


# -- after checkout ----------------------------------------------------------


def _load(session: Session, actor: Actor, order_id: int) -> models.Order:
    """Fetch an order visible to *actor*; other users' orders look missing."""

    statement = (
        select(models.Order).where(models.Order.id == order_id).execution_options(populate_existing=True)
    )
    order = session.scalars(statement).first()
    if order is None:
        raise NotFound("Order", order_id)
    if order.user_id != actor.user_id and not authorize(actor, Capability.ORDERS_MANAGE):
        raise NotFound("Order", order_id)
    return order


def get_order(session: Session, actor: Actor, order_id: int) -> models.Order:
    return _load(session, actor, order_id)


def list_orders(
    session: Session,
    actor: Actor,
    *,
    status: OrderStatus | None = None,
    all_users: bool = False,
    skip: int = 0,
    limit: int = 50,
) -> list[models.Order]:
    statement = select(models.Order)
    if all_users:
        require(actor, Capability.ORDERS_MANAGE)
    else:
        statement = statement.where(models.Order.user_id == actor.user_id)
    if status is not None:
        statement = statement.where(models.Order.status == status)
    statement = statement.order_by(models.Order.created_at.desc(), models.Order.id.desc()).offset(skip).limit(limit)
    return list(session.scalars(statement))


def _move(session: Session, order: models.Order, allowed_from: tuple[OrderStatus, ...], target: OrderStatus) -> bool:
    """Conditionally move *order* to *target*; false when another request got there first."""

    statement = (
        update(models.Order)
        .where(models.Order.id == order.id, models.Order.status.in_(allowed_from))
        .values(status=target, updated_at=datetime.utcnow())
    )
    result = session.execute(statement, execution_options={"synchronize_session": False})
    session.expire(order, ["status", "updated_at"])
    return result.rowcount == 1


def cancel_order(session: Session, actor: Actor, order_id: int) -> models.Order:
    """Cancel a PENDING or CONFIRMED order and return its stock in the same transaction."""

    with atomic(session):
        order = _load(session, actor, order_id)
        if order.user_id == actor.user_id and not authorize(actor, Capability.ORDERS_MANAGE):
            require(actor, Capability.ORDERS_CANCEL_OWN)
        current = order.status
        if current not in CANCELLABLE or not _move(session, order, CANCELLABLE, OrderStatus.CANCELLED):
            session.refresh(order, ["status"])
            raise InvalidTransition(
                order.status.value,
                OrderStatus.CANCELLED.value,
                f"{order.status.value.capitalize()} orders cannot be cancelled",
            )
        for item in order.items:
            if order.delivery_type is models.DeliveryType.STORE_PICKUP and order.store_id is not None:
                ledger.increment_store(session, order.store_id, item.book_id, item.quantity)
            else:
                ledger.increment(session, item.book_id, item.quantity)

    logger.info(
        "order_cancelled",
        order_id=order_id,
        previous=current.value,
        restocked=sum(item.quantity for item in order.items),
        actor=actor.user_id,
    )
    return order


def update_status(session: Session, actor: Actor, order_id: int, status: OrderStatus) -> models.Order:
    require(actor, Capability.ORDERS_MANAGE)
    if status is OrderStatus.CANCELLED:
        return cancel_order(session, actor, order_id)

    with atomic(session):
        order = _load(session, actor, order_id)
        current = order.status
        if current is OrderStatus.PENDING and status is OrderStatus.PENDING:
            return order
        if status not in TRANSITIONS[current] or not _move(session, order, (current,), status):
            session.refresh(order, ["status"])
            raise InvalidTransition(order.status.value, status.value)

    logger.info("order_status_changed", order_id=order_id, previous=current.value, status=status.value, actor=actor.user_id)
    return order
