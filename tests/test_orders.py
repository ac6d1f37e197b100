from decimal import Decimal

import pytest
from sqlalchemy import func, select

from bookstore_core import cart, ledger, models, orders, promotions
from bookstore_core.errors import (
    ConcurrencyConflict,
    Conflict,
    EmptyCart,
    InsufficientStock,
    InvalidPromotion,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    ValidationFailed,
)
from bookstore_core.models import DeliveryType, OrderStatus
from bookstore_core.orders import CheckoutRequest, CheckoutState

from .conftest import ADMIN, ALICE, BOB, FINANCE


def _order_count(session_factory) -> int:
    with session_factory() as session:
        return session.scalar(select(func.count()).select_from(models.Order))


def test_checkout_creates_order_and_clears_cart(session, make_book, read) -> None:
    dune = make_book(title="Dune", price="10.00", stock=5)
    emma = make_book(title="Emma", price="7.25", stock=3)
    cart.add_item(session, ALICE, dune.id, 2)
    cart.add_item(session, ALICE, emma.id, 1)

    order = orders.create_order(session, ALICE)

    assert order.status is OrderStatus.PENDING
    assert order.user_id == ALICE.user_id
    assert order.subtotal_price == Decimal("27.25")
    assert order.discount_amount == Decimal("0.00")
    assert order.total_price == Decimal("27.25")
    assert [(item.book_id, item.quantity, item.unit_price) for item in order.items] == [
        (dune.id, 2, Decimal("10.00")),
        (emma.id, 1, Decimal("7.25")),
    ]
    assert read(models.Book, dune.id).stock == 3
    assert read(models.Book, emma.id).stock == 2
    assert cart.list_items(session, ALICE.user_id) == []


def test_empty_cart(session, session_factory) -> None:
    with pytest.raises(EmptyCart, match="Cart is empty"):
        orders.create_order(session, ALICE)
    assert _order_count(session_factory) == 0


def test_failing_line_aborts_whole_checkout(session, session_factory, make_book, read) -> None:
    first = make_book(title="First", stock=5)
    second = make_book(title="Second", stock=5)
    third = make_book(title="Third", stock=5)
    for book in (first, second, third):
        cart.add_item(session, ALICE, book.id, 2)

    # Someone else buys out the third title between cart and checkout.
    cart.add_item(session, BOB, third.id, 4)
    orders.create_order(session, BOB)

    with pytest.raises(InsufficientStock) as excinfo:
        orders.create_order(session, ALICE)

    assert excinfo.value.book_id == third.id
    assert excinfo.value.message == "Only 1 left in stock for Third"
    assert read(models.Book, first.id).stock == 5
    assert read(models.Book, second.id).stock == 5
    assert read(models.Book, third.id).stock == 1
    assert len(cart.list_items(session, ALICE.user_id)) == 3
    assert _order_count(session_factory) == 1


def test_checkout_applies_promotion(session, make_book, make_promotion, read) -> None:
    book = make_book(price="20.00", stock=10)
    promotion = make_promotion("SAVE10")
    cart.add_item(session, ALICE, book.id, 3)

    order = orders.create_order(session, ALICE, CheckoutRequest(promo_code=" save10 "))

    assert order.promo_code == "SAVE10"
    assert order.subtotal_price == Decimal("60.00")
    assert order.discount_amount == Decimal("5.00")
    assert order.total_price == Decimal("55.00")
    assert read(models.PromotionCode, promotion.id).redeemed_count == 1


def test_rejected_promotion_leaves_everything(session, make_book, make_promotion, read) -> None:
    book = make_book(price="15.00", stock=10)
    make_promotion("SAVE10")
    cart.add_item(session, ALICE, book.id, 1)

    with pytest.raises(InvalidPromotion) as excinfo:
        orders.create_order(session, ALICE, CheckoutRequest(promo_code="SAVE10"))

    assert excinfo.value.reason == "BELOW_MIN_SUBTOTAL"
    assert excinfo.value.details["promo_code"] == "SAVE10"
    assert read(models.Book, book.id).stock == 10
    assert len(cart.list_items(session, ALICE.user_id)) == 1


def test_stale_promotion_validation_fails_at_commit(
    session_factory, make_book, make_promotion, read
) -> None:
    book = make_book(price="30.00", stock=10)
    promotion = make_promotion("ONCE", max_redemptions=1)

    with session_factory() as alice_session, session_factory() as bob_session:
        cart.add_item(alice_session, ALICE, book.id, 1)
        cart.add_item(bob_session, BOB, book.id, 1)

        alice = orders.prepare_checkout(alice_session, ALICE, CheckoutRequest(promo_code="ONCE"))
        bob = orders.prepare_checkout(bob_session, BOB, CheckoutRequest(promo_code="ONCE"))
        assert alice.promotion.ok and bob.promotion.ok

        orders.commit_checkout(alice_session, alice)
        with pytest.raises(InvalidPromotion) as excinfo:
            orders.commit_checkout(bob_session, bob)

        assert excinfo.value.reason == "QUOTA_EXHAUSTED"
        assert bob.state is CheckoutState.REJECTED
        assert bob.failure is excinfo.value
        assert alice.state is CheckoutState.CONFIRMED
        assert len(cart.list_items(bob_session, BOB.user_id)) == 1

    assert read(models.PromotionCode, promotion.id).redeemed_count == 1
    # Bob's stock decrement was rolled back together with the promotion.
    assert read(models.Book, book.id).stock == 9


def test_same_cart_submitted_twice_orders_once(session_factory, make_book, read) -> None:
    book = make_book(stock=10)

    with session_factory() as first, session_factory() as second:
        cart.add_item(first, ALICE, book.id, 2)
        original = orders.prepare_checkout(first, ALICE)
        duplicate = orders.prepare_checkout(second, ALICE)

        orders.commit_checkout(first, original)
        with pytest.raises(EmptyCart):
            orders.commit_checkout(second, duplicate)
        assert duplicate.state is CheckoutState.REJECTED

    assert _order_count(session_factory) == 1
    assert read(models.Book, book.id).stock == 8


def test_cart_edited_after_validation_is_not_committed(session, make_book, read) -> None:
    dune = make_book(title="Dune", stock=10)
    emma = make_book(title="Emma", stock=10)
    cart.add_item(session, ALICE, dune.id, 1)
    checkout = orders.prepare_checkout(session, ALICE)

    cart.add_item(session, ALICE, emma.id, 3)
    with pytest.raises(ConcurrencyConflict) as excinfo:
        orders.commit_checkout(session, checkout)

    assert excinfo.value.retryable is True
    assert checkout.state is CheckoutState.REJECTED
    assert {(item.book_id, item.quantity) for item in cart.list_items(session, ALICE.user_id)} == {
        (dune.id, 1),
        (emma.id, 3),
    }
    assert read(models.Book, dune.id).stock == 10
    assert read(models.Book, emma.id).stock == 10

    order = orders.create_order(session, ALICE)
    assert sorted((item.book_id, item.quantity) for item in order.items) == [(dune.id, 1), (emma.id, 3)]


def test_promotion_deactivated_after_validation(session, make_book, make_promotion, read) -> None:
    book = make_book(price="30.00", stock=5)
    promotion = make_promotion("SAVE10")
    cart.add_item(session, ALICE, book.id, 1)
    checkout = orders.prepare_checkout(session, ALICE, CheckoutRequest(promo_code="SAVE10"))

    promotions.update_promotion(session, FINANCE, promotion.id, is_active=False)
    with pytest.raises(InvalidPromotion) as excinfo:
        orders.commit_checkout(session, checkout)

    assert excinfo.value.reason == "INACTIVE"
    assert read(models.Book, book.id).stock == 5


def test_commit_requires_validated_checkout(session, make_book) -> None:
    book = make_book()
    cart.add_item(session, ALICE, book.id, 1)
    checkout = orders.prepare_checkout(session, ALICE)
    orders.commit_checkout(session, checkout)

    with pytest.raises(RuntimeError):
        orders.commit_checkout(session, checkout)


def test_cancel_restores_stock_exactly(session, make_book, read) -> None:
    first = make_book(stock=7)
    second = make_book(title="Second", stock=4)
    cart.add_item(session, ALICE, first.id, 3)
    cart.add_item(session, ALICE, second.id, 4)
    order = orders.create_order(session, ALICE)
    assert read(models.Book, second.id).stock_status is models.StockStatus.OUT_OF_STOCK

    cancelled = orders.cancel_order(session, ALICE, order.id)

    assert cancelled.status is OrderStatus.CANCELLED
    assert read(models.Book, first.id).stock == 7
    assert read(models.Book, second.id).stock == 4

    with pytest.raises(InvalidTransition):
        orders.cancel_order(session, ALICE, order.id)
    assert read(models.Book, first.id).stock == 7


def test_completed_orders_cannot_be_cancelled(session, make_book, read) -> None:
    book = make_book(stock=3)
    cart.add_item(session, ALICE, book.id, 1)
    order = orders.create_order(session, ALICE)
    orders.update_status(session, FINANCE, order.id, OrderStatus.CONFIRMED)
    orders.update_status(session, FINANCE, order.id, OrderStatus.COMPLETED)

    with pytest.raises(InvalidTransition, match="Completed orders cannot be cancelled"):
        orders.cancel_order(session, ALICE, order.id)
    assert read(models.Book, book.id).stock == 2


def test_customers_cancel_only_their_own_orders(session, make_book) -> None:
    book = make_book(stock=3)
    cart.add_item(session, ALICE, book.id, 1)
    order = orders.create_order(session, ALICE)

    with pytest.raises(NotFound):
        orders.cancel_order(session, BOB, order.id)
    with pytest.raises(NotFound):
        orders.get_order(session, BOB, order.id)

    assert orders.cancel_order(session, ADMIN, order.id).status is OrderStatus.CANCELLED


@pytest.mark.parametrize(
    ("path", "target"),
    [
        ([], OrderStatus.COMPLETED),
        ([OrderStatus.CONFIRMED], OrderStatus.PENDING),
        ([OrderStatus.CONFIRMED, OrderStatus.COMPLETED], OrderStatus.CONFIRMED),
    ],
)
def test_invalid_status_transitions(session, make_book, path, target) -> None:
    book = make_book()
    cart.add_item(session, ALICE, book.id, 1)
    order = orders.create_order(session, ALICE)
    for status in path:
        orders.update_status(session, FINANCE, order.id, status)

    with pytest.raises(InvalidTransition):
        orders.update_status(session, FINANCE, order.id, target)


def test_status_updates(session, make_book, read) -> None:
    book = make_book(stock=2)
    cart.add_item(session, ALICE, book.id, 2)
    order = orders.create_order(session, ALICE)

    assert orders.update_status(session, FINANCE, order.id, OrderStatus.PENDING).status is OrderStatus.PENDING
    assert orders.update_status(session, FINANCE, order.id, OrderStatus.CONFIRMED).status is OrderStatus.CONFIRMED
    cancelled = orders.update_status(session, FINANCE, order.id, OrderStatus.CANCELLED)
    assert cancelled.status is OrderStatus.CANCELLED
    assert read(models.Book, book.id).stock == 2

    with pytest.raises(PermissionDenied):
        orders.update_status(session, ALICE, order.id, OrderStatus.CONFIRMED)


def test_store_pickup_draws_from_store_stock(session, make_book, make_store, read) -> None:
    book = make_book(stock=10)
    store = make_store()
    ledger.set_store_stock(session, ADMIN, store.id, book.id, 2)
    cart.add_item(session, ALICE, book.id, 3)
    pickup = CheckoutRequest(delivery_type=DeliveryType.STORE_PICKUP, store_id=store.id)

    with pytest.raises(InsufficientStock) as excinfo:
        orders.create_order(session, ALICE, pickup)
    assert excinfo.value.details["location"] == f"store {store.id}"

    cart.update_quantity(session, ALICE, book.id, 2)
    order = orders.create_order(session, ALICE, pickup)

    assert order.store_id == store.id
    assert read(models.StoreStock, (store.id, book.id)).stock == 0
    assert read(models.Book, book.id).stock == 10

    orders.cancel_order(session, ALICE, order.id)
    assert read(models.StoreStock, (store.id, book.id)).stock == 2
    assert read(models.Book, book.id).stock == 10


def test_store_pickup_requires_active_store(session, make_book, make_store) -> None:
    book = make_book()
    closed = make_store(is_active=False)
    cart.add_item(session, ALICE, book.id, 1)

    with pytest.raises(ValidationFailed):
        orders.create_order(session, ALICE, CheckoutRequest(delivery_type=DeliveryType.STORE_PICKUP))
    with pytest.raises(Conflict):
        orders.create_order(
            session, ALICE, CheckoutRequest(delivery_type=DeliveryType.STORE_PICKUP, store_id=closed.id)
        )


def test_list_orders_scoping(session, make_book) -> None:
    book = make_book(stock=10)
    for actor in (ALICE, BOB, ALICE):
        cart.add_item(session, actor, book.id, 1)
        orders.create_order(session, actor)

    assert len(orders.list_orders(session, ALICE)) == 2
    assert len(orders.list_orders(session, FINANCE, all_users=True)) == 3
    assert orders.list_orders(session, BOB, status=OrderStatus.CANCELLED) == []
    with pytest.raises(PermissionDenied):
        orders.list_orders(session, ALICE, all_users=True)


def test_preview_promotion(session, make_book, make_promotion) -> None:
    book = make_book(price="30.00")
    make_promotion("SAVE10")
    cart.add_item(session, ALICE, book.id, 2)

    preview = orders.preview_promotion(session, ALICE, "save10")
    assert preview.ok
    assert preview.subtotal == Decimal("60.00")
    assert preview.discount == Decimal("5.00")

    blank = orders.preview_promotion(session, ALICE, "   ")
    assert not blank.ok
    assert blank.message == "Promo code is required."
