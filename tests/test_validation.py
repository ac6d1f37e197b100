from datetime import datetime
from decimal import Decimal

import pytest

from bookstore_core.errors import ValidationFailed
from bookstore_core.models import DiscountType
from bookstore_core.validation import (
    check_cart_line,
    check_price,
    check_promotion_rules,
    check_quantity,
    check_stock_level,
    ensure_valid,
)


def test_check_quantity_bounds() -> None:
    assert ensure_valid(check_quantity(3)) == 3
    assert check_quantity(1000).ok
    assert check_quantity(5, maximum=3).errors[0].message == "must be at most 3"
    assert ensure_valid(check_cart_line(1, 5000)) == (1, 5000)
    assert not check_quantity(True).ok


def test_check_cart_line_collects_every_error() -> None:
    result = check_cart_line(0, 0)
    assert [error.field for error in result.errors] == ["book_id", "quantity"]
    with pytest.raises(ValidationFailed) as excinfo:
        ensure_valid(result)
    assert excinfo.value.to_dict()["code"] == "VALIDATION_ERROR"
    assert len(excinfo.value.errors) == 2


def test_check_stock_level() -> None:
    assert check_stock_level(0).ok
    assert check_stock_level(4, 1).ok
    assert [error.field for error in check_stock_level(-1, 0).errors] == ["stock", "low_stock_threshold"]


@pytest.mark.parametrize(
    ("value", "ok"),
    [(Decimal("0"), True), (Decimal("9.99"), True), (Decimal("-1"), False), (Decimal("1.005"), False), (9.99, False)],
)
def test_check_price(value, ok) -> None:
    assert (check_price(value) == []) is ok


def test_promotion_rules() -> None:
    base = dict(
        code="OK",
        discount_type=DiscountType.FIXED,
        discount_value=Decimal("5"),
        min_subtotal=Decimal("0"),
        max_discount_amount=None,
        starts_at=None,
        ends_at=None,
        max_redemptions=None,
    )
    assert check_promotion_rules(**base).ok
    assert check_promotion_rules(**{**base, "discount_value": Decimal("150")}).ok
    assert not check_promotion_rules(**{**base, "discount_type": DiscountType.PERCENT, "discount_value": Decimal("150")}).ok
    assert not check_promotion_rules(**{**base, "code": "  "}).ok
    assert not check_promotion_rules(**{**base, "max_redemptions": 0}).ok
    assert check_promotion_rules(
        **{**base, "starts_at": datetime(2026, 1, 1), "ends_at": datetime(2026, 1, 1)}
    ).ok
    lowered = check_promotion_rules(**{**base, "max_redemptions": 2}, redeemed_count=3)
    assert lowered.errors[0].field == "max_redemptions"
