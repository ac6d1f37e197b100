"""Explicit request validation applied before any storage access.

Each ``check_*`` function returns a :class:`ValidationResult`; callers turn a
failed result into :class:`~bookstore_core.errors.ValidationFailed` with
:func:`ensure_valid`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Generic, TypeVar

from .errors import ValidationFailed
from .models import DiscountType

T = TypeVar("T")


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


@dataclass
class ValidationResult(Generic[T]):
    value: T | None = None
    errors: list[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def ensure_valid(result: ValidationResult[T]) -> T:
    if not result.ok:
        raise ValidationFailed([error.as_dict() for error in result.errors])
    return result.value  # type: ignore[return-value]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _quantity_errors(
    value: Any, name: str, *, minimum: int, maximum: int | None = None
) -> list[FieldError]:
    if not _is_int(value):
        return [FieldError(name, "must be an integer")]
    if value < minimum:
        return [FieldError(name, f"must be at least {minimum}")]
    if maximum is not None and value > maximum:
        return [FieldError(name, f"must be at most {maximum}")]
    return []


def _id_errors(value: Any, name: str) -> list[FieldError]:
    if not _is_int(value) or value < 1:
        return [FieldError(name, "must be a positive integer id")]
    return []


def check_quantity(
    value: Any, *, name: str = "quantity", minimum: int = 1, maximum: int | None = None
) -> ValidationResult[int]:
    errors = _quantity_errors(value, name, minimum=minimum, maximum=maximum)
    return ValidationResult(value=None if errors else value, errors=errors)


def check_cart_line(book_id: Any, quantity: Any, *, minimum: int = 1) -> ValidationResult[tuple[int, int]]:
    errors = _id_errors(book_id, "book_id") + _quantity_errors(quantity, "quantity", minimum=minimum)
    return ValidationResult(value=None if errors else (book_id, quantity), errors=errors)


def check_stock_level(stock: Any, threshold: Any = None) -> ValidationResult[tuple[int, int | None]]:
    errors: list[FieldError] = []
    if not _is_int(stock) or stock < 0:
        errors.append(FieldError("stock", "must be a non-negative integer"))
    if threshold is not None and (not _is_int(threshold) or threshold < 1):
        errors.append(FieldError("low_stock_threshold", "must be a positive integer"))
    return ValidationResult(value=None if errors else (stock, threshold), errors=errors)


def check_transfer(
    from_warehouse_id: Any, to_store_id: Any, book_id: Any, quantity: Any, note: str | None = None
) -> ValidationResult[tuple[int, int, int, int]]:
    errors = (
        _id_errors(from_warehouse_id, "from_warehouse_id")
        + _id_errors(to_store_id, "to_store_id")
        + _id_errors(book_id, "book_id")
    )
    if not _is_int(quantity) or quantity < 1:
        errors.append(FieldError("quantity", "must be at least 1"))
    if note is not None and len(note) > 280:
        errors.append(FieldError("note", "must be at most 280 characters"))
    value = None if errors else (from_warehouse_id, to_store_id, book_id, quantity)
    return ValidationResult(value=value, errors=errors)


def check_price(value: Any, name: str = "price") -> list[FieldError]:
    if not isinstance(value, Decimal) or value < 0:
        return [FieldError(name, "must be a non-negative amount")]
    if value != value.quantize(Decimal("0.01")):
        return [FieldError(name, "must have at most two decimal places")]
    return []


def check_promotion_rules(
    *,
    code: str | None,
    discount_type: DiscountType,
    discount_value: Decimal,
    min_subtotal: Decimal,
    max_discount_amount: Decimal | None,
    starts_at: datetime | None,
    ends_at: datetime | None,
    max_redemptions: int | None,
    redeemed_count: int = 0,
) -> ValidationResult[None]:
    errors: list[FieldError] = []
    if code is not None and not code.strip():
        errors.append(FieldError("code", "must not be blank"))
    if code is not None and len(code.strip()) > 40:
        errors.append(FieldError("code", "must be at most 40 characters"))
    if discount_value <= 0:
        errors.append(FieldError("discount_value", "must be greater than 0"))
    elif discount_type is DiscountType.PERCENT and discount_value > 100:
        errors.append(FieldError("discount_value", "percent discount cannot exceed 100"))
    errors.extend(check_price(min_subtotal, "min_subtotal"))
    if max_discount_amount is not None and max_discount_amount <= 0:
        errors.append(FieldError("max_discount_amount", "must be greater than 0"))
    if starts_at is not None and ends_at is not None and ends_at < starts_at:
        errors.append(FieldError("ends_at", "must be after starts_at"))
    if max_redemptions is not None:
        if not _is_int(max_redemptions) or max_redemptions < 1:
            errors.append(FieldError("max_redemptions", "must be at least 1"))
        elif max_redemptions < redeemed_count:
            errors.append(
                FieldError("max_redemptions", f"cannot be lower than the {redeemed_count} redemptions already made")
            )
    return ValidationResult(errors=errors)
