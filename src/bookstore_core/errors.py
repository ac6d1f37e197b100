"""Error taxonomy shared by services, the HTTP layer and the CLI."""

from __future__ import annotations

from typing import Any


class BookstoreError(RuntimeError):
    """Base class for failures surfaced to callers."""

    code = "BOOKSTORE_ERROR"
    retryable = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "detail": self.message}
        if self.details:
            payload.update(self.details)
        return payload


class NotFound(BookstoreError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, identifier: Any) -> None:
        super().__init__(f"{entity} not found", entity=entity.lower(), id=identifier)


class Conflict(BookstoreError):
    """Raised when a unique business key is already taken."""

    code = "CONFLICT"


class InsufficientStock(BookstoreError):
    """The requested quantity exceeds what the ledger holds.

    Terminal for the current attempt: the caller must re-read the cart and
    catalog before trying again.
    """

    code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        book_id: int,
        requested: int,
        available: int,
        *,
        title: str | None = None,
        location: str = "online",
    ) -> None:
        label = title or f"book {book_id}"
        if available <= 0:
            message = f"{label} is out of stock"
        else:
            message = f"Only {available} left in stock for {label}"
        if location != "online":
            message = f"{message} ({location})"
        super().__init__(
            message,
            book_id=book_id,
            requested=requested,
            available=max(available, 0),
            location=location,
        )
        self.book_id = book_id
        self.requested = requested
        self.available = max(available, 0)


class InvalidPromotion(BookstoreError):
    code = "INVALID_PROMOTION"

    def __init__(self, reason: str, message: str, *, promo_code: str | None = None) -> None:
        super().__init__(message, reason=reason, promo_code=promo_code)
        self.reason = reason


class EmptyCart(BookstoreError):
    code = "EMPTY_CART"

    def __init__(self) -> None:
        super().__init__("Cart is empty")


class InvalidTransition(BookstoreError):
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Cannot move an order from {current} to {target}",
            current=current,
            target=target,
        )


class ConcurrencyConflict(BookstoreError):
    """The transaction lost a lock race or timed out; safe to resubmit."""

    code = "CONCURRENCY_CONFLICT"
    retryable = True

    def __init__(self, message: str = "The store is busy right now, please try again.") -> None:
        super().__init__(message)


class ValidationFailed(BookstoreError):
    code = "VALIDATION_ERROR"

    def __init__(self, errors: list[dict[str, str]]) -> None:
        super().__init__("Request validation failed", errors=errors)
        self.errors = errors


class Unauthenticated(BookstoreError):
    code = "UNAUTHENTICATED"

    def __init__(self) -> None:
        super().__init__("Authentication required")


class PermissionDenied(BookstoreError):
    code = "PERMISSION_DENIED"

    def __init__(self, capability: str) -> None:
        super().__init__(f"Missing permission: {capability}", capability=capability)
