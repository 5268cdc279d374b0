from __future__ import annotations


class PromotionError(Exception):
    """Base for every rejection the promotion engine can produce.

    ``code`` is the stable machine-readable reason, ``status_code`` the HTTP
    status the API layer answers with, and the message is shown verbatim to
    the shopper.
    """

    code: str = "promotion_error"
    status_code: int = 400
    default_message: str = "Promotion cannot be applied"

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class CodeNotFound(PromotionError):
    code = "code_not_found"
    status_code = 404
    default_message = "Promotion code does not exist"


class NotYetStarted(PromotionError):
    code = "not_yet_started"
    default_message = "Promotion code is not valid yet"


class Expired(PromotionError):
    code = "expired"
    default_message = "Promotion code has expired"


class Deactivated(PromotionError):
    code = "deactivated"
    default_message = "Promotion code has been deactivated"


class BelowMinimum(PromotionError):
    code = "below_minimum"
    default_message = "Order subtotal is below the minimum for this code"


class NoEligibleItems(PromotionError):
    code = "no_eligible_items"
    default_message = "No items in the cart are eligible for this code"


class InvalidValue(PromotionError):
    code = "invalid_value"
    default_message = "Promotion value is out of range"


class ScopeTypeMismatch(PromotionError):
    code = "scope_type_mismatch"
    default_message = "Free-shipping promotions must apply to the whole order"


class UsageLimitExceeded(PromotionError):
    code = "usage_limit_exceeded"
    default_message = "Promotion code has no uses left"


class PerUserLimitExceeded(PromotionError):
    code = "per_user_limit_exceeded"
    default_message = "You have used up this promotion code"


class RedemptionConflict(PromotionError):
    """Concurrent commits kept winning the counter race; safe to retry later."""

    code = "redemption_conflict"
    status_code = 503
    default_message = "Promotion is busy, please try again"


class OrderNotFound(PromotionError):
    code = "order_not_found"
    status_code = 404
    default_message = "Order not found"


class OrderAlreadyRedeemed(PromotionError):
    code = "order_already_redeemed"
    status_code = 409
    default_message = "Order already carries a different promotion"


LIMIT_ERRORS = (UsageLimitExceeded, PerUserLimitExceeded)
