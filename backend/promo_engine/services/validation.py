from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from promo_engine.models.promotion import Promotion, PromotionScope
from promo_engine.services import ledger
from promo_engine.services import targets as target_matcher
from promo_engine.services.discounts import DiscountComputation, PromotionRule, compute_discount
from promo_engine.services.errors import (
    BelowMinimum,
    CodeNotFound,
    NoEligibleItems,
    PerUserLimitExceeded,
    PromotionError,
    UsageLimitExceeded,
)
from promo_engine.services.pricing import ZERO, to_decimal
from promo_engine.services.targets import CartLine, TargetMatch
from promo_engine.services.window import as_utc, check_active, check_window, utcnow

logger = logging.getLogger(__name__)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def lines_from_items(items: Iterable[Any]) -> list[CartLine]:
    """Turn request cart items (anything with the cart item attributes) into matcher lines."""
    return [
        CartLine(
            product_id=item.product_id,
            variant_id=item.product_variant_id,
            price=to_decimal(item.price),
            discounted_price=None if item.discounted_price is None else to_decimal(item.discounted_price),
            quantity=int(item.quantity),
        )
        for item in items
    ]


@dataclass(frozen=True)
class CartSnapshot:
    subtotal: Decimal
    lines: tuple[CartLine, ...] = ()
    shipping_fee: Decimal = ZERO

    @classmethod
    def build(
        cls,
        *,
        subtotal: Decimal | int | str,
        lines: Iterable[CartLine] = (),
        shipping_fee: Decimal | int | str | None = None,
    ) -> "CartSnapshot":
        return cls(subtotal=to_decimal(subtotal), lines=tuple(lines), shipping_fee=to_decimal(shipping_fee))


@dataclass(frozen=True)
class PromotionQuote:
    """Result of a successful validation. Not a reservation: it holds no lock."""

    promotion_id: UUID
    promotion: PromotionRule
    merchandise_discount: Decimal
    shipping_discount: Decimal
    applied_to_shipping: bool
    evaluated_at: datetime
    eligible_lines: tuple[CartLine, ...] = field(default_factory=tuple)

    @property
    def discount_amount(self) -> Decimal:
        return self.shipping_discount if self.applied_to_shipping else self.merchandise_discount


def check_threshold(rule: PromotionRule, subtotal: Decimal) -> None:
    if rule.min_order_value is not None and subtotal < rule.min_order_value:
        raise BelowMinimum(f"Order subtotal must be at least {rule.min_order_value:,} to use this code")


def match_scope(rule: PromotionRule, cart: CartSnapshot) -> TargetMatch | None:
    if rule.scope != PromotionScope.SPECIFIC_ITEMS:
        return None
    matched = target_matcher.match(cart.lines, rule.targets)
    if not matched.eligible:
        raise NoEligibleItems()
    return matched


def evaluate_promotion(promotion: Promotion, cart: CartSnapshot, *, now: datetime | None = None) -> PromotionQuote:
    """Run every side-effect-free stage against an already loaded promotion."""
    now = as_utc(now or utcnow())
    check_window(promotion, now)
    check_active(promotion)
    rule = PromotionRule.from_model(promotion)
    check_threshold(rule, cart.subtotal)
    matched = match_scope(rule, cart)

    computation: DiscountComputation = compute_discount(
        rule,
        subtotal=cart.subtotal,
        shipping_fee=cart.shipping_fee,
        matched=matched,
    )
    return PromotionQuote(
        promotion_id=promotion.id,
        promotion=rule,
        merchandise_discount=computation.merchandise_discount,
        shipping_discount=computation.shipping_discount,
        applied_to_shipping=computation.applied_to_shipping,
        evaluated_at=now,
        eligible_lines=tuple(m.line for m in matched.eligible) if matched else (),
    )


async def get_promotion_by_code(session: AsyncSession, *, code: str) -> Promotion | None:
    cleaned = normalize_code(code)
    if not cleaned:
        return None
    res = await session.execute(
        select(Promotion).options(selectinload(Promotion.targets)).where(Promotion.code == cleaned)
    )
    return res.scalar_one_or_none()


async def precheck_limits(session: AsyncSession, *, promotion: Promotion, user_id: str | None) -> None:
    """Advisory limit check; the ledger re-checks authoritatively at commit."""
    if promotion.usage_limit is not None and int(promotion.used_count or 0) >= int(promotion.usage_limit):
        raise UsageLimitExceeded()
    if user_id and promotion.per_user_limit is not None:
        used = await ledger.count_active_redemptions(session, promotion_id=promotion.id, user_id=user_id)
        if used >= int(promotion.per_user_limit):
            raise PerUserLimitExceeded()


async def validate_code(
    session: AsyncSession,
    *,
    code: str,
    cart: CartSnapshot,
    user_id: str | None = None,
    now: datetime | None = None,
) -> PromotionQuote:
    promotion = await get_promotion_by_code(session, code=code)
    if promotion is None:
        raise CodeNotFound()
    try:
        quote = evaluate_promotion(promotion, cart, now=now)
        await precheck_limits(session, promotion=promotion, user_id=user_id)
    except PromotionError as exc:
        logger.info("promotion_rejected", extra={"promotion_code": promotion.code, "reason": exc.code})
        raise
    return quote
