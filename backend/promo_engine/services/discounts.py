"""Discount arithmetic for promotion rules.

Every (scope, type) pair resolves through a dispatch table; the tables are
checked against the enums at import time so a new promotion type cannot ship
without a calculator. Results are rounded half-to-even to the currency's
minor unit exactly once, at the end of each computation.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from promo_engine.models.promotion import SHIPPING_TYPES, Promotion, PromotionScope, PromotionType
from promo_engine.services.errors import InvalidValue, ScopeTypeMismatch
from promo_engine.services.pricing import ZERO, quantize_money, to_decimal
from promo_engine.services.targets import MatchedLine, TargetMatch, TargetRule

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class PromotionRule:
    """Immutable snapshot of the parts of a promotion the calculator reads."""

    code: str
    scope: PromotionScope
    type: PromotionType
    value: Decimal
    max_discount: Decimal | None = None
    min_order_value: Decimal | None = None
    targets: tuple[TargetRule, ...] = field(default_factory=tuple)

    @classmethod
    def from_model(cls, promotion: Promotion) -> "PromotionRule":
        targets = tuple(
            TargetRule(
                product_id=t.product_id,
                variant_id=t.variant_id,
                specific_value=to_decimal(t.specific_value) if t.specific_value is not None else None,
            )
            for t in (promotion.targets or [])
        )
        return cls(
            code=promotion.code,
            scope=PromotionScope(promotion.scope),
            type=PromotionType(promotion.type),
            value=to_decimal(promotion.value),
            max_discount=to_decimal(promotion.max_discount) if promotion.max_discount is not None else None,
            min_order_value=to_decimal(promotion.min_order_value) if promotion.min_order_value is not None else None,
            targets=targets,
        )

    @property
    def applies_to_shipping(self) -> bool:
        return self.type in SHIPPING_TYPES


@dataclass(frozen=True)
class DiscountComputation:
    merchandise_discount: Decimal
    shipping_discount: Decimal
    applied_to_shipping: bool = False

    @property
    def discount_amount(self) -> Decimal:
        return self.shipping_discount if self.applied_to_shipping else self.merchandise_discount


def _is_percentage(promo_type: PromotionType) -> bool:
    return promo_type in {PromotionType.PERCENTAGE, PromotionType.FREESHIP_PERCENTAGE}


def validate_rule(
    *,
    scope: PromotionScope,
    promo_type: PromotionType,
    value: Decimal,
    max_discount: Decimal | None = None,
    targets: Sequence[TargetRule] = (),
) -> None:
    """Reject (scope, type, value) combinations the calculator cannot honour."""
    if promo_type in SHIPPING_TYPES and scope == PromotionScope.SPECIFIC_ITEMS:
        raise ScopeTypeMismatch()

    value = to_decimal(value)
    if promo_type == PromotionType.FREESHIP:
        if value != HUNDRED:
            raise InvalidValue("Free-shipping promotions always discount 100% of the shipping fee")
    elif _is_percentage(promo_type):
        if value <= 0 or value > HUNDRED:
            raise InvalidValue("Percentage value must be greater than 0 and at most 100")
    elif value <= 0:
        raise InvalidValue("Fixed discount value must be greater than 0")

    if max_discount is not None and to_decimal(max_discount) <= 0:
        raise InvalidValue("Maximum discount must be greater than 0")

    if scope == PromotionScope.SPECIFIC_ITEMS:
        if not targets:
            raise InvalidValue("Specific-item promotions need at least one target")
        for target in targets:
            if target.specific_value is None:
                continue
            specific = to_decimal(target.specific_value)
            if specific <= 0:
                raise InvalidValue("Target value must be greater than 0")
            if _is_percentage(promo_type) and specific > HUNDRED:
                raise InvalidValue("Target percentage must be at most 100")


def _cap(amount: Decimal, max_discount: Decimal | None) -> Decimal:
    if max_discount is None:
        return amount
    return min(amount, max_discount)


def _global_percentage(rule: PromotionRule, subtotal: Decimal, shipping_fee: Decimal) -> DiscountComputation:
    raw = _cap(subtotal * rule.value / HUNDRED, rule.max_discount)
    return DiscountComputation(merchandise_discount=quantize_money(min(raw, subtotal)), shipping_discount=ZERO)


def _global_fixed(rule: PromotionRule, subtotal: Decimal, shipping_fee: Decimal) -> DiscountComputation:
    return DiscountComputation(merchandise_discount=quantize_money(min(rule.value, subtotal)), shipping_discount=ZERO)


def _global_freeship(rule: PromotionRule, subtotal: Decimal, shipping_fee: Decimal) -> DiscountComputation:
    return DiscountComputation(
        merchandise_discount=ZERO,
        shipping_discount=quantize_money(shipping_fee),
        applied_to_shipping=True,
    )


def _global_freeship_percentage(rule: PromotionRule, subtotal: Decimal, shipping_fee: Decimal) -> DiscountComputation:
    raw = _cap(shipping_fee * rule.value / HUNDRED, rule.max_discount)
    return DiscountComputation(
        merchandise_discount=ZERO,
        shipping_discount=quantize_money(min(raw, shipping_fee)),
        applied_to_shipping=True,
    )


def _effective_value(rule: PromotionRule, matched: MatchedLine) -> Decimal:
    if matched.specific_value is not None:
        return to_decimal(matched.specific_value)
    return rule.value


def _items_percentage(rule: PromotionRule, matched: Sequence[MatchedLine]) -> Decimal:
    # maxDiscount caps each target's share independently.
    per_target: dict[TargetRule, Decimal] = defaultdict(lambda: ZERO)
    for item in matched:
        per_target[item.target] += item.line.line_total * _effective_value(rule, item) / HUNDRED
    return sum((_cap(amount, rule.max_discount) for amount in per_target.values()), start=ZERO)


def _items_fixed(rule: PromotionRule, matched: Sequence[MatchedLine]) -> Decimal:
    return sum((min(_effective_value(rule, item), item.line.line_total) for item in matched), start=ZERO)


GlobalCalculator = Callable[[PromotionRule, Decimal, Decimal], DiscountComputation]
ItemsCalculator = Callable[[PromotionRule, Sequence[MatchedLine]], Decimal]

_GLOBAL_CALCULATORS: dict[PromotionType, GlobalCalculator] = {
    PromotionType.PERCENTAGE: _global_percentage,
    PromotionType.FIXED: _global_fixed,
    PromotionType.FREESHIP: _global_freeship,
    PromotionType.FREESHIP_PERCENTAGE: _global_freeship_percentage,
}

_ITEMS_CALCULATORS: dict[PromotionType, ItemsCalculator] = {
    PromotionType.PERCENTAGE: _items_percentage,
    PromotionType.FIXED: _items_fixed,
}

_unhandled = (set(PromotionType) - set(_GLOBAL_CALCULATORS)) | (
    set(PromotionType) - SHIPPING_TYPES - set(_ITEMS_CALCULATORS)
)
if _unhandled:  # pragma: no cover - import-time guard
    raise RuntimeError(f"No discount calculator for promotion types: {sorted(t.value for t in _unhandled)}")


def compute_discount(
    rule: PromotionRule,
    *,
    subtotal: Decimal,
    shipping_fee: Decimal = ZERO,
    matched: TargetMatch | None = None,
) -> DiscountComputation:
    validate_rule(
        scope=rule.scope,
        promo_type=rule.type,
        value=rule.value,
        max_discount=rule.max_discount,
        targets=rule.targets,
    )
    subtotal = max(to_decimal(subtotal), ZERO)
    shipping_fee = max(to_decimal(shipping_fee), ZERO)

    if rule.scope == PromotionScope.GLOBAL_ORDER:
        return _GLOBAL_CALCULATORS[rule.type](rule, subtotal, shipping_fee)

    if matched is None:
        matched = TargetMatch(eligible=[], ineligible=[])
    raw = _ITEMS_CALCULATORS[rule.type](rule, matched.eligible)
    merchandise = quantize_money(min(raw, matched.eligible_total))
    return DiscountComputation(merchandise_discount=merchandise, shipping_discount=ZERO)
