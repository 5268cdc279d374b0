"""Partition cart lines into the ones a specific-items promotion applies to."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from promo_engine.services.pricing import ZERO, to_decimal


@dataclass(frozen=True)
class CartLine:
    product_id: str
    variant_id: str | None
    price: Decimal
    quantity: int
    discounted_price: Decimal | None = None

    @property
    def unit_price(self) -> Decimal:
        return self.discounted_price if self.discounted_price is not None else self.price

    @property
    def line_total(self) -> Decimal:
        return to_decimal(self.unit_price) * int(self.quantity or 0)


@dataclass(frozen=True)
class TargetRule:
    product_id: str
    variant_id: str | None = None
    specific_value: Decimal | None = None


@dataclass(frozen=True)
class MatchedLine:
    line: CartLine
    target: TargetRule

    @property
    def specific_value(self) -> Decimal | None:
        return self.target.specific_value


@dataclass(frozen=True)
class TargetMatch:
    eligible: list[MatchedLine]
    ineligible: list[CartLine]

    @property
    def eligible_total(self) -> Decimal:
        return sum((m.line.line_total for m in self.eligible), start=ZERO)


def _index_targets(
    targets: Iterable[TargetRule],
) -> tuple[dict[tuple[str, str], TargetRule], dict[str, TargetRule]]:
    by_variant: dict[tuple[str, str], TargetRule] = {}
    by_product: dict[str, TargetRule] = {}
    for target in targets:
        if target.variant_id is not None:
            by_variant.setdefault((target.product_id, target.variant_id), target)
        else:
            by_product.setdefault(target.product_id, target)
    return by_variant, by_product


def _lookup(
    line: CartLine,
    by_variant: dict[tuple[str, str], TargetRule],
    by_product: dict[str, TargetRule],
) -> TargetRule | None:
    if line.variant_id is not None:
        exact = by_variant.get((line.product_id, line.variant_id))
        if exact is not None:
            return exact
    return by_product.get(line.product_id)


def match(lines: Iterable[CartLine], targets: Sequence[TargetRule]) -> TargetMatch:
    """Pair each line with its most specific target.

    A variant-level target beats a product-level one for the same product;
    among equally specific targets the first in list order wins.
    """
    by_variant, by_product = _index_targets(targets)
    eligible: list[MatchedLine] = []
    ineligible: list[CartLine] = []
    for line in lines:
        target = _lookup(line, by_variant, by_product)
        if target is None:
            ineligible.append(line)
        else:
            eligible.append(MatchedLine(line=line, target=target))
    return TargetMatch(eligible=eligible, ineligible=ineligible)
