from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import ConfigDict, Field, field_validator

from promo_engine.models.promotion import PromotionScope, PromotionType
from promo_engine.schemas.common import MAX_MONEY, MAX_QUANTITY, CamelModel, Money

PromotionStatus = Literal["not_started", "active", "inactive", "expired"]


class CartItemIn(CamelModel):
    product_id: str = Field(min_length=1, max_length=64)
    product_variant_id: str | None = Field(default=None, max_length=64)
    price: Decimal = Field(ge=0, le=MAX_MONEY)
    discounted_price: Decimal | None = Field(default=None, ge=0, le=MAX_MONEY)
    quantity: int = Field(default=1, ge=1, le=MAX_QUANTITY)

    @property
    def line_total(self) -> Decimal:
        unit = self.discounted_price if self.discounted_price is not None else self.price
        return unit * self.quantity


class PromotionValidateRequest(CamelModel):
    code: str = Field(min_length=1, max_length=40)
    subtotal: Decimal = Field(gt=0, le=MAX_MONEY)
    cart_items: list[CartItemIn] = Field(default_factory=list)
    shipping_fee: Decimal = Field(default=Decimal("0"), ge=0, le=MAX_MONEY)

    @field_validator("code")
    @classmethod
    def strip_code(cls, value: str) -> str:
        cleaned = (value or "").strip().upper()
        if not cleaned:
            raise ValueError("Promotion code is required")
        return cleaned


class PromotionSummary(CamelModel):
    code: str
    scope: PromotionScope
    type: PromotionType
    value: Money
    max_discount: Money | None = None


class PromotionQuoteData(CamelModel):
    promotion: PromotionSummary
    discount_amount: Money
    merchandise_discount: Money
    shipping_discount: Money
    applied_to_shipping: bool


class PromotionValidateResponse(CamelModel):
    success: bool = True
    data: PromotionQuoteData


class TargetIn(CamelModel):
    product_id: str = Field(min_length=1, max_length=64)
    variant_id: str | None = Field(default=None, max_length=64)
    specific_value: Decimal | None = Field(default=None, le=MAX_MONEY)


class TargetRead(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: str
    variant_id: str | None = None
    specific_value: Money | None = None
    position: int


class PromotionCreate(CamelModel):
    code: str = Field(max_length=40)
    name: str = Field(min_length=1, max_length=120)
    description: str | None = None
    scope: PromotionScope = PromotionScope.GLOBAL_ORDER
    type: PromotionType = PromotionType.PERCENTAGE
    value: Decimal = Field(default=Decimal("0"), le=MAX_MONEY)
    max_discount: Decimal | None = Field(default=None, le=MAX_MONEY)
    min_order_value: Decimal | None = Field(default=None, ge=0, le=MAX_MONEY)
    start_date: datetime
    end_date: datetime
    usage_limit: int | None = Field(default=None, ge=1)
    per_user_limit: int | None = Field(default=None, ge=1)
    is_active: bool = True
    targets: list[TargetIn] = Field(default_factory=list)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        cleaned = value.strip().upper()
        if len(cleaned) < 3:
            raise ValueError("Promotion code must be at least 3 characters")
        return cleaned


class PromotionUpdate(CamelModel):
    # The code is immutable once created, so an unknown key like "code" is rejected.
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=120)
    description: str | None = None
    scope: PromotionScope | None = None
    type: PromotionType | None = None
    value: Decimal | None = Field(default=None, le=MAX_MONEY)
    max_discount: Decimal | None = Field(default=None, le=MAX_MONEY)
    min_order_value: Decimal | None = Field(default=None, ge=0, le=MAX_MONEY)
    start_date: datetime | None = None
    end_date: datetime | None = None
    usage_limit: int | None = Field(default=None, ge=1)
    per_user_limit: int | None = Field(default=None, ge=1)
    is_active: bool | None = None
    targets: list[TargetIn] | None = None


class PromotionRead(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    name: str
    description: str | None = None
    scope: PromotionScope
    type: PromotionType
    value: Money
    max_discount: Money | None = None
    min_order_value: Money | None = None
    start_date: datetime
    end_date: datetime
    usage_limit: int | None = None
    per_user_limit: int | None = None
    is_active: bool
    used_count: int
    status: PromotionStatus | None = None
    targets: list[TargetRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
