from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import ConfigDict, Field, model_validator

from promo_engine.models.order import OrderStatus
from promo_engine.schemas.common import MAX_MONEY, CamelModel, Money
from promo_engine.schemas.promotion import CartItemIn


class OrderCreate(CamelModel):
    cart_items: list[CartItemIn] = Field(min_length=1)
    shipping_fee: Decimal = Field(default=Decimal("0"), ge=0, le=MAX_MONEY)
    promotion_code: str | None = Field(default=None, max_length=40)

    @model_validator(mode="after")
    def check_order_total(self) -> "OrderCreate":
        subtotal = sum((item.line_total for item in self.cart_items), start=Decimal("0"))
        if subtotal + self.shipping_fee > MAX_MONEY:
            raise ValueError("Order total is too large")
        return self


class OrderCancelRequest(CamelModel):
    reason: str | None = Field(default=None, max_length=255)


class OrderRead(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    status: OrderStatus
    subtotal: Money
    shipping_fee: Money
    discount_amount: Money
    shipping_discount_amount: Money
    total_amount: Money
    currency: str
    promotion_code: str | None = None
    created_at: datetime
