from promo_engine.models.order import Order, OrderEvent, OrderStatus
from promo_engine.models.promotion import (
    Promotion,
    PromotionScope,
    PromotionTarget,
    PromotionType,
    Redemption,
)

__all__ = [
    "Order",
    "OrderEvent",
    "OrderStatus",
    "Promotion",
    "PromotionScope",
    "PromotionTarget",
    "PromotionType",
    "Redemption",
]
