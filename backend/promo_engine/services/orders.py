"""Minimal order workflow: the transactional boundary around a redemption.

The order row and its redemption are written in one transaction; if either
fails, both roll back.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.config import settings
from promo_engine.models.order import Order, OrderEvent, OrderStatus
from promo_engine.schemas.order import OrderCreate
from promo_engine.services import ledger, validation
from promo_engine.services.errors import LIMIT_ERRORS, OrderNotFound
from promo_engine.services.pricing import ZERO, quantize_money
from promo_engine.services.targets import CartLine

logger = logging.getLogger(__name__)


def order_total(*, subtotal: Decimal, shipping_fee: Decimal, discount: Decimal, shipping_discount: Decimal) -> Decimal:
    merchandise = max(subtotal - discount, ZERO)
    shipping = max(shipping_fee - shipping_discount, ZERO)
    return quantize_money(merchandise + shipping)


def _apply_totals(order: Order, *, discount: Decimal, shipping_discount: Decimal) -> None:
    order.discount_amount = discount
    order.shipping_discount_amount = shipping_discount
    order.total_amount = order_total(
        subtotal=order.subtotal,
        shipping_fee=order.shipping_fee,
        discount=discount,
        shipping_discount=shipping_discount,
    )


async def _redeem(
    session: AsyncSession,
    *,
    order: Order,
    user_id: str,
    code: str,
    lines: list[CartLine],
    policy: str,
    now: datetime | None,
) -> None:
    cart = validation.CartSnapshot.build(subtotal=order.subtotal, lines=lines, shipping_fee=order.shipping_fee)
    try:
        quote = await validation.validate_code(session, code=code, cart=cart, user_id=user_id, now=now)
        await ledger.commit_redemption(
            session,
            promotion_id=quote.promotion_id,
            user_id=user_id,
            order_id=order.id,
            discount_amount=quote.merchandise_discount,
            shipping_discount_amount=quote.shipping_discount,
            now=quote.evaluated_at,
        )
    except LIMIT_ERRORS as exc:
        if policy != "drop":
            raise
        logger.warning("promotion_dropped", extra={"order_id": str(order.id), "reason": exc.code})
        order.promotion_code = None
        session.add(OrderEvent(order_id=order.id, event="promotion_dropped", note=f"{code}: {exc.code}"))
        return

    _apply_totals(order, discount=quote.merchandise_discount, shipping_discount=quote.shipping_discount)
    session.add(OrderEvent(order_id=order.id, event="promotion_redeemed", note=code))


async def place_order(
    session: AsyncSession,
    *,
    user_id: str,
    payload: OrderCreate,
    policy: str | None = None,
    now: datetime | None = None,
) -> Order:
    lines = validation.lines_from_items(payload.cart_items)
    subtotal = quantize_money(sum((line.line_total for line in lines), start=ZERO))
    shipping_fee = quantize_money(payload.shipping_fee)
    code = validation.normalize_code(payload.promotion_code)

    order = Order(
        user_id=user_id,
        status=OrderStatus.pending,
        subtotal=subtotal,
        shipping_fee=shipping_fee,
        currency=settings.currency,
        promotion_code=code or None,
    )
    _apply_totals(order, discount=ZERO, shipping_discount=ZERO)

    try:
        session.add(order)
        await session.flush()
        if code:
            await _redeem(
                session,
                order=order,
                user_id=user_id,
                code=code,
                lines=lines,
                policy=policy or settings.order_promotion_rejection_policy,
                now=now,
            )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await session.refresh(order)
    logger.info(
        "order_placed",
        extra={"order_id": str(order.id), "promotion_code": order.promotion_code, "total": order.total_amount},
    )
    return order


async def get_order(session: AsyncSession, *, order_id: UUID, user_id: str | None = None) -> Order:
    order = await session.get(Order, order_id)
    if order is None or (user_id is not None and order.user_id != user_id):
        raise OrderNotFound()
    return order


async def cancel_order(
    session: AsyncSession,
    *,
    order_id: UUID,
    user_id: str | None = None,
    reason: str | None = None,
) -> Order:
    order = await get_order(session, order_id=order_id, user_id=user_id)
    if order.status == OrderStatus.cancelled:
        return order

    try:
        order.status = OrderStatus.cancelled
        session.add(order)
        session.add(OrderEvent(order_id=order.id, event="cancelled", note=reason))
        released = await ledger.release_redemption(session, order_id=order.id, reason=reason or "order_cancelled")
        if released is not None:
            session.add(OrderEvent(order_id=order.id, event="promotion_released", note=order.promotion_code))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await session.refresh(order)
    logger.info("order_cancelled", extra={"order_id": str(order.id), "released": released is not None})
    return order
