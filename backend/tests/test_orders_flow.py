import asyncio
from decimal import Decimal
from uuid import UUID

import pytest
from sqlalchemy import func, select

from promo_engine.models import Order, OrderEvent, OrderStatus, Promotion, Redemption
from promo_engine.schemas.order import OrderCreate
from promo_engine.services import ledger
from promo_engine.services import orders as orders_service
from promo_engine.services.errors import Expired, OrderNotFound, RedemptionConflict, UsageLimitExceeded


def _payload(code: str | None = "SALE20", shipping_fee: int = 30000) -> OrderCreate:
    return OrderCreate(
        cart_items=[
            {"productId": "shirt", "productVariantId": "shirt-red", "price": 250000, "quantity": 2},
            {"productId": "hat", "price": 120000, "discountedPrice": 100000},
        ],
        shipping_fee=shipping_fee,
        promotion_code=code,
    )


def _place(session_factory, payload: OrderCreate, *, user_id: str = "user-1", policy: str | None = None) -> Order:
    async def _run() -> Order:
        async with session_factory() as session:
            return await orders_service.place_order(session, user_id=user_id, payload=payload, policy=policy)

    return asyncio.run(_run())


def _count(session_factory, model) -> int:
    async def _run() -> int:
        async with session_factory() as session:
            return int((await session.execute(select(func.count()).select_from(model))).scalar_one())

    return asyncio.run(_run())


def _events(session_factory, order_id: UUID) -> list[str]:
    async def _run() -> list[str]:
        async with session_factory() as session:
            res = await session.execute(select(OrderEvent.event).where(OrderEvent.order_id == order_id))
            return sorted(res.scalars().all())

    return asyncio.run(_run())


def _used_count(session_factory, promotion_id: UUID) -> int:
    async def _run() -> int:
        async with session_factory() as session:
            return (await session.get(Promotion, promotion_id)).used_count

    return asyncio.run(_run())


def test_order_without_code(session_factory) -> None:
    order = _place(session_factory, _payload(code=None))

    assert order.subtotal == Decimal("600000")
    assert order.discount_amount == Decimal("0")
    assert order.total_amount == Decimal("630000")
    assert order.promotion_code is None
    assert _count(session_factory, Redemption) == 0


def test_order_with_code_records_redemption(session_factory, seed_promotion) -> None:
    promotion = seed_promotion(session_factory, max_discount=Decimal("100000"))

    order = _place(session_factory, _payload(code="sale20"))

    assert order.promotion_code == "SALE20"
    assert order.discount_amount == Decimal("100000")
    assert order.total_amount == Decimal("530000")
    assert _used_count(session_factory, promotion.id) == 1
    assert _events(session_factory, order.id) == ["promotion_redeemed"]


def test_freeship_discounts_shipping_only(session_factory, seed_promotion) -> None:
    from promo_engine.models import PromotionType

    seed_promotion(session_factory, code="FREESHIP", type=PromotionType.FREESHIP, value=Decimal("100"))

    order = _place(session_factory, _payload(code="FREESHIP"))

    assert order.discount_amount == Decimal("0")
    assert order.shipping_discount_amount == Decimal("30000")
    assert order.total_amount == Decimal("600000")


def test_fail_policy_rolls_back_the_order(session_factory, seed_promotion) -> None:
    seed_promotion(session_factory, usage_limit=1, used_count=1)

    with pytest.raises(UsageLimitExceeded):
        _place(session_factory, _payload(), policy="fail")

    assert _count(session_factory, Order) == 0
    assert _count(session_factory, Redemption) == 0


def test_drop_policy_keeps_order_without_discount(session_factory, seed_promotion) -> None:
    promotion = seed_promotion(session_factory, usage_limit=1, used_count=1)

    order = _place(session_factory, _payload(), policy="drop")

    assert order.promotion_code is None
    assert order.discount_amount == Decimal("0")
    assert order.total_amount == Decimal("630000")
    assert _events(session_factory, order.id) == ["promotion_dropped"]
    assert _used_count(session_factory, promotion.id) == 1
    assert _count(session_factory, Redemption) == 0


def test_drop_policy_does_not_hide_other_rejections(session_factory, seed_promotion) -> None:
    from datetime import datetime, timedelta, timezone

    now = datetime.now(timezone.utc)
    seed_promotion(session_factory, start_date=now - timedelta(days=3), end_date=now - timedelta(days=1))

    with pytest.raises(Expired):
        _place(session_factory, _payload(), policy="drop")
    assert _count(session_factory, Order) == 0


def test_ledger_conflict_rolls_back_the_order(session_factory, seed_promotion, monkeypatch) -> None:
    promotion = seed_promotion(session_factory)

    async def _always_lose(session, *, promotion_id, expected_version) -> bool:
        return False

    monkeypatch.setattr(ledger, "bump_usage", _always_lose)
    monkeypatch.setattr(ledger.settings, "redemption_retry_backoff_ms", 0)

    with pytest.raises(RedemptionConflict):
        _place(session_factory, _payload())

    assert _count(session_factory, Order) == 0
    assert _used_count(session_factory, promotion.id) == 0


def test_cancel_releases_the_redemption(session_factory, seed_promotion) -> None:
    promotion = seed_promotion(session_factory, usage_limit=1)
    order = _place(session_factory, _payload())
    assert _used_count(session_factory, promotion.id) == 1

    async def _cancel() -> Order:
        async with session_factory() as session:
            return await orders_service.cancel_order(session, order_id=order.id, user_id="user-1", reason="changed mind")

    cancelled = asyncio.run(_cancel())

    assert cancelled.status == OrderStatus.cancelled
    assert _used_count(session_factory, promotion.id) == 0
    assert _events(session_factory, order.id) == ["cancelled", "promotion_redeemed", "promotion_released"]

    # Cancelling again changes nothing.
    asyncio.run(_cancel())
    assert _used_count(session_factory, promotion.id) == 0

    # The released use can be spent by another order.
    _place(session_factory, _payload(), user_id="user-2")
    assert _used_count(session_factory, promotion.id) == 1


def test_cancel_unknown_or_foreign_order(session_factory) -> None:
    order = _place(session_factory, _payload(code=None))

    async def _cancel(order_id: UUID, user_id: str) -> Order:
        async with session_factory() as session:
            return await orders_service.cancel_order(session, order_id=order_id, user_id=user_id)

    with pytest.raises(OrderNotFound):
        asyncio.run(_cancel(UUID(int=7), "user-1"))
    with pytest.raises(OrderNotFound):
        asyncio.run(_cancel(order.id, "someone-else"))


def test_order_total_never_negative() -> None:
    total = orders_service.order_total(
        subtotal=Decimal("10000"),
        shipping_fee=Decimal("5000"),
        discount=Decimal("20000"),
        shipping_discount=Decimal("8000"),
    )
    assert total == Decimal("0")
