import asyncio
from datetime import timedelta
from decimal import Decimal
from uuid import UUID

import pytest
from sqlalchemy import func, select

from promo_engine.models import Order, Promotion, Redemption
from promo_engine.schemas.order import OrderCreate
from promo_engine.services import ledger
from promo_engine.services import orders as orders_service
from promo_engine.services.errors import (
    CodeNotFound,
    Deactivated,
    Expired,
    NotYetStarted,
    OrderAlreadyRedeemed,
    PerUserLimitExceeded,
    RedemptionConflict,
    UsageLimitExceeded,
)


def _new_order(session_factory, user_id: str = "user-1") -> UUID:
    async def _create() -> UUID:
        async with session_factory() as session:
            order = Order(user_id=user_id, subtotal=Decimal("100000"), total_amount=Decimal("100000"))
            session.add(order)
            await session.commit()
            return order.id

    return asyncio.run(_create())


def _commit(session_factory, promotion_id: UUID, order_id: UUID, user_id: str = "user-1", **kwargs) -> Redemption:
    async def _run() -> Redemption:
        async with session_factory() as session:
            redemption = await ledger.commit_redemption(
                session,
                promotion_id=promotion_id,
                user_id=user_id,
                order_id=order_id,
                discount_amount=Decimal("20000"),
                **kwargs,
            )
            await session.commit()
            return redemption

    return asyncio.run(_run())


def _promotion_state(session_factory, promotion_id: UUID) -> tuple[int, int, int]:
    async def _read() -> tuple[int, int, int]:
        async with session_factory() as session:
            promotion = await session.get(Promotion, promotion_id)
            active = await ledger.count_active_redemptions(session, promotion_id=promotion_id)
            return promotion.used_count, promotion.version, active

    return asyncio.run(_read())


def test_commit_increments_usage_and_version(session_factory, seed_promotion) -> None:
    promotion = seed_promotion(session_factory)
    order_id = _new_order(session_factory)

    redemption = _commit(session_factory, promotion.id, order_id)

    assert redemption.order_id == order_id
    assert redemption.discount_amount == Decimal("20000")
    assert _promotion_state(session_factory, promotion.id) == (1, 1, 1)


def test_commit_is_idempotent_per_order(session_factory, seed_promotion) -> None:
    promotion = seed_promotion(session_factory, usage_limit=10)
    order_id = _new_order(session_factory)

    first = _commit(session_factory, promotion.id, order_id)
    second = _commit(session_factory, promotion.id, order_id)

    assert first.id == second.id
    assert _promotion_state(session_factory, promotion.id) == (1, 1, 1)


def test_order_cannot_switch_promotion(session_factory, seed_promotion) -> None:
    first = seed_promotion(session_factory, code="FIRST")
    second = seed_promotion(session_factory, code="SECOND")
    order_id = _new_order(session_factory)

    _commit(session_factory, first.id, order_id)
    with pytest.raises(OrderAlreadyRedeemed):
        _commit(session_factory, second.id, order_id)
    assert _promotion_state(session_factory, second.id) == (0, 0, 0)


def test_usage_limit_is_enforced(session_factory, seed_promotion) -> None:
    promotion = seed_promotion(session_factory, usage_limit=2)
    for user in ("a", "b"):
        _commit(session_factory, promotion.id, _new_order(session_factory, user), user_id=user)

    with pytest.raises(UsageLimitExceeded):
        _commit(session_factory, promotion.id, _new_order(session_factory, "c"), user_id="c")
    assert _promotion_state(session_factory, promotion.id)[0] == 2


def test_per_user_limit_is_enforced(session_factory, seed_promotion) -> None:
    promotion = seed_promotion(session_factory, per_user_limit=1)
    _commit(session_factory, promotion.id, _new_order(session_factory, "a"), user_id="a")

    with pytest.raises(PerUserLimitExceeded):
        _commit(session_factory, promotion.id, _new_order(session_factory, "a"), user_id="a")
    _commit(session_factory, promotion.id, _new_order(session_factory, "b"), user_id="b")
    assert _promotion_state(session_factory, promotion.id)[0] == 2


def test_commit_rechecks_active_flag_under_lock(session_factory, seed_promotion) -> None:
    promotion = seed_promotion(session_factory, is_active=False)

    with pytest.raises(Deactivated):
        _commit(session_factory, promotion.id, _new_order(session_factory))
    assert _promotion_state(session_factory, promotion.id) == (0, 0, 0)


def test_commit_rechecks_window_under_lock(session_factory, seed_promotion) -> None:
    promotion = seed_promotion(session_factory)
    order_id = _new_order(session_factory)

    with pytest.raises(Expired):
        _commit(session_factory, promotion.id, order_id, now=promotion.end_date)
    with pytest.raises(NotYetStarted):
        _commit(session_factory, promotion.id, order_id, now=promotion.start_date - timedelta(seconds=1))
    assert _promotion_state(session_factory, promotion.id) == (0, 0, 0)


def test_unknown_promotion(session_factory) -> None:
    with pytest.raises(CodeNotFound):
        _commit(session_factory, UUID(int=1), _new_order(session_factory))


def test_conflicts_exhaust_retries_without_incrementing(session_factory, seed_promotion, monkeypatch) -> None:
    promotion = seed_promotion(session_factory)
    order_id = _new_order(session_factory)
    calls: list[int] = []

    async def _always_lose(session, *, promotion_id, expected_version) -> bool:
        calls.append(expected_version)
        return False

    monkeypatch.setattr(ledger, "bump_usage", _always_lose)
    monkeypatch.setattr(ledger.settings, "redemption_retry_backoff_ms", 0)

    with pytest.raises(RedemptionConflict):
        _commit(session_factory, promotion.id, order_id, max_attempts=3)

    assert len(calls) == 3
    assert _promotion_state(session_factory, promotion.id) == (0, 0, 0)


def test_conflict_is_retried_until_it_wins(session_factory, seed_promotion, monkeypatch) -> None:
    promotion = seed_promotion(session_factory)
    order_id = _new_order(session_factory)
    real_bump = ledger.bump_usage
    attempts: list[int] = []

    async def _lose_once(session, *, promotion_id, expected_version) -> bool:
        attempts.append(expected_version)
        if len(attempts) == 1:
            return False
        return await real_bump(session, promotion_id=promotion_id, expected_version=expected_version)

    monkeypatch.setattr(ledger, "bump_usage", _lose_once)
    monkeypatch.setattr(ledger.settings, "redemption_retry_backoff_ms", 0)

    _commit(session_factory, promotion.id, order_id)

    assert len(attempts) == 2
    assert _promotion_state(session_factory, promotion.id) == (1, 1, 1)


def test_release_voids_and_frees_the_use(session_factory, seed_promotion) -> None:
    promotion = seed_promotion(session_factory, usage_limit=1, per_user_limit=1)
    order_id = _new_order(session_factory)
    _commit(session_factory, promotion.id, order_id)

    async def _release() -> Redemption | None:
        async with session_factory() as session:
            released = await ledger.release_redemption(session, order_id=order_id, reason="customer_cancelled")
            await session.commit()
            return released

    released = asyncio.run(_release())
    assert released is not None
    assert released.voided_at is not None
    assert released.void_reason == "customer_cancelled"
    assert _promotion_state(session_factory, promotion.id) == (0, 2, 0)

    # Releasing twice is a no-op.
    assert asyncio.run(_release()) is None
    assert _promotion_state(session_factory, promotion.id) == (0, 2, 0)

    # The freed use is available again, to the same user as well.
    _commit(session_factory, promotion.id, _new_order(session_factory))
    assert _promotion_state(session_factory, promotion.id) == (1, 3, 1)


def test_released_order_cannot_be_redeemed_again(session_factory, seed_promotion) -> None:
    promotion = seed_promotion(session_factory)
    order_id = _new_order(session_factory)
    _commit(session_factory, promotion.id, order_id)

    async def _release() -> None:
        async with session_factory() as session:
            await ledger.release_redemption(session, order_id=order_id)
            await session.commit()

    asyncio.run(_release())
    with pytest.raises(OrderAlreadyRedeemed):
        _commit(session_factory, promotion.id, order_id)


def test_concurrent_orders_never_overshoot_usage_limit(file_session_factory, seed_promotion) -> None:
    promotion = seed_promotion(file_session_factory, usage_limit=3)
    payload = OrderCreate(
        cart_items=[{"productId": "shirt", "price": 100000, "quantity": 1}],
        promotion_code="SALE20",
    )

    async def _place(idx: int):
        async with file_session_factory() as session:
            return await orders_service.place_order(session, user_id=f"user-{idx}", payload=payload, policy="fail")

    async def _race():
        return await asyncio.gather(*(_place(idx) for idx in range(8)), return_exceptions=True)

    results = asyncio.run(_race())

    placed = [r for r in results if isinstance(r, Order)]
    rejected = [r for r in results if isinstance(r, UsageLimitExceeded)]
    assert len(placed) == 3
    assert len(rejected) == 5
    assert all(order.discount_amount == Decimal("20000") for order in placed)

    used_count, version, active = _promotion_state(file_session_factory, promotion.id)
    assert (used_count, version, active) == (3, 3, 3)

    async def _orders() -> int:
        async with file_session_factory() as session:
            return int((await session.execute(select(func.count()).select_from(Order))).scalar_one())

    # Rejected orders were rolled back with their redemption attempt.
    assert asyncio.run(_orders()) == 3


def test_concurrent_orders_respect_per_user_limit(file_session_factory, seed_promotion) -> None:
    promotion = seed_promotion(file_session_factory, per_user_limit=2)
    payload = OrderCreate(
        cart_items=[{"productId": "shirt", "price": 100000, "quantity": 1}],
        promotion_code="SALE20",
    )

    async def _place():
        async with file_session_factory() as session:
            return await orders_service.place_order(session, user_id="same-user", payload=payload, policy="fail")

    async def _race():
        return await asyncio.gather(*(_place() for _ in range(6)), return_exceptions=True)

    results = asyncio.run(_race())

    assert len([r for r in results if isinstance(r, Order)]) == 2
    assert len([r for r in results if isinstance(r, PerUserLimitExceeded)]) == 4
    assert _promotion_state(file_session_factory, promotion.id)[0] == 2
