"""The only writer of promotion usage.

``commit_redemption`` turns a quote into a persisted redemption inside the
caller's transaction. The promotion row is locked (``SELECT ... FOR UPDATE``
on PostgreSQL, ``BEGIN IMMEDIATE`` on SQLite) and the counter increment is a
conditional update keyed on ``version``; if the version moved underneath us
the attempt is retried a bounded number of times and never degrades to an
unconditional increment.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.config import settings
from promo_engine.models.promotion import Promotion, Redemption
from promo_engine.services.errors import (
    CodeNotFound,
    OrderAlreadyRedeemed,
    PerUserLimitExceeded,
    PromotionError,
    RedemptionConflict,
    UsageLimitExceeded,
)
from promo_engine.services.pricing import ZERO, quantize_money
from promo_engine.services.window import as_utc, check_active, check_window, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageCounters:
    used_count: int
    version: int
    usage_limit: int | None
    per_user_limit: int | None
    is_active: bool
    start_date: datetime
    end_date: datetime


async def count_active_redemptions(session: AsyncSession, *, promotion_id: UUID, user_id: str | None = None) -> int:
    stmt = (
        select(func.count())
        .select_from(Redemption)
        .where(Redemption.promotion_id == promotion_id, Redemption.voided_at.is_(None))
    )
    if user_id is not None:
        stmt = stmt.where(Redemption.user_id == user_id)
    return int((await session.execute(stmt)).scalar_one())


async def max_redemptions_per_user(session: AsyncSession, *, promotion_id: UUID) -> int:
    """Active redemptions held by the customer who has used the promotion most."""
    per_user = (
        select(func.count().label("used"))
        .where(Redemption.promotion_id == promotion_id, Redemption.voided_at.is_(None))
        .group_by(Redemption.user_id)
        .subquery()
    )
    return int((await session.execute(select(func.coalesce(func.max(per_user.c.used), 0)))).scalar_one())


async def get_redemption_for_order(session: AsyncSession, *, order_id: UUID) -> Redemption | None:
    res = await session.execute(select(Redemption).where(Redemption.order_id == order_id))
    return res.scalars().first()


async def read_counters(session: AsyncSession, *, promotion_id: UUID) -> UsageCounters | None:
    """Lock the promotion row and read what a commit has to re-check under the lock."""
    stmt = (
        select(
            Promotion.used_count,
            Promotion.version,
            Promotion.usage_limit,
            Promotion.per_user_limit,
            Promotion.is_active,
            Promotion.start_date,
            Promotion.end_date,
        )
        .where(Promotion.id == promotion_id)
        .with_for_update()
    )
    row = (await session.execute(stmt)).one_or_none()
    if row is None:
        return None
    return UsageCounters(
        used_count=int(row.used_count or 0),
        version=int(row.version or 0),
        usage_limit=row.usage_limit,
        per_user_limit=row.per_user_limit,
        is_active=bool(row.is_active),
        start_date=row.start_date,
        end_date=row.end_date,
    )


async def bump_usage(session: AsyncSession, *, promotion_id: UUID, expected_version: int) -> bool:
    result = await session.execute(
        update(Promotion)
        .where(Promotion.id == promotion_id, Promotion.version == expected_version)
        .values(used_count=Promotion.used_count + 1, version=Promotion.version + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _existing_or_raise(existing: Redemption, *, promotion_id: UUID) -> Redemption:
    if existing.promotion_id != promotion_id:
        raise OrderAlreadyRedeemed()
    if existing.voided_at is not None:
        raise OrderAlreadyRedeemed("Order's promotion redemption was released and cannot be reused")
    return existing


async def _check_redeemable(
    session: AsyncSession,
    *,
    counters: UsageCounters,
    promotion_id: UUID,
    user_id: str,
    now: datetime,
) -> None:
    check_window(counters, now)
    check_active(counters)
    if counters.usage_limit is not None and counters.used_count >= int(counters.usage_limit):
        raise UsageLimitExceeded()
    if counters.per_user_limit is not None:
        used = await count_active_redemptions(session, promotion_id=promotion_id, user_id=user_id)
        if used >= int(counters.per_user_limit):
            raise PerUserLimitExceeded()


async def commit_redemption(
    session: AsyncSession,
    *,
    promotion_id: UUID,
    user_id: str,
    order_id: UUID,
    discount_amount: Decimal,
    shipping_discount_amount: Decimal = ZERO,
    max_attempts: int | None = None,
    now: datetime | None = None,
) -> Redemption:
    """Record one use of a promotion for ``order_id``.

    Flushes but does not commit; the caller's transaction decides whether the
    redemption survives together with its order. Committing the same order
    twice returns the first redemption without touching the counter. The
    window, active flag and limits are re-read under the row lock, so a
    promotion deactivated after validation is refused here.
    """
    attempts = max(1, int(max_attempts or settings.redemption_commit_max_attempts))
    backoff_seconds = max(0, settings.redemption_retry_backoff_ms) / 1000
    now = as_utc(now or utcnow())

    for attempt in range(1, attempts + 1):
        counters = await read_counters(session, promotion_id=promotion_id)
        if counters is None:
            raise CodeNotFound()

        existing = await get_redemption_for_order(session, order_id=order_id)
        if existing is not None:
            return _existing_or_raise(existing, promotion_id=promotion_id)

        try:
            await _check_redeemable(session, counters=counters, promotion_id=promotion_id, user_id=user_id, now=now)
        except PromotionError as exc:
            logger.warning(
                "redemption_rejected",
                extra={"promotion_id": str(promotion_id), "order_id": str(order_id), "reason": exc.code},
            )
            raise

        if await bump_usage(session, promotion_id=promotion_id, expected_version=counters.version):
            redemption = Redemption(
                promotion_id=promotion_id,
                user_id=user_id,
                order_id=order_id,
                discount_amount=quantize_money(discount_amount),
                shipping_discount_amount=quantize_money(shipping_discount_amount),
            )
            session.add(redemption)
            await session.flush()
            logger.info(
                "redemption_committed",
                extra={
                    "promotion_id": str(promotion_id),
                    "order_id": str(order_id),
                    "used_count": counters.used_count + 1,
                },
            )
            return redemption

        logger.warning(
            "redemption_version_conflict",
            extra={"promotion_id": str(promotion_id), "order_id": str(order_id), "attempt": attempt},
        )
        if attempt < attempts and backoff_seconds:
            await asyncio.sleep(backoff_seconds * attempt)

    raise RedemptionConflict()


async def release_redemption(session: AsyncSession, *, order_id: UUID, reason: str | None = None) -> Redemption | None:
    """Void the order's redemption and give its use back to the promotion."""
    redemption = await get_redemption_for_order(session, order_id=order_id)
    if redemption is None or redemption.voided_at is not None:
        return None

    await read_counters(session, promotion_id=redemption.promotion_id)
    await session.execute(
        update(Promotion)
        .where(Promotion.id == redemption.promotion_id, Promotion.used_count > 0)
        .values(used_count=Promotion.used_count - 1, version=Promotion.version + 1)
        .execution_options(synchronize_session=False)
    )
    redemption.voided_at = datetime.now(timezone.utc)
    redemption.void_reason = (reason or "")[:255] or None
    session.add(redemption)
    await session.flush()
    logger.info(
        "redemption_released",
        extra={"promotion_id": str(redemption.promotion_id), "order_id": str(order_id), "reason": reason},
    )
    return redemption
