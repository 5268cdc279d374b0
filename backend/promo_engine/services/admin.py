from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from promo_engine.models.promotion import Promotion, PromotionScope, PromotionTarget, PromotionType, Redemption
from promo_engine.schemas.promotion import PromotionCreate, PromotionStatus, PromotionUpdate, TargetIn
from promo_engine.services import ledger
from promo_engine.services.discounts import validate_rule
from promo_engine.services.errors import InvalidValue
from promo_engine.services.targets import TargetRule
from promo_engine.services.validation import normalize_code
from promo_engine.services.window import as_utc, utcnow

logger = logging.getLogger(__name__)

PROMOTION_STATUSES: tuple[PromotionStatus, ...] = ("not_started", "active", "inactive", "expired")


def promotion_status(promotion: Promotion, now: datetime | None = None) -> PromotionStatus:
    """Expiry wins over not-started, which wins over the active flag."""
    now = as_utc(now or utcnow())
    if now >= as_utc(promotion.end_date):
        return "expired"
    if now < as_utc(promotion.start_date):
        return "not_started"
    if not promotion.is_active:
        return "inactive"
    return "active"


def _target_rules(targets: list[TargetIn]) -> list[TargetRule]:
    rules: list[TargetRule] = []
    seen: set[tuple[str, str | None]] = set()
    for target in targets:
        product_id = target.product_id.strip()
        variant_id = (target.variant_id or "").strip() or None
        key = (product_id, variant_id)
        if key in seen:
            raise InvalidValue("Each product/variant can only be targeted once")
        seen.add(key)
        rules.append(TargetRule(product_id=product_id, variant_id=variant_id, specific_value=target.specific_value))
    return rules


def _validated_definition(
    *,
    scope: PromotionScope,
    promo_type: PromotionType,
    value: Decimal,
    max_discount: Decimal | None,
    start_date: datetime,
    end_date: datetime,
    targets: list[TargetRule],
) -> Decimal:
    if as_utc(start_date) >= as_utc(end_date):
        raise InvalidValue("End date must be after start date")
    if promo_type == PromotionType.FREESHIP:
        value = Decimal("100")
    validate_rule(scope=scope, promo_type=promo_type, value=value, max_discount=max_discount, targets=targets)
    return value


def _build_targets(rules: list[TargetRule]) -> list[PromotionTarget]:
    return [
        PromotionTarget(
            product_id=rule.product_id,
            variant_id=rule.variant_id,
            specific_value=rule.specific_value,
            position=idx,
        )
        for idx, rule in enumerate(rules)
    ]


async def _load(session: AsyncSession, promotion_id: UUID) -> Promotion | None:
    res = await session.execute(
        select(Promotion)
        .options(selectinload(Promotion.targets))
        .where(Promotion.id == promotion_id)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def get_promotion(session: AsyncSession, promotion_id: UUID) -> Promotion:
    promotion = await _load(session, promotion_id)
    if promotion is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Promotion not found")
    return promotion


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def list_promotions(
    session: AsyncSession,
    *,
    status_filter: PromotionStatus | None = None,
    search: str | None = None,
    now: datetime | None = None,
) -> list[Promotion]:
    stmt = select(Promotion).options(selectinload(Promotion.targets)).order_by(Promotion.created_at.desc())
    needle = (search or "").strip().lower()
    if needle:
        pattern = f"%{_escape_like(needle)}%"
        stmt = stmt.where(
            or_(
                func.lower(Promotion.code).like(pattern, escape="\\"),
                func.lower(Promotion.name).like(pattern, escape="\\"),
            )
        )
    promotions = list((await session.execute(stmt)).scalars().all())
    if status_filter:
        promotions = [p for p in promotions if promotion_status(p, now) == status_filter]
    return promotions


async def create_promotion(session: AsyncSession, payload: PromotionCreate) -> Promotion:
    code = normalize_code(payload.code)
    exists = (await session.execute(select(Promotion.id).where(Promotion.code == code))).first()
    if exists:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Promotion code already exists")

    rules = _target_rules(payload.targets) if payload.scope == PromotionScope.SPECIFIC_ITEMS else []
    value = _validated_definition(
        scope=payload.scope,
        promo_type=payload.type,
        value=payload.value,
        max_discount=payload.max_discount,
        start_date=payload.start_date,
        end_date=payload.end_date,
        targets=rules,
    )
    promotion = Promotion(
        **payload.model_dump(exclude={"code", "value", "targets", "start_date", "end_date"}),
        code=code,
        start_date=as_utc(payload.start_date),
        end_date=as_utc(payload.end_date),
        value=value,
        targets=_build_targets(rules),
    )
    session.add(promotion)
    await session.commit()
    logger.info("promotion_created", extra={"promotion_code": code})
    return await get_promotion(session, promotion.id)


async def _check_limit_floor(session: AsyncSession, promotion: Promotion, data: dict[str, Any]) -> None:
    usage_limit = data.get("usage_limit")
    if usage_limit is not None and usage_limit < int(promotion.used_count or 0):
        raise InvalidValue(f"Usage limit cannot be below the {promotion.used_count} uses already redeemed")
    per_user_limit = data.get("per_user_limit")
    if per_user_limit is not None:
        heaviest = await ledger.max_redemptions_per_user(session, promotion_id=promotion.id)
        if per_user_limit < heaviest:
            raise InvalidValue(f"Per-user limit cannot be below the {heaviest} uses one customer already redeemed")


async def update_promotion(session: AsyncSession, promotion: Promotion, payload: PromotionUpdate) -> Promotion:
    data: dict[str, Any] = payload.model_dump(exclude_unset=True)
    for required in ("scope", "type", "value", "start_date", "end_date", "is_active", "name"):
        if required in data and data[required] is None:
            raise InvalidValue(f"{required} cannot be empty")
    for attr in ("start_date", "end_date"):
        if attr in data:
            data[attr] = as_utc(data[attr])
    await _check_limit_floor(session, promotion, data)

    scope = data.get("scope", promotion.scope)
    promo_type = data.get("type", promotion.type)
    if "targets" in data:
        rules = _target_rules(payload.targets or [])
    else:
        rules = [
            TargetRule(product_id=t.product_id, variant_id=t.variant_id, specific_value=t.specific_value)
            for t in promotion.targets
        ]
    if scope != PromotionScope.SPECIFIC_ITEMS:
        rules = []

    value = _validated_definition(
        scope=scope,
        promo_type=promo_type,
        value=data.get("value", promotion.value),
        max_discount=data.get("max_discount", promotion.max_discount),
        start_date=data.get("start_date", promotion.start_date),
        end_date=data.get("end_date", promotion.end_date),
        targets=rules,
    )

    for attr in (
        "name",
        "description",
        "scope",
        "type",
        "max_discount",
        "min_order_value",
        "start_date",
        "end_date",
        "usage_limit",
        "per_user_limit",
        "is_active",
    ):
        if attr in data:
            setattr(promotion, attr, data[attr])
    promotion.value = value

    if "targets" in data or scope != PromotionScope.SPECIFIC_ITEMS:
        promotion.targets.clear()
        await session.flush()
        promotion.targets.extend(_build_targets(rules))

    session.add(promotion)
    await session.commit()
    logger.info("promotion_updated", extra={"promotion_code": promotion.code, "fields": sorted(data)})
    return await get_promotion(session, promotion.id)


async def toggle_active(session: AsyncSession, promotion: Promotion) -> Promotion:
    promotion.is_active = not promotion.is_active
    session.add(promotion)
    await session.commit()
    logger.info("promotion_toggled", extra={"promotion_code": promotion.code, "is_active": promotion.is_active})
    return await get_promotion(session, promotion.id)


async def delete_promotion(session: AsyncSession, promotion: Promotion) -> None:
    redeemed = (
        await session.execute(
            select(func.count()).select_from(Redemption).where(Redemption.promotion_id == promotion.id)
        )
    ).scalar_one()
    if redeemed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Promotion has redemptions; deactivate it instead",
        )
    await session.delete(promotion)
    await session.commit()
    logger.info("promotion_deleted", extra={"promotion_code": promotion.code})
