from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.dependencies import require_admin
from promo_engine.db.session import get_session
from promo_engine.models.promotion import Promotion
from promo_engine.schemas.promotion import PromotionCreate, PromotionRead, PromotionStatus, PromotionUpdate
from promo_engine.services import admin as admin_service

router = APIRouter(prefix="/admin/promotions", tags=["admin"], dependencies=[Depends(require_admin)])


def _to_promotion_read(promotion: Promotion) -> PromotionRead:
    return PromotionRead.model_validate(promotion).model_copy(
        update={"status": admin_service.promotion_status(promotion)}
    )


@router.get("", response_model=list[PromotionRead])
async def admin_list_promotions(
    session: AsyncSession = Depends(get_session),
    status_filter: PromotionStatus | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=100),
) -> list[PromotionRead]:
    promotions = await admin_service.list_promotions(session, status_filter=status_filter, search=search)
    return [_to_promotion_read(p) for p in promotions]


@router.post("", response_model=PromotionRead, status_code=status.HTTP_201_CREATED)
async def admin_create_promotion(
    payload: PromotionCreate,
    session: AsyncSession = Depends(get_session),
) -> PromotionRead:
    promotion = await admin_service.create_promotion(session, payload)
    return _to_promotion_read(promotion)


@router.get("/{promotion_id}", response_model=PromotionRead)
async def admin_get_promotion(
    promotion_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> PromotionRead:
    promotion = await admin_service.get_promotion(session, promotion_id)
    return _to_promotion_read(promotion)


@router.patch("/{promotion_id}", response_model=PromotionRead)
async def admin_update_promotion(
    promotion_id: UUID,
    payload: PromotionUpdate,
    session: AsyncSession = Depends(get_session),
) -> PromotionRead:
    promotion = await admin_service.get_promotion(session, promotion_id)
    promotion = await admin_service.update_promotion(session, promotion, payload)
    return _to_promotion_read(promotion)


@router.post("/{promotion_id}/toggle-active", response_model=PromotionRead)
async def admin_toggle_promotion(
    promotion_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> PromotionRead:
    promotion = await admin_service.get_promotion(session, promotion_id)
    promotion = await admin_service.toggle_active(session, promotion)
    return _to_promotion_read(promotion)


@router.delete("/{promotion_id}", status_code=status.HTTP_204_NO_CONTENT)
async def admin_delete_promotion(
    promotion_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> Response:
    promotion = await admin_service.get_promotion(session, promotion_id)
    await admin_service.delete_promotion(session, promotion)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
