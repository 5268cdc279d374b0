from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.dependencies import get_current_user_id
from promo_engine.db.session import get_session
from promo_engine.schemas.order import OrderCancelRequest, OrderCreate, OrderRead
from promo_engine.services import orders as orders_service
from promo_engine.services.errors import LIMIT_ERRORS

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
) -> OrderRead:
    try:
        order = await orders_service.place_order(session, user_id=user_id, payload=payload)
    except LIMIT_ERRORS as exc:
        # Limits are only authoritative here; the same rejection is advisory (400) on validate.
        raise type(exc)(exc.message, status_code=status.HTTP_409_CONFLICT) from exc
    return OrderRead.model_validate(order)


@router.get("/{order_id}", response_model=OrderRead)
async def read_order(
    order_id: UUID,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
) -> OrderRead:
    order = await orders_service.get_order(session, order_id=order_id, user_id=user_id)
    return OrderRead.model_validate(order)


@router.post("/{order_id}/cancel", response_model=OrderRead)
async def cancel_order(
    order_id: UUID,
    payload: OrderCancelRequest | None = None,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
) -> OrderRead:
    order = await orders_service.cancel_order(
        session,
        order_id=order_id,
        user_id=user_id,
        reason=payload.reason if payload else None,
    )
    return OrderRead.model_validate(order)
