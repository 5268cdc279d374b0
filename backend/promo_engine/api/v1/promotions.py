from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.dependencies import get_optional_user_id
from promo_engine.db.session import get_session
from promo_engine.schemas.promotion import (
    PromotionQuoteData,
    PromotionSummary,
    PromotionValidateRequest,
    PromotionValidateResponse,
)
from promo_engine.services import validation

router = APIRouter(prefix="/promotions", tags=["promotions"])


def _to_quote_data(quote: validation.PromotionQuote) -> PromotionQuoteData:
    rule = quote.promotion
    return PromotionQuoteData(
        promotion=PromotionSummary(
            code=rule.code,
            scope=rule.scope,
            type=rule.type,
            value=rule.value,
            max_discount=rule.max_discount,
        ),
        discount_amount=quote.discount_amount,
        merchandise_discount=quote.merchandise_discount,
        shipping_discount=quote.shipping_discount,
        applied_to_shipping=quote.applied_to_shipping,
    )


@router.post("/validate", response_model=PromotionValidateResponse)
async def validate_promotion(
    payload: PromotionValidateRequest,
    session: AsyncSession = Depends(get_session),
    user_id: str | None = Depends(get_optional_user_id),
) -> PromotionValidateResponse:
    cart = validation.CartSnapshot.build(
        subtotal=payload.subtotal,
        lines=validation.lines_from_items(payload.cart_items),
        shipping_fee=payload.shipping_fee,
    )
    quote = await validation.validate_code(session, code=payload.code, cart=cart, user_id=user_id)
    return PromotionValidateResponse(data=_to_quote_data(quote))
