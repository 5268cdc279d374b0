from fastapi import APIRouter

from promo_engine.api.v1 import admin_promotions
from promo_engine.api.v1 import orders
from promo_engine.api.v1 import promotions

api_router = APIRouter()

api_router.include_router(promotions.router)
api_router.include_router(orders.router)
api_router.include_router(admin_promotions.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}
