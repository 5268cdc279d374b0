from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from promo_engine.api.v1 import api_router
from promo_engine.core.config import settings
from promo_engine.core.logging_config import configure_logging
from promo_engine.middleware import RequestLoggingMiddleware
from promo_engine.schemas.error import ErrorResponse
from promo_engine.services.errors import PromotionError


def get_application() -> FastAPI:
    configure_logging(settings.log_json)
    tags_metadata = [
        {"name": "promotions", "description": "Promotion code validation"},
        {"name": "orders", "description": "Order placement and cancellation"},
        {"name": "admin", "description": "Promotion administration"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        swagger_ui_parameters={"displayRequestDuration": True},
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(PromotionError)
    async def promotion_error_handler(request: Request, exc: PromotionError):
        payload = ErrorResponse(error=exc.message, code=exc.code)
        return JSONResponse(status_code=exc.status_code, content=payload.model_dump(exclude_none=True))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(error=str(exc.detail), code=None)
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(payload.model_dump(exclude={"detail"})),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        payload = ErrorResponse(error="Invalid request", code="validation_error", detail=errors)
        return JSONResponse(status_code=422, content=payload.model_dump())

    return app


app = get_application()
