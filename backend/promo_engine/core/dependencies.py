from fastapi import Header, HTTPException, status

from promo_engine.core.config import settings


async def get_optional_user_id(x_user_id: str | None = Header(default=None)) -> str | None:
    cleaned = (x_user_id or "").strip()
    return cleaned or None


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    cleaned = (x_user_id or "").strip()
    if not cleaned:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return cleaned


async def require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    if not x_admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if x_admin_token != settings.admin_api_token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
