from typing import Any

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str | None = None
    detail: Any = None
