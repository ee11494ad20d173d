# clinic_booking/schemas/common/common.py
from pydantic import BaseModel
from typing import Any, Optional

__all__ = ["ErrorResponse"]


class ErrorResponse(BaseModel):
    success: bool = False
    data: Optional[Any] = None
    error: Any
