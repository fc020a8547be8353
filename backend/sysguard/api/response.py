from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from sysguard.core.errors import ErrorCode


class ResponseEnvelope(BaseModel):
    code: str = Field(default=ErrorCode.SUCCESS.value)
    message: str = Field(default="Success")
    data: Any | None = None


def success_response(
    data: Any | None = None,
    message: str = "Success",
    code: ErrorCode | str = ErrorCode.SUCCESS,
) -> dict[str, Any | None]:
    code_value = code.value if isinstance(code, ErrorCode) else code
    return {"code": code_value, "message": message, "data": data}


__all__ = ["ResponseEnvelope", "success_response"]
