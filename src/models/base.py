"""Shared Pydantic base models and the API response envelope."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class KaloriBase(BaseModel):
    """Base model with shared config for all Kalori schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ---------- Response envelope ----------


class ApiResponse(BaseModel):
    """Every endpoint answers ``{success, data?, error?, message?}``."""

    success: bool
    data: Any = None
    error: str | None = None
    message: str | None = None


def ok(data: Any = None, message: str | None = None) -> ApiResponse:
    return ApiResponse(success=True, data=data, message=message)


def failure(error: str) -> ApiResponse:
    return ApiResponse(success=False, error=error)
