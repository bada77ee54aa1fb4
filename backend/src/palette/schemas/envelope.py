"""
Envelope schemas for standardized API responses.

Success bodies are ``{"data": ...}``; failures are
``{"error": {"code", "message", "details"}}``.
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class SuccessResponse(BaseModel, Generic[T]):
    """Standardized success response envelope."""

    data: T


class ErrorResponse(BaseModel):
    """Standardized error response envelope."""

    error: dict[str, Any]
