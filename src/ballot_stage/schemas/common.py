"""Shared Pydantic schemas for common API elements."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for API payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorBody(ApiModel):
    """Machine-readable description of a failed request."""

    code: str = Field(..., description="Stable error code, e.g. DUPLICATE_VOTE.")
    message: str
    retryable: bool = False
    retry_after: int | None = Field(None, description="Suggested wait in seconds.")
    details: dict[str, Any] | None = None


class ErrorResponse(ApiModel):
    """Envelope returned for every engine error."""

    error: ErrorBody
