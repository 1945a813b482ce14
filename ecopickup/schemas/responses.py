"""Error envelope schemas shared by every endpoint."""

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """A single field-level or contextual error detail."""

    field: str | None = None
    message: str | None = None
    reason: str | None = None


class ErrorBody(BaseModel):
    """Structured error body returned inside every error response."""

    code: str
    message: str
    details: list[ErrorDetail] = []
    retryable: bool = False
    request_id: str = Field(alias="requestId")

    model_config = {"populate_by_name": True}


class ErrorResponse(BaseModel):
    """Top-level error envelope."""

    error: ErrorBody
