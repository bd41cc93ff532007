"""Error response schemas."""
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response schema for domain errors (4xx, 5xx)."""

    error: str = Field(
        ...,
        description="Machine-readable error code",
        examples=["invalid_invite_code", "access_denied", "directory_error"],
    )
    message: str = Field(..., description="Human-readable message, sanitised in production")
    status: int = Field(..., description="HTTP status code")
    timestamp: str = Field(..., description="ISO-8601 time of the error")
    path: str = Field(..., description="Request path")


class ApprovalDenialResponse(BaseModel):
    """Body returned when the approval gate blocks a request."""

    code: str = Field(
        ...,
        description="Gate decision",
        examples=["APPROVAL_PENDING", "APPROVAL_REJECTED", "APPROVAL_STATUS_UNKNOWN"],
    )
    message: str
    status: int = 403
    timestamp: str
