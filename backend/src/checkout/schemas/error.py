"""Structured error response schemas."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    field: str | None = Field(default=None, description="Field that caused the error (for validation errors)")
    value: Any | None = Field(default=None, description="Invalid value (for validation errors)")


class ErrorResponse(BaseModel):
    """Standard error response structure.

    This provides consistent error responses across the API with:
    - Machine-readable error codes
    - Human-readable messages
    - Remediation hints
    - Request tracing information
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "SignatureMismatch",
                "message": "Payment verification failed, please contact support.",
                "details": [{"code": "invalid_signature", "message": "Invalid payment signature"}],
                "remediation": "Contact support with the payment id",
                "payment_id": "5b1f0c2e-8f0a-4a59-9d55-3c1f6f0f8f1a",
                "request_id": "req_1234567890",
                "timestamp": "2026-01-15T10:30:00Z",
            }
        }
    )

    error: str = Field(..., description="Error type (e.g., 'ValidationError', 'NotFound')")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] | None = Field(default=None, description="Detailed error information")
    remediation: str | None = Field(default=None, description="Suggestion for fixing the error")
    payment_id: str | None = Field(default=None, description="Payment id for support correlation")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")


# Error codes enum for consistency
class ErrorCode:
    """Standard error codes used across the API."""

    # Validation errors (400)
    INVALID_INPUT = "invalid_input"
    INVALID_CURRENCY = "invalid_currency"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_PAYMENT_METHOD = "invalid_payment_method"
    INVALID_SIGNATURE = "invalid_signature"

    # Business logic errors (409)
    DUPLICATE_GATEWAY_ORDER = "duplicate_gateway_order"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    PAYMENT_NOT_CAPTURED = "payment_not_captured"
    RETRY_EXHAUSTED = "retry_exhausted"

    # Not found errors (404)
    PAYMENT_NOT_FOUND = "payment_not_found"

    # External service errors (502, 503)
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    GATEWAY_REJECTED = "gateway_rejected"
    DATABASE_ERROR = "database_error"

    # Internal errors (500)
    INTERNAL_ERROR = "internal_error"


# Remediation hints for common errors
REMEDIATION_HINTS = {
    ErrorCode.INVALID_CURRENCY: "Use a valid 3-letter ISO 4217 currency code (e.g., INR, USD)",
    ErrorCode.INVALID_AMOUNT: "Provide a positive amount in major units (e.g., 499.00)",
    ErrorCode.INVALID_SIGNATURE: "Contact support with the payment id; do not retry the same callback",
    ErrorCode.RETRY_EXHAUSTED: "Contact support with the payment id",
    ErrorCode.GATEWAY_UNAVAILABLE: "The payment gateway is temporarily unavailable. Please try again later.",
    ErrorCode.DATABASE_ERROR: "Database temporarily unavailable. Please try again in a few moments.",
    ErrorCode.INVALID_STATE_TRANSITION: "The payment was already resolved; fetch it to see its final status",
}
