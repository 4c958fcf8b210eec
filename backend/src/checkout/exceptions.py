"""
Error taxonomy for the payment lifecycle.

Every error carries a machine-readable code, an HTTP status for the API layer
and a message that is safe to show to the customer. ``retryable`` marks the
faults the verification workflow may retry locally.
"""
from typing import Any, Optional

from checkout.schemas.error import ErrorCode


class PaymentError(Exception):
    """Base class for all payment engine errors."""

    error_code: str = ErrorCode.INTERNAL_ERROR
    http_status: int = 500
    retryable: bool = False
    default_user_message: str = "An error occurred while processing the payment."

    def __init__(self, message: str, user_message: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or self.default_user_message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dict for API responses."""
        return {
            "code": self.error_code,
            "message": self.user_message,
            "type": self.__class__.__name__,
        }


class ValidationError(PaymentError):
    """Bad input, e.g. a non-positive amount or unsupported currency."""

    error_code = ErrorCode.INVALID_INPUT
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None, **context: Any):
        super().__init__(message, user_message=message, field=field, **context)
        self.field = field


class NotFound(PaymentError):
    """Requested payment record does not exist."""

    error_code = ErrorCode.PAYMENT_NOT_FOUND
    http_status = 404

    def __init__(self, message: str, **context: Any):
        super().__init__(message, user_message=message, **context)


class DuplicateGatewayOrder(PaymentError):
    """Another payment already holds the gateway order id."""

    error_code = ErrorCode.DUPLICATE_GATEWAY_ORDER
    http_status = 409

    def __init__(self, gateway_order_id: str, payment_id: Any = None):
        super().__init__(
            f"Gateway order {gateway_order_id} already belongs to another payment",
            gateway_order_id=gateway_order_id,
            payment_id=payment_id,
        )
        self.gateway_order_id = gateway_order_id


class InvalidTransition(PaymentError):
    """
    Compare-and-set on the payment status lost.

    Raised when the stored status is not one of the allowed pre-states.
    Callers treat it as a benign no-op: someone else already resolved the
    payment.
    """

    error_code = ErrorCode.INVALID_STATE_TRANSITION
    http_status = 409

    def __init__(self, payment_id: Any, current_status: Any, target: str):
        status_value = getattr(current_status, "value", current_status)
        super().__init__(
            f"Payment {payment_id} cannot move to {target} from {status_value}",
            user_message=f"Payment is already {status_value}",
            payment_id=payment_id,
            current_status=status_value,
            target=target,
        )
        self.payment_id = payment_id
        self.current_status = current_status
        self.target = target


class SignatureMismatch(PaymentError):
    """Gateway callback signature did not verify. Treated as tampering."""

    error_code = ErrorCode.INVALID_SIGNATURE
    http_status = 400
    default_user_message = "Payment verification failed, please contact support."


class GatewayUnavailable(PaymentError):
    """Network failure, timeout or 5xx from the gateway."""

    error_code = ErrorCode.GATEWAY_UNAVAILABLE
    http_status = 503
    retryable = True
    default_user_message = "Payment gateway is temporarily unavailable. Please try again later."


class GatewayRejected(PaymentError):
    """Gateway refused the request (4xx). Retrying will not help."""

    error_code = ErrorCode.GATEWAY_REJECTED
    http_status = 502
    default_user_message = "Payment gateway rejected the request."

    def __init__(self, message: str, status_code: Optional[int] = None, **context: Any):
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class PaymentNotCaptured(PaymentError):
    """Gateway has the payment but has not captured the funds yet."""

    error_code = ErrorCode.PAYMENT_NOT_CAPTURED
    http_status = 409
    retryable = True

    def __init__(self, gateway_payment_id: str, gateway_status: str):
        super().__init__(
            f"Payment not captured. Status: {gateway_status}",
            gateway_payment_id=gateway_payment_id,
            gateway_status=gateway_status,
        )
        self.gateway_status = gateway_status


class RetryExhausted(PaymentError):
    """All verification attempts (or scheduled retries) were used up."""

    error_code = ErrorCode.RETRY_EXHAUSTED
    http_status = 402
    default_user_message = "Payment verification failed, please contact support."

    def __init__(self, message: str, payment_id: Any = None, attempts: int = 0):
        super().__init__(message, payment_id=payment_id, attempts=attempts)
        self.payment_id = payment_id
        self.attempts = attempts
