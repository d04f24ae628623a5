"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the application.
Services raise these internally and convert them into result objects at their public
boundary; the HTTP layer maps them to JSON error bodies.
"""
from decimal import Decimal
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"

    # Wallet errors (2xxx)
    WALLET_NOT_FOUND = "ERR_2001"
    INSUFFICIENT_BALANCE = "ERR_2002"
    WALLET_INACTIVE = "ERR_2004"
    PAYOUT_METHOD_MISSING = "ERR_2005"
    UNSUPPORTED_PAYOUT_METHOD = "ERR_2006"

    # Payout errors (3xxx)
    PAYOUT_JOB_NOT_FOUND = "ERR_3001"
    PAYOUT_JOB_INVALID_STATUS = "ERR_3002"
    PAYOUT_REQUEST_NOT_FOUND = "ERR_3003"
    PAYOUT_REQUEST_INVALID_STATUS = "ERR_3004"

    # External service errors (5xxx)
    PAYMENT_GATEWAY_ERROR = "ERR_5001"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class WalletException(AppException):
    """Base exception for wallet-related errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        wallet_id: int | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if wallet_id:
            self.details["wallet_id"] = wallet_id


class InsufficientBalanceError(WalletException):
    """Raised when a payout exceeds the wallet's available balance"""

    def __init__(self, wallet_id: int, available: Decimal, requested: Decimal):
        super().__init__(
            message="Insufficient balance",
            error_code=ErrorCode.INSUFFICIENT_BALANCE,
            wallet_id=wallet_id,
            details={
                "available_balance": str(available),
                "requested_amount": str(requested),
            }
        )


class WalletNotFoundError(WalletException):
    """Raised when wallet is not found"""

    def __init__(self, identifier: int | str):
        super().__init__(
            message=f"Wallet not found: {identifier}",
            error_code=ErrorCode.WALLET_NOT_FOUND,
        )
        self.status_code = 404
        self.details["identifier"] = str(identifier)


class PayoutException(AppException):
    """Base exception for payout jobs and payout requests"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 400,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )


class PayoutJobNotFoundError(PayoutException):
    def __init__(self, job_id: int):
        super().__init__(
            message="Payout job not found",
            error_code=ErrorCode.PAYOUT_JOB_NOT_FOUND,
            status_code=404,
            details={"job_id": job_id}
        )


class PayoutJobStatusError(PayoutException):
    """Raised when a job is not in the status an operation requires"""

    def __init__(self, job_id: int, current_status: str, required_status: str = "pending"):
        super().__init__(
            message=f"Job {job_id} is not {required_status} (current status: {current_status})",
            error_code=ErrorCode.PAYOUT_JOB_INVALID_STATUS,
            status_code=409,
            details={"job_id": job_id, "current_status": current_status}
        )


class PayoutRequestNotFoundError(PayoutException):
    def __init__(self, payout_id: int):
        super().__init__(
            message="Payout request not found",
            error_code=ErrorCode.PAYOUT_REQUEST_NOT_FOUND,
            status_code=404,
            details={"payout_id": payout_id}
        )


class PayoutRequestStatusError(PayoutException):
    """Raised when a payout request transition would move it backwards"""

    def __init__(self, payout_id: int, current_status: str, target_status: str):
        super().__init__(
            message=f"Payout request {payout_id} cannot move from '{current_status}' to '{target_status}'",
            error_code=ErrorCode.PAYOUT_REQUEST_INVALID_STATUS,
            status_code=409,
            details={
                "payout_id": payout_id,
                "current_status": current_status,
                "target_status": target_status,
            }
        )


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name


class PaymentGatewayError(ExternalServiceException):
    """Raised when the payment processor rejects or fails a call"""

    def __init__(
        self,
        message: str,
        *,
        provider: str = "payment_gateway",
        transient: bool = False,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            service_name=provider,
            message=message,
            error_code=ErrorCode.PAYMENT_GATEWAY_ERROR,
            details=details
        )
        self.transient = transient

    @classmethod
    def from_stripe_error(cls, operation: str, error: Any, *, transient: bool = False) -> "PaymentGatewayError":
        """
        Build a PaymentGatewayError from a stripe.StripeError consistently.

        Args:
            operation: processor operation name (e.g. transfer, payment_intent)
            error: the stripe error instance
            transient: whether the call is safe to retry with the same idempotency key
        """
        return cls(
            message=getattr(error, "user_message", None) or str(error) or f"{operation} failed",
            provider="stripe",
            transient=transient,
            details={
                "operation": operation,
                "http_status": getattr(error, "http_status", None),
                "code": getattr(error, "code", None),
                "request_id": getattr(error, "request_id", None),
            },
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )
