"""
Custom Exception Hierarchy

Structured exceptions shared by the API layer and the delivery pipeline.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"

    # Delivery errors (2xxx)
    MESSAGE_NOT_FOUND = "ERR_2001"
    ADAPTER_UNAVAILABLE = "ERR_2002"
    DELIVERY_FAILED = "ERR_2003"
    DELIVERY_PERMANENTLY_FAILED = "ERR_2004"

    # Template errors (3xxx)
    TEMPLATE_NOT_FOUND = "ERR_3001"
    TEMPLATE_INVALID = "ERR_3002"

    # External service errors (5xxx)
    TELEGRAM_ERROR = "ERR_5001"
    WHATSAPP_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"
    VIBER_ERROR = "ERR_5005"


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
    """Raised when input validation fails.

    Inside the delivery pipeline this marks a malformed message request:
    it is rejected at enqueue time and never retried.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class TemplateValidationError(AppException):
    """Raised when a message template definition is invalid"""

    def __init__(self, template_id: str, errors: list[str]):
        super().__init__(
            message=f"Template {template_id} is invalid: {'; '.join(errors)}",
            error_code=ErrorCode.TEMPLATE_INVALID,
            status_code=400,
            details={"template_id": template_id, "errors": errors}
        )


class DeliveryException(AppException):
    """Base exception for message delivery errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        message_id: str | None = None,
        platform: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=502,
            details=details
        )
        if message_id:
            self.details["message_id"] = message_id
        if platform:
            self.details["platform"] = platform


class AdapterUnavailableError(DeliveryException):
    """Platform adapter is missing or disabled at dispatch time (transient, retried)"""

    def __init__(self, message_id: str, platform: str):
        super().__init__(
            message=f"{platform} adapter not available",
            error_code=ErrorCode.ADAPTER_UNAVAILABLE,
            message_id=message_id,
            platform=platform
        )
        self.status_code = 503


class DeliveryFailureError(DeliveryException):
    """Adapter reported a non-success outcome or raised (retried)"""

    def __init__(self, message_id: str, platform: str, reason: str | None = None):
        super().__init__(
            message=reason or f"{platform} delivery failed",
            error_code=ErrorCode.DELIVERY_FAILED,
            message_id=message_id,
            platform=platform
        )


class PermanentFailureError(DeliveryException):
    """Retries exhausted - terminal, operator-visible"""

    def __init__(
        self,
        message_id: str,
        platform: str,
        retry_count: int,
        last_error: str | None = None
    ):
        super().__init__(
            message=f"Message {message_id} failed permanently after {retry_count} attempts",
            error_code=ErrorCode.DELIVERY_PERMANENTLY_FAILED,
            message_id=message_id,
            platform=platform,
            details={"retry_count": retry_count, "last_error": last_error}
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

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ):
        """
        יצירת שגיאה מתוך HTTP response בצורה עקבית.

        Args:
            operation: שם הפעולה (לדוגמה: sendMessage, send_message)
            response: אובייקט response (למשל httpx.Response)
            message: הודעת שגיאה מותאמת (אם לא סופק - נבנית אוטומטית)
            max_response_chars: אורך מקסימלי לשמירת response_text (מניעת לוגים גדולים)
        """
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=message or f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class TelegramError(ExternalServiceException):
    """Raised when Telegram API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="telegram",
            message=f"Telegram API error: {message}",
            error_code=ErrorCode.TELEGRAM_ERROR,
            details=details
        )


class WhatsAppError(ExternalServiceException):
    """Raised when WhatsApp Cloud API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="whatsapp",
            message=f"WhatsApp API error: {message}",
            error_code=ErrorCode.WHATSAPP_ERROR,
            details=details
        )


class ViberError(ExternalServiceException):
    """Raised when Viber REST API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="viber",
            message=f"Viber API error: {message}",
            error_code=ErrorCode.VIBER_ERROR,
            details=details
        )


class ServiceTimeoutError(ExternalServiceException):
    """Raised when external service times out"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
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
