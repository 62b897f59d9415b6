from typing import Any, Dict, Optional


class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.error_code}
        if self.details:
            body.update(self.details)
        return body


class BusinessRuleError(AppException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=400, error_code="BUSINESS_ERROR", details=details)


class AuthenticationError(AppException):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="AUTH_REQUIRED"
        )


class AccessDeniedError(AppException):
    """Custom permission error. Named AccessDeniedError to avoid shadowing Python's built-in PermissionError."""
    def __init__(self, message: str = "Insufficient permissions", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=403,
            error_code="PERMISSION_DENIED",
            details=details
        )


class ReauthRequiredError(AppException):
    """Step-up verification missing or stale for a sensitive read path."""
    REQUIRED = "AUDIT_REAUTH_REQUIRED"
    EXPIRED = "AUDIT_REAUTH_EXPIRED"

    def __init__(self, error_code: str, message: str):
        super().__init__(message=message, status_code=403, error_code=error_code)


class NotFoundError(AppException):
    def __init__(self, entity: str = "Resource"):
        super().__init__(message=f"{entity} not found", status_code=404, error_code="NOT_FOUND")


class ConflictError(AppException):
    def __init__(self, message: str):
        super().__init__(message=message, status_code=409, error_code="CONFLICT")
