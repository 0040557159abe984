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

class UnknownFieldError(AppException):
    def __init__(self, field: str):
        super().__init__(
            message=f"'{field}' is not an editable payroll field",
            status_code=422,
            error_code="UNKNOWN_FIELD",
            details={"field": field}
        )

class NoSelectionError(AppException):
    def __init__(self, message: str = "No employees selected to save"):
        super().__init__(
            message=message,
            status_code=422,
            error_code="NO_SELECTION"
        )

class PersistenceError(AppException):
    """Raised when the backing store rejects a read or write. Callers may retry."""
    def __init__(self, message: str = "Payroll store is unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=502,
            error_code="PERSISTENCE_FAILED",
            details=details
        )
