"""
Custom exceptions for InvoiceXL.

Provides a hierarchy of exceptions with error codes for consistent error
handling at the API and configuration boundary. The extraction engine itself
never raises on bad input; degraded outcomes are reported through confidence
and flag fields instead.
"""
from typing import Any, Dict, List, Optional


class InvoiceXLError(Exception):
    """
    Base exception for all InvoiceXL errors.

    Attributes:
        error_code: Unique error code (e.g., IXL-001)
        message: Human-readable error message
        details: Additional error context
    """
    error_code: str = "IXL-000"
    http_status: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# Payload Errors (IXL-1XX)
class InvalidInvoicePayloadError(InvoiceXLError):
    """Request payload could not be turned into engine input."""
    error_code = "IXL-100"
    http_status = 422

    def __init__(
        self,
        message: str = "Invalid invoice payload",
        errors: Optional[List[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", None) or {}
        details["errors"] = errors or []
        super().__init__(message, details=details, **kwargs)


class EmptyInvoiceTextError(InvoiceXLError):
    """Invoice text is empty or whitespace only."""
    error_code = "IXL-101"
    http_status = 422

    def __init__(self, **kwargs):
        super().__init__("Invoice text is empty", **kwargs)


class InvoiceTooLargeError(InvoiceXLError):
    """Invoice text exceeds the configured size limit."""
    error_code = "IXL-102"
    http_status = 413

    def __init__(self, size: int, max_size: int, **kwargs):
        message = f"Invoice text too large. Maximum size: {max_size} characters"
        super().__init__(message, details={"size": size, "max_size": max_size}, **kwargs)


# Configuration Errors (IXL-5XX)
class ConfigurationError(InvoiceXLError):
    """Engine configuration is inconsistent."""
    error_code = "IXL-500"
    http_status = 500

    def __init__(self, message: str = "Invalid engine configuration", **kwargs):
        super().__init__(message, **kwargs)
