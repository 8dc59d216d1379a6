"""
Error Taxonomy

Typed failures raised by the financial core. The calling layer maps each
class to a transport status; the core never formats responses itself.
"""

from typing import Any, Dict, Optional


class SaccoError(Exception):
    """Base class for every failure reported by the core"""

    error_code = "sacco_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result = {"error": self.error_code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(SaccoError, ValueError):
    """Bad input shape or range. Not retried."""
    error_code = "validation_error"


class InvalidAmount(ValidationError):
    """Monetary amount that is zero, negative or not a number"""
    error_code = "invalid_amount"


class InvalidStateTransition(SaccoError):
    """Operation attempted against a loan or account in the wrong state"""
    error_code = "invalid_state_transition"


class DuplicatePendingApplication(SaccoError):
    """Borrower already has an open loan application"""
    error_code = "duplicate_pending_application"


class InsufficientFunds(SaccoError):
    """Withdrawal exceeds the available balance"""
    error_code = "insufficient_funds"


class NotFound(SaccoError):
    """Referenced loan, account, entry or member does not exist"""
    error_code = "not_found"


class PermissionDenied(SaccoError):
    """Caller lacks the role or membership status the operation requires"""
    error_code = "permission_denied"


class StorageFailure(SaccoError):
    """An atomic unit could not commit. Safe to retry only with an idempotency key."""
    error_code = "storage_failure"
