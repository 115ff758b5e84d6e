"""
Error taxonomy shared by the ledger core and the API layer.

Core operations either return their result or raise exactly one
LedgerError subclass. The API layer renders every kind the same way:
{"success": false, "error": <kind>, "message": ..., "details": {...}}
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for every error a core operation may raise."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error": self.kind,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(LedgerError):
    """Malformed or missing input."""
    status_code = 400


class AuthorizationError(LedgerError):
    """Caller does not own the referenced resource."""
    status_code = 403


class NotAuthenticatedError(AuthorizationError):
    """No authenticated user on the request."""
    status_code = 401

    @property
    def kind(self) -> str:
        return "AuthorizationError"


class NotFoundError(LedgerError):
    """Referenced id does not exist."""
    status_code = 404


class InsufficientBalanceError(LedgerError):
    """Posting would overdraw the source account."""
    status_code = 400


class ConflictError(LedgerError):
    """Operation blocked by a referential or system constraint."""
    status_code = 409


class PersistenceError(LedgerError):
    """Underlying storage operation failed."""
    status_code = 500


def require_user(user_id: Optional[str]) -> str:
    """Treat a missing identity as an authorization failure."""
    if not user_id:
        raise NotAuthenticatedError("Unauthorized")
    return user_id
