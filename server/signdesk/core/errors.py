"""
Domain error taxonomy.

Services raise these; the HTTP layer renders them through a single exception
handler registered in ``signdesk.main``.
"""

from typing import Any, Dict, Optional


class SigningError(Exception):
    """Base class for every error the signing engine reports to a caller."""

    status_code: int = 400
    error_code: str = "signing_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code, "message": self.message, "details": self.details}


class ValidationFailed(SigningError):
    """Bad input shape or bounds; correctable by the caller."""

    status_code = 422
    error_code = "validation_failed"

    def __init__(self, message: str, *, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if field is not None:
            details["field"] = field
        super().__init__(message, details=details)
        self.field = field


class MalformedPayload(ValidationFailed):
    """Inbound webhook body that does not decode to a known event shape."""

    status_code = 400
    error_code = "malformed_payload"


class Conflict(SigningError):
    status_code = 409
    error_code = "conflict"


class NotFound(SigningError):
    status_code = 404
    error_code = "not_found"


class Forbidden(SigningError):
    status_code = 403
    error_code = "forbidden"


class Unauthenticated(SigningError):
    status_code = 401
    error_code = "unauthenticated"


class ProviderUnavailable(SigningError):
    """Upstream signing provider failure; ``retryable`` separates transient from permanent."""

    status_code = 502
    error_code = "provider_unavailable"

    def __init__(self, message: str, *, retryable: bool = True, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details["retryable"] = retryable
        super().__init__(message, details=details)
        self.retryable = retryable


class StorageFailure(SigningError):
    status_code = 500
    error_code = "storage_failure"


class ConfigurationError(SigningError):
    status_code = 500
    error_code = "configuration_error"
