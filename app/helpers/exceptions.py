# app/helpers/exceptions.py
"""
Error taxonomy for the pharmacy backend.

Every error carries the HTTP status it maps to, so services can raise them
without knowing about FastAPI and the handlers in
app/helpers/exception_handlers.py render them uniformly.
"""
from typing import Any, Dict, List, Optional


class PharmacyError(Exception):
    """Base exception for all pharmacy backend errors."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.errors = errors or []
        self.headers = headers


class ValidationError(PharmacyError):
    """Malformed or missing input."""

    status_code = 400
    code = "VALIDATION_ERROR"

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field, "message": message}])


class AuthError(PharmacyError):
    """Missing or invalid credentials."""

    status_code = 401
    code = "UNAUTHORIZED"


class ForbiddenError(AuthError):
    """Authenticated, but not allowed to touch this resource."""

    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(PharmacyError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(PharmacyError):
    """Invalid state transition or lost concurrent update."""

    status_code = 409
    code = "CONFLICT"


class ExtractionError(PharmacyError):
    """OCR engine failure or unreadable image."""

    status_code = 500
    code = "EXTRACTION_FAILED"


class DependencyError(PharmacyError):
    """Storage, e-mail or other collaborator failure."""

    status_code = 502
    code = "DEPENDENCY_FAILED"
