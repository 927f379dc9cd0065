# clinic_core/common/errors.py
"""
Domain error taxonomy.

Every error is a DRF APIException so it flows through the global exception
handler (clinic_core.common.api.exceptions) and renders as the standard error
envelope. `error_code` is the stable machine code put in the envelope.
"""
from __future__ import annotations

from typing import Any

from rest_framework import status
from rest_framework.exceptions import APIException


class DomainError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Request failed."
    default_code = "domain_error"
    error_code = "domain_error"

    def __init__(self, message: str | None = None, **details: Any):
        self.message = message or str(self.default_detail)
        self.details = {k: v for k, v in details.items() if v is not None}
        payload: dict[str, Any] = {"detail": self.message}
        payload.update(self.details)
        super().__init__(detail=payload, code=self.error_code)


class ValidationError(DomainError):
    """Malformed input. `field` names the offending field."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid input."
    error_code = "validation_error"


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    error_code = "not_found"


class AuthorizationError(DomainError):
    """Actor lacks the capability required. `capability` names it."""
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not allowed to perform this action."
    error_code = "authorization_error"


class TransitionNotAllowedError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Transition not allowed."
    error_code = "transition_not_allowed"


class TerminalStateError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Record is closed and can no longer change."
    error_code = "terminal_state"


class ConflictError(DomainError):
    """
    409 Conflict for business-rule collisions (e.g. duplicate active encounter).
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict."
    error_code = "conflict"


class ConcurrencyConflictError(DomainError):
    """
    Raised when the caller's expected version (or the version read under lock)
    no longer matches the stored row. The caller must reload and retry.
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = "This record was modified by someone else. Reload and try again."
    error_code = "concurrency_conflict"
