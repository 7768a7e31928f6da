"""Typed failures raised by the clinic core.

Every error carries a human-readable message, a machine-readable ``kind`` and
the HTTP status the API layer answers with.
"""
from typing import Any, Dict, Optional


class ClinicError(Exception):
    kind = "clinic_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.details}


class AuthorizationError(ClinicError):
    kind = "authorization_error"
    status_code = 403


class InvalidTransitionError(ClinicError):
    kind = "invalid_transition"
    status_code = 409


class StaleWriteError(ClinicError):
    kind = "stale_write"
    status_code = 409


class NotFoundError(ClinicError):
    kind = "not_found"
    status_code = 404


class PayloadError(ClinicError):
    kind = "invalid_payload"
    status_code = 400


class SignatureVerificationError(ClinicError):
    kind = "invalid_signature"
    status_code = 403


class ReconciliationConflictError(ClinicError):
    """Unknown reference or amount mismatch. Needs a human, not a retry."""
    kind = "reconciliation_conflict"
    status_code = 409


class ReconciliationError(ClinicError):
    """The intended effect could not be written. Safe to replay."""
    kind = "reconciliation_failed"
    status_code = 500
