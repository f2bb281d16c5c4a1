"""Error kinds surfaced by the ledger services.

Every failure a caller can observe carries a stable ``code`` plus a
human-readable message. Services raise these directly; the HTTP layer renders
them through the handler installed in ``main.py``.
"""

from __future__ import annotations


class ServiceError(Exception):
    code = "internal"
    status_code = 500

    def __init__(self, message: str, reason: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_dict(self) -> dict:
        out: dict = {"detail": self.message, "code": self.code}
        if self.reason:
            out["reason"] = self.reason
        return out


class Unauthenticated(ServiceError):
    code = "unauthenticated"
    status_code = 401


class InvalidArgument(ServiceError):
    code = "invalid-argument"
    status_code = 400


class PermissionDenied(ServiceError):
    code = "permission-denied"
    status_code = 403


class FailedPrecondition(ServiceError):
    code = "failed-precondition"
    status_code = 400


class NotFound(ServiceError):
    code = "not-found"
    status_code = 404


class ResourceExhausted(ServiceError):
    code = "resource-exhausted"
    status_code = 429


class TransientStoreError(ServiceError):
    """The store kept reporting conflicts; the whole call is safe to retry."""

    code = "aborted"
    status_code = 503


class Internal(ServiceError):
    code = "internal"
    status_code = 500
