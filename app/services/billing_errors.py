# FILE: app/services/billing_errors.py
from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError


# ============================================================
# Errors
# ============================================================
class BillingError(RuntimeError):
    """
    Root of the billing error taxonomy.

    `message` is the stable user-facing text; `detail` carries the internal
    context (ids, raw driver errors) that only goes to the log.
    """
    code = "billing_error"
    status_code = 400

    def __init__(self, message: str, *, detail: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotFoundError(BillingError):
    code = "not_found"
    status_code = 404


class ConflictError(BillingError):
    code = "conflict"
    status_code = 409


class InvalidStateError(BillingError):
    code = "invalid_state"
    status_code = 409


class InvalidInputError(BillingError):
    code = "invalid_input"
    status_code = 400


class UnavailableError(BillingError):
    code = "unavailable"
    status_code = 422


class StorageFailure(BillingError):
    code = "storage_failure"
    status_code = 500


def translate_storage_error(exc: SQLAlchemyError) -> BillingError:
    """Map driver / constraint errors onto the taxonomy instead of leaking them."""
    if isinstance(exc, IntegrityError):
        raw = str(getattr(exc, "orig", exc)).lower()
        if "unique" in raw or "duplicate" in raw:
            return ConflictError("Duplicate record", detail=str(exc.orig))
        if "foreign key" in raw:
            return NotFoundError("Referenced record not found",
                                 detail=str(exc.orig))
    return StorageFailure("Storage error", detail=str(exc))
