from __future__ import annotations

from typing import Any, Dict, Optional


class BudgetEngineError(Exception):
    """Base class for errors surfaced to API callers as {kind, message}."""

    kind = "internal"
    status_code = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(BudgetEngineError):
    kind = "not_found"
    status_code = 404


class ConflictError(BudgetEngineError):
    kind = "conflict"
    status_code = 409


class ValidationError(BudgetEngineError):
    kind = "validation"
    status_code = 400


class ForbiddenError(BudgetEngineError):
    kind = "forbidden"
    status_code = 403


class UnauthorizedError(BudgetEngineError):
    kind = "unauthorized"
    status_code = 401


class InvariantViolation(BudgetEngineError):
    """A post-condition check failed; the operation was not committed."""

    kind = "invariant_violation"
    status_code = 500


class TransientStoreError(BudgetEngineError):
    kind = "transient_store"
    status_code = 503
