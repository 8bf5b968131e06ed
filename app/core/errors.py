"""
Domain error taxonomy.

Every error carries a machine-readable ``kind`` and the HTTP status the API
layer answers with. Services raise these; ``app.main`` renders them.
"""
from typing import Any, Optional


class DomainError(Exception):
    """Base class for errors raised by the core."""

    kind = "domain_error"
    status_code = 400

    def __init__(self, message: str, errors: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(DomainError):
    """Malformed input. Always raised before any write."""

    kind = "validation_error"
    status_code = 422


class NotFoundError(DomainError):
    """Referenced record does not exist (or is not visible to the actor)."""

    kind = "not_found"
    status_code = 404

    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = identifier


class ConflictError(DomainError):
    """Operation violates a structural invariant given current state."""

    kind = "conflict"
    status_code = 409


class PermissionDeniedError(DomainError):
    """Actor lacks the ownership or role the operation requires."""

    kind = "permission_denied"
    status_code = 403

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class TransactionError(DomainError):
    """The atomic write failed for infrastructure reasons. Safe to retry."""

    kind = "transaction_error"
    status_code = 503

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["retryable"] = True
        return body
