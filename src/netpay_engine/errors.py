"""Error taxonomy for payroll operations.

Every failure surfaced by the core is a ``PayrollError`` subclass so the API
layer and the job runner can map it without string matching:

- ValidationError: bad input shape or range, detected before any mutation
- NotFoundError: entity missing or outside the tenant scope
- ConflictError: duplicate key or illegal state transition
- ComputationError: missing statutory data or invalid compensation
- IntegrityError: a multi-row transaction was aborted
"""

from __future__ import annotations

from typing import Any


class PayrollError(Exception):
    """Base class for all payroll core errors."""

    code = "PAYROLL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(PayrollError):
    """Input failed validation."""

    code = "VALIDATION_ERROR"


class NotFoundError(PayrollError):
    """Entity does not exist for the tenant."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} {entity_id} not found",
            {"entity": entity, "id": str(entity_id)},
        )


class ConflictError(PayrollError):
    """Operation conflicts with current state."""

    code = "CONFLICT"


class InvalidRunTransition(ConflictError):
    """Raised when a payroll run status transition is not allowed."""

    code = "INVALID_RUN_TRANSITION"

    def __init__(
        self,
        current: str,
        target: str,
        required: str | None = None,
        reason: str | None = None,
    ):
        self.current = current
        self.target = target
        self.required = required
        self.reason = reason
        msg = f"Invalid transition from '{current}' to '{target}'"
        if required:
            msg += f" (requires '{required}')"
        if reason:
            msg += f": {reason}"
        super().__init__(
            msg,
            {"current": current, "target": target, "required": required},
        )


class ComputationError(PayrollError):
    """Computation could not proceed."""

    code = "COMPUTATION_ERROR"


class NoStatutoryVersion(ComputationError):
    code = "NO_STATUTORY_VERSION"

    def __init__(self, country: str, as_of: Any):
        self.country = country
        self.as_of = as_of
        super().__init__(
            f"No published statutory version for {country} effective {as_of}",
            {"country": country, "as_of": str(as_of)},
        )


class NoBracketMatch(ComputationError):
    code = "NO_BRACKET_MATCH"


class InvalidCompensation(ComputationError):
    code = "INVALID_COMPENSATION"

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Invalid compensation amount: {value}", {"value": str(value)})


class MalformedBracketTable(ComputationError):
    """A bracket table failed contiguity or ordering checks."""

    code = "MALFORMED_BRACKET_TABLE"


class IntegrityError(PayrollError):
    """Transaction aborted; no partial writes were kept."""

    code = "INTEGRITY_ERROR"


class JobCancelled(PayrollError):
    """Raised inside a job when its record was cancelled externally."""

    code = "JOB_CANCELLED"
