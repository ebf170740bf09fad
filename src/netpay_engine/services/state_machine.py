"""Payroll run state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from netpay_engine.errors import InvalidRunTransition


class PayrollRunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "DRAFT"
    COMPUTED = "COMPUTED"
    APPROVED = "APPROVED"
    POSTED = "POSTED"


class PayrollRunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - DRAFT → COMPUTED (computation job)
    - COMPUTED → APPROVED (snapshot inputs)
    - APPROVED → POSTED (write history)
    - POSTED → APPROVED (unpost)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollRunStatus.DRAFT: [PayrollRunStatus.COMPUTED],
        PayrollRunStatus.COMPUTED: [PayrollRunStatus.APPROVED],
        PayrollRunStatus.APPROVED: [PayrollRunStatus.POSTED],
        PayrollRunStatus.POSTED: [PayrollRunStatus.APPROVED],
    }

    # Statuses from which a run may be deleted
    DELETABLE = {
        PayrollRunStatus.DRAFT,
        PayrollRunStatus.COMPUTED,
        PayrollRunStatus.APPROVED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(PayrollRunStatus(from_status), [])
        return PayrollRunStatus(to_status) in allowed

    @classmethod
    def required_source(cls, to_status: str) -> str:
        """Source status(es) from which ``to_status`` can be reached."""
        target = PayrollRunStatus(to_status)
        sources = [s.value for s, targets in cls.VALID_TRANSITIONS.items() if target in targets]
        return " or ".join(sources)

    @classmethod
    def validate_transition(
        cls, from_status: str, to_status: str, required: str | None = None
    ) -> None:
        """Validate a transition, raising InvalidRunTransition if invalid.

        ``required`` pins the expected source when a target has several
        (APPROVED is reached by approving and by unposting).
        """
        current = PayrollRunStatus(from_status)
        allowed = cls.can_transition(from_status, to_status)
        if not allowed or (required is not None and current != PayrollRunStatus(required)):
            raise InvalidRunTransition(
                current.value,
                PayrollRunStatus(to_status).value,
                required or cls.required_source(to_status),
            )

    @classmethod
    def can_delete(cls, status: str) -> bool:
        return PayrollRunStatus(status) in cls.DELETABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return [s.value for s in cls.VALID_TRANSITIONS.get(PayrollRunStatus(current_status), [])]
