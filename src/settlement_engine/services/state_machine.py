"""Settlement and obligation state machines with transition validation."""

from __future__ import annotations

from enum import Enum

from settlement_engine.calculators.types import ObligationStatus


class SettlementStatus(str, Enum):
    """Settlement status values."""

    DRAFT = "draft"
    FINALIZED = "finalized"
    VOID = "void"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = getattr(from_status, "value", from_status)
        self.to_status = getattr(to_status, "value", to_status)
        self.reason = reason
        msg = f"Invalid transition from '{self.from_status}' to '{self.to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class SettlementStateMachine:
    """State machine for settlement status transitions.

    Allowed transitions:
    - draft → finalized (commit)
    - finalized → void (reversal)

    Drafts are never persisted; a caller may discard one freely.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        SettlementStatus.DRAFT: [SettlementStatus.FINALIZED],
        SettlementStatus.FINALIZED: [SettlementStatus.VOID],
        SettlementStatus.VOID: [],  # Terminal state
    }

    RESULTS_IMMUTABLE = {
        SettlementStatus.FINALIZED,
        SettlementStatus.VOID,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def are_results_immutable(cls, status: str) -> bool:
        """Check if amounts and allocations can no longer change."""
        return status in cls.RESULTS_IMMUTABLE

    @classmethod
    def is_reversal(cls, from_status: str, to_status: str) -> bool:
        return from_status == SettlementStatus.FINALIZED and to_status == SettlementStatus.VOID


class ObligationStateMachine:
    """State machine for obligation ledger status.

    Allowed transitions:
    - active → paid (allocation brings the balance to exactly zero)
    - active → cancelled (only while nothing has been recovered)
    - paid → active (reversal of the settlement that retired it)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        ObligationStatus.ACTIVE: [ObligationStatus.PAID, ObligationStatus.CANCELLED],
        ObligationStatus.PAID: [ObligationStatus.ACTIVE],
        ObligationStatus.CANCELLED: [],  # Terminal state
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(
        cls, from_status: str, to_status: str, reason: str | None = None
    ) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status, reason)
