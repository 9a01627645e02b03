"""Settlement engine services."""

from settlement_engine.services.state_machine import (
    InvalidTransitionError,
    ObligationStateMachine,
    SettlementStateMachine,
    SettlementStatus,
)
from settlement_engine.services.repositories import (
    ConcurrentModificationError,
    JobNotFoundError,
    ObligationNotFoundError,
    ObligationRepository,
    PayeeNotFoundError,
    SnapshotLoader,
)
from settlement_engine.services.locking_service import LockingService
from settlement_engine.services.ledger_service import LedgerService
from settlement_engine.services.settlement_service import (
    CreateSettlementResult,
    OrderingViolationError,
    SettlementNotFoundError,
    SettlementService,
)

__all__ = [
    "InvalidTransitionError",
    "ObligationStateMachine",
    "SettlementStateMachine",
    "SettlementStatus",
    "ConcurrentModificationError",
    "JobNotFoundError",
    "ObligationNotFoundError",
    "ObligationRepository",
    "PayeeNotFoundError",
    "SnapshotLoader",
    "LockingService",
    "LedgerService",
    "CreateSettlementResult",
    "OrderingViolationError",
    "SettlementNotFoundError",
    "SettlementService",
]
