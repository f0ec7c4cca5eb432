from .enums import PaymentStatus, RunStatus, FailureKind, FailureStatus
from .payments import Payment
from .settlements import Settlement
from .settlement_failures import SettlementFailure
from .scheduler_locks import SchedulerLock

__all__ = [
    "PaymentStatus",
    "RunStatus",
    "FailureKind",
    "FailureStatus",
    "Payment",
    "Settlement",
    "SettlementFailure",
    "SchedulerLock",
]
