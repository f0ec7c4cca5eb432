"""Central Enum definitions for payment, settlement and run states.

Shared by DB models, API schemas and job logic so status strings never drift.
"""
from __future__ import annotations
import enum


class PaymentStatus(str, enum.Enum):
    READY = "ready"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class RunStatus(str, enum.Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class FailureKind(str, enum.Enum):
    LOCK_UNAVAILABLE = "LOCK_UNAVAILABLE"
    QUERY_FAILURE = "QUERY_FAILURE"
    BATCH_WRITE_FAILURE = "BATCH_WRITE_FAILURE"
    GATEWAY_TRANSIENT_FAILURE = "GATEWAY_TRANSIENT_FAILURE"
    GATEWAY_APPLICATION_FAILURE = "GATEWAY_APPLICATION_FAILURE"


class FailureStatus(str, enum.Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"

__all__ = [
    "PaymentStatus",
    "RunStatus",
    "FailureKind",
    "FailureStatus",
]
