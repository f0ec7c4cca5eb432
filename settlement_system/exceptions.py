"""Domain exceptions for the settlement job and the payment gateway wrapper."""
from __future__ import annotations

from typing import Sequence

# JDBC-style marker for a row that did not commit in a batch.
EXECUTE_FAILED = -3


class SettlementError(Exception):
    """Base class for settlement job failures."""


class QueryFailure(SettlementError):
    """Reading the day's payments failed; nothing was written."""


class BatchInsertError(SettlementError):
    """Raised by a settlement store when some rows of a bulk insert failed.

    ``update_counts`` is aligned with the input rows: ``EXECUTE_FAILED`` marks
    a failed row, any other value is the number of rows that row affected.
    """

    def __init__(self, message: str, update_counts: Sequence[int], cause: BaseException | None = None):
        super().__init__(message)
        self.update_counts = list(update_counts)
        self.cause = cause

    @property
    def failed_indices(self) -> list[int]:
        return [i for i, count in enumerate(self.update_counts) if count == EXECUTE_FAILED]


class BatchWriteFailure(SettlementError):
    """One or more partner rows could not be settled."""

    def __init__(self, failed_partner_ids: Sequence[int], total: int, cause: BaseException | None = None):
        self.failed_partner_ids = list(failed_partner_ids)
        self.total = total
        self.cause = cause
        super().__init__(
            f"Settlement batch failed for {len(self.failed_partner_ids)}/{total} partners: {self.failed_partner_ids}"
        )


class GatewayError(Exception):
    """Base class for payment gateway call failures."""


class GatewayTransportError(GatewayError):
    """Connectivity or timeout failure; safe to retry."""


class GatewayApplicationError(GatewayError):
    """The gateway answered and rejected the request; never retried."""

    def __init__(self, message: str, status_code: int | None = None, payload: object | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


__all__ = [
    "EXECUTE_FAILED",
    "SettlementError",
    "QueryFailure",
    "BatchInsertError",
    "BatchWriteFailure",
    "GatewayError",
    "GatewayTransportError",
    "GatewayApplicationError",
]
