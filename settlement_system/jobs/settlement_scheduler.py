"""Daily settlement job.

One ``run_once()`` call is one pass through:

    LockAcquiring -> (skip | LockHeld) -> Querying -> Aggregating -> Writing
    -> (NotifyingFailure) -> LockReleasing

* Losing the lock is the normal case when several instances tick together:
  the run is SKIPPED and nothing else happens.
* A query fault fails the run before anything is written.
* A write with failed partner rows notifies once with exactly those ids and
  fails the run (rows that did commit stay committed).
* Anything unexpected propagates to the caller.

The lock is released in ``finally`` on every one of those paths.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from settlement_system.config import SCHEDULER_SETTINGS, SETTLEMENT_SETTINGS
from settlement_system.exceptions import BatchWriteFailure, QueryFailure
from settlement_system.jobs.locks import LockService, LockToken, create_lock_service
from settlement_system.models.db.enums import FailureKind, RunStatus
from settlement_system.services.aggregator import aggregate
from settlement_system.services.failure_notifier import FailureNotifier, create_failure_notifier, safe_notify
from settlement_system.services.payment_query import PaymentQuery, SqlPaymentQuery
from settlement_system.services.settlement_window import previous_day_window
from settlement_system.services.settlement_writer import SettlementWriter, SqlSettlementStore
from settlement_system.utils import get_logger, log_business_event, log_performance
from settlement_system.utils.observability import new_run_id
from settlement_system.utils.time import elapsed_ms, utc_now

logger = get_logger(__name__)


@dataclass
class SettlementRunResult:
    run_id: str
    status: RunStatus
    settlement_date: Optional[date] = None
    payment_count: int = 0
    partner_count: int = 0
    written: int = 0
    failed_partner_ids: list[int] = field(default_factory=list)
    failure_kind: Optional[FailureKind] = None
    error: Optional[BaseException] = None
    duration_ms: Optional[float] = None

    @property
    def skipped(self) -> bool:
        return self.status == RunStatus.SKIPPED

    @property
    def failed(self) -> bool:
        return self.status == RunStatus.FAILED

    def raise_for_failure(self) -> None:
        """Re-raise the stored failure (QueryFailure / BatchWriteFailure) of a FAILED run."""
        if self.failed and self.error is not None:
            raise self.error

    def summary(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "settlement_date": self.settlement_date.isoformat() if self.settlement_date else None,
            "payment_count": self.payment_count,
            "partner_count": self.partner_count,
            "written": self.written,
            "failed_partner_ids": list(self.failed_partner_ids),
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "error": str(self.error) if self.error is not None else None,
            "duration_ms": self.duration_ms,
        }


class SettlementScheduler:
    def __init__(
        self,
        lock_service: LockService,
        payment_query: PaymentQuery,
        writer: SettlementWriter,
        notifier: FailureNotifier,
        *,
        job_name: Optional[str] = None,
        lease_seconds: Optional[float] = None,
        payment_status: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
        tz: Optional[tzinfo] = None,
    ):
        self.lock_service = lock_service
        self.payment_query = payment_query
        self.writer = writer
        self.notifier = notifier
        self.job_name = str(job_name or SETTLEMENT_SETTINGS["job_name"])
        self.lease_seconds = float(lease_seconds or SCHEDULER_SETTINGS["lock_lease_seconds"])
        self.payment_status = str(payment_status or SETTLEMENT_SETTINGS["payment_status"])
        self._clock = clock
        self._tz = tz

    def run_once(self, now: Optional[datetime] = None) -> SettlementRunResult:
        """Settle the previous day if this instance wins the lock."""
        run_id = new_run_id()
        try:
            token = self.lock_service.acquire(self.job_name, self.lease_seconds)
        except Exception as e:
            # Without a working lock backend running would risk a double settlement
            logger.error("Lock backend error; skipping run", job_name=self.job_name, run_id=run_id, error=str(e))
            return SettlementRunResult(run_id=run_id, status=RunStatus.SKIPPED, failure_kind=FailureKind.LOCK_UNAVAILABLE, error=e)
        if token is None:
            logger.info("Settlement lock held elsewhere; skipping run", job_name=self.job_name, run_id=run_id)
            return SettlementRunResult(run_id=run_id, status=RunStatus.SKIPPED, failure_kind=FailureKind.LOCK_UNAVAILABLE)

        logger.info("Settlement lock acquired", job_name=self.job_name, run_id=run_id, lease_seconds=self.lease_seconds)
        try:
            return self._run_locked(run_id, now or self._clock())
        finally:
            self._release(token, run_id)

    def _run_locked(self, run_id: str, now: datetime) -> SettlementRunResult:
        started = time.perf_counter()
        window = previous_day_window(now, tz=self._tz)
        result = SettlementRunResult(run_id=run_id, status=RunStatus.SUCCEEDED, settlement_date=window.settlement_date)

        try:
            records = self.payment_query.find(self.payment_status, window.start, window.end)
        except Exception as e:
            failure = e if isinstance(e, QueryFailure) else QueryFailure(f"Payment query failed: {e}")
            if failure is not e:
                failure.__cause__ = e
            logger.error(
                "Settlement query failed; nothing written",
                run_id=run_id,
                settlement_date=window.settlement_date.isoformat(),
                error=str(e),
                exc_info=True,
            )
            result.status = RunStatus.FAILED
            result.failure_kind = FailureKind.QUERY_FAILURE
            result.error = failure
            result.duration_ms = elapsed_ms(started, time.perf_counter())
            return result

        totals = aggregate(records)
        result.payment_count = len(records)
        result.partner_count = len(totals)

        write_result = self.writer.write(totals, window.settlement_date)
        result.written = write_result.written
        result.duration_ms = elapsed_ms(started, time.perf_counter())
        log_performance(
            "settlement_run",
            result.duration_ms,
            {"run_id": run_id, "partners": result.partner_count, "payments": result.payment_count},
        )

        if not write_result.succeeded:
            result.failed_partner_ids = list(write_result.failed_partner_ids)
            safe_notify(
                self.notifier,
                result.failed_partner_ids,
                settlement_date=window.settlement_date,
                run_id=run_id,
                reason=str(write_result.error) if write_result.error is not None else None,
            )
            try:
                write_result.raise_for_failures()
            except BatchWriteFailure as failure:
                result.error = failure
            result.status = RunStatus.FAILED
            result.failure_kind = FailureKind.BATCH_WRITE_FAILURE
            logger.error(
                "Settlement run failed",
                run_id=run_id,
                settlement_date=window.settlement_date.isoformat(),
                written=result.written,
                failed=len(result.failed_partner_ids),
            )
            return result

        log_business_event(
            "settlement_written",
            {
                "settlement_date": window.settlement_date.isoformat(),
                "partners": result.partner_count,
                "payments": result.payment_count,
                "duration_ms": result.duration_ms,
            },
            run_id=run_id,
        )
        return result

    def _release(self, token: LockToken, run_id: str) -> None:
        try:
            released = self.lock_service.release(token)
        except Exception as e:
            # Lease expiry frees it eventually; never mask the run's own outcome
            logger.error("Settlement lock release failed", job_name=token.name, run_id=run_id, error=str(e))
            return
        if released:
            logger.info("Settlement lock released", job_name=token.name, run_id=run_id)
        else:
            logger.warning("Settlement lock was no longer held at release (lease expired?)", job_name=token.name, run_id=run_id)


def create_settlement_scheduler(
    session_factory: Callable[[], Session],
    *,
    lock_service: Optional[LockService] = None,
) -> SettlementScheduler:
    """Wire the SQL-backed collaborators from configuration."""
    store = SqlSettlementStore(session_factory, upsert=bool(SETTLEMENT_SETTINGS["upsert"]))
    return SettlementScheduler(
        lock_service=lock_service or create_lock_service(session_factory),
        payment_query=SqlPaymentQuery(session_factory),
        writer=SettlementWriter(store, max_workers=int(SETTLEMENT_SETTINGS["parallel_workers"])),
        notifier=create_failure_notifier(session_factory),
    )


__all__ = ["SettlementRunResult", "SettlementScheduler", "create_settlement_scheduler"]
