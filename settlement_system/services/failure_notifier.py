"""Out-of-band alerting for partners whose settlement row failed.

Notification is fire-and-forget from the job's point of view: the scheduler
calls ``safe_notify`` which logs and swallows notifier errors, so an
unavailable alert sink never changes a run's outcome. Delivery is
at-least-once; a failure recorded on one run may be recorded again if the
next run fails the same partner.
"""
from __future__ import annotations

from datetime import date
from typing import Callable, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_system.models.db.enums import FailureStatus
from settlement_system.models.db.settlement_failures import SettlementFailure
from settlement_system.utils import get_logger, log_business_event

logger = get_logger(__name__)


class FailureNotifier(Protocol):
    def notify(
        self,
        failed_partner_ids: Sequence[int],
        *,
        settlement_date: date,
        run_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        ...


class LoggingFailureNotifier:
    """Log an error summary plus one debug line per failed partner."""

    def notify(self, failed_partner_ids, *, settlement_date, run_id=None, reason=None) -> None:
        logger.error(
            "Failed to settle partners",
            failed_partner_ids=list(failed_partner_ids),
            settlement_date=settlement_date.isoformat(),
            run_id=run_id,
            reason=reason,
        )
        for partner_id in failed_partner_ids:
            logger.debug("Failed partner", partner_id=partner_id, run_id=run_id)


class RecordingFailureNotifier:
    """Persist one OPEN ``SettlementFailure`` per partner and settlement date.

    A partner that already has an OPEN failure for the same date is not
    recorded twice.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def notify(self, failed_partner_ids, *, settlement_date, run_id=None, reason=None) -> None:
        if not failed_partner_ids:
            return
        session = self._session_factory()
        try:
            already_open = set(
                session.execute(
                    select(SettlementFailure.partner_id).where(
                        SettlementFailure.settlement_date == settlement_date,
                        SettlementFailure.status == FailureStatus.OPEN,
                        SettlementFailure.partner_id.in_(list(failed_partner_ids)),
                    )
                ).scalars()
            )
            created = 0
            for partner_id in failed_partner_ids:
                if partner_id in already_open:
                    continue
                session.add(
                    SettlementFailure(
                        partner_id=partner_id,
                        settlement_date=settlement_date,
                        run_id=run_id,
                        reason=reason,
                    )
                )
                created += 1
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        log_business_event(
            "settlement_failures_recorded",
            {"settlement_date": settlement_date.isoformat(), "created": created, "already_open": len(already_open)},
            run_id=run_id,
        )


class CompositeFailureNotifier:
    """Fan out to several notifiers; one failing sink does not stop the others."""

    def __init__(self, *notifiers: FailureNotifier):
        self.notifiers = list(notifiers)

    def notify(self, failed_partner_ids, *, settlement_date, run_id=None, reason=None) -> None:
        for notifier in self.notifiers:
            safe_notify(notifier, failed_partner_ids, settlement_date=settlement_date, run_id=run_id, reason=reason)


def safe_notify(
    notifier: FailureNotifier,
    failed_partner_ids: Sequence[int],
    *,
    settlement_date: date,
    run_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> bool:
    """Call ``notifier``; log and swallow its errors. Returns True when delivered."""
    try:
        notifier.notify(failed_partner_ids, settlement_date=settlement_date, run_id=run_id, reason=reason)
        return True
    except Exception as e:
        logger.error(
            "Failure notifier raised; continuing",
            notifier=type(notifier).__name__,
            failed_partner_ids=list(failed_partner_ids),
            run_id=run_id,
            error=str(e),
            exc_info=True,
        )
        return False


def create_failure_notifier(session_factory: Callable[[], Session]) -> FailureNotifier:
    return CompositeFailureNotifier(LoggingFailureNotifier(), RecordingFailureNotifier(session_factory))


__all__ = [
    "FailureNotifier",
    "LoggingFailureNotifier",
    "RecordingFailureNotifier",
    "CompositeFailureNotifier",
    "safe_notify",
    "create_failure_notifier",
]
