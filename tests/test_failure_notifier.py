from datetime import date

from sqlalchemy import select

from settlement_system.models.db import FailureStatus, SettlementFailure
from settlement_system.services.failure_notifier import (
    CompositeFailureNotifier,
    LoggingFailureNotifier,
    RecordingFailureNotifier,
    safe_notify,
)

DAY = date(2025, 3, 1)


class Exploding:
    def notify(self, failed_partner_ids, *, settlement_date, run_id=None, reason=None):
        raise RuntimeError("sink unavailable")


def test_safe_notify_swallows_errors():
    assert safe_notify(Exploding(), [1], settlement_date=DAY) is False
    assert safe_notify(LoggingFailureNotifier(), [1], settlement_date=DAY) is True


def test_recording_notifier_persists_open_failures(session_factory, db_session):
    RecordingFailureNotifier(session_factory).notify([3, 5], settlement_date=DAY, run_id="run-1", reason="check failed")
    rows = db_session.execute(select(SettlementFailure).order_by(SettlementFailure.partner_id)).scalars().all()
    assert [(r.partner_id, r.status, r.run_id, r.reason) for r in rows] == [
        (3, FailureStatus.OPEN, "run-1", "check failed"),
        (5, FailureStatus.OPEN, "run-1", "check failed"),
    ]


def test_recording_notifier_does_not_duplicate_open_failures(session_factory, db_session):
    notifier = RecordingFailureNotifier(session_factory)
    notifier.notify([3], settlement_date=DAY, run_id="run-1")
    notifier.notify([3, 4], settlement_date=DAY, run_id="run-2")
    rows = db_session.execute(select(SettlementFailure.partner_id, SettlementFailure.run_id)).all()
    assert sorted(rows) == [(3, "run-1"), (4, "run-2")]


def test_composite_keeps_going_after_a_failing_sink(session_factory, db_session):
    composite = CompositeFailureNotifier(Exploding(), RecordingFailureNotifier(session_factory))
    composite.notify([8], settlement_date=DAY)
    assert db_session.execute(select(SettlementFailure.partner_id)).scalars().all() == [8]


def test_failure_model_module_keeps_its_docstring():
    from settlement_system.models.db import settlement_failures

    assert settlement_failures.__doc__ and "failed to settle" in settlement_failures.__doc__
