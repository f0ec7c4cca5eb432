from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from settlement_system.exceptions import BatchWriteFailure, QueryFailure
from settlement_system.jobs.locks import InMemoryLockService
from settlement_system.jobs.settlement_scheduler import SettlementScheduler, create_settlement_scheduler
from settlement_system.models.db import FailureKind, FailureStatus, PaymentStatus, RunStatus, Settlement, SettlementFailure
from settlement_system.services.payment_query import PaymentRecord
from settlement_system.services.settlement_writer import SettlementWriter

from test_settlement_writer import FakeStore

RUN_AT = datetime(2025, 3, 2, 0, 0, 10, tzinfo=timezone.utc)
DAY = date(2025, 3, 1)
JOB = "ScheduledTask_run"


def _at(hour, minute=0, second=0, micro=0, day=1):
    return datetime(2025, 3, day, hour, minute, second, micro, tzinfo=timezone.utc)


class FakeQuery:
    def __init__(self, records=(), error: BaseException | None = None):
        self.records = list(records)
        self.error = error
        self.calls = []

    def find(self, status, start, end):
        self.calls.append((status, start, end))
        if self.error is not None:
            raise self.error
        return [r for r in self.records if start <= r.payment_date < end]


class RecordingNotifier:
    def __init__(self, error: BaseException | None = None):
        self.calls = []
        self.error = error

    def notify(self, failed_partner_ids, *, settlement_date, run_id=None, reason=None):
        self.calls.append((list(failed_partner_ids), settlement_date))
        if self.error is not None:
            raise self.error


def _record(pk, partner_id, amount, when=None):
    return PaymentRecord(pk, partner_id, Decimal(amount), when or _at(12), PaymentStatus.PAID)


def _scheduler(lock=None, query=None, store=None, notifier=None):
    return SettlementScheduler(
        lock or InMemoryLockService(),
        query or FakeQuery(),
        SettlementWriter(store or FakeStore()),
        notifier or RecordingNotifier(),
        job_name=JOB,
        lease_seconds=60,
        payment_status="paid",
        tz=timezone.utc,
    )


def test_skips_when_lock_held_elsewhere():
    lock = InMemoryLockService()
    held = lock.acquire(JOB, 60)
    query, store, notifier = FakeQuery([_record(1, 1, "5")]), FakeStore(), RecordingNotifier()
    result = _scheduler(lock, query, store, notifier).run_once(RUN_AT)
    assert result.status == RunStatus.SKIPPED
    assert result.skipped
    assert result.failure_kind == FailureKind.LOCK_UNAVAILABLE
    assert query.calls == [] and store.batches == [] and notifier.calls == []
    assert lock.release(held)


def test_lock_backend_error_skips_run():
    class BrokenLock:
        def acquire(self, name, lease_seconds):
            raise ConnectionError("redis down")

        def release(self, token):  # pragma: no cover
            raise AssertionError("not acquired")

    query = FakeQuery()
    result = _scheduler(BrokenLock(), query).run_once(RUN_AT)
    assert result.status == RunStatus.SKIPPED
    assert isinstance(result.error, ConnectionError)
    assert query.calls == []


def test_successful_run_settles_previous_day_and_releases_lock():
    lock = InMemoryLockService()
    records = [
        _record(1, 1, "10.00"),
        _record(2, 1, "5.50", _at(23, 59, 59, 999000)),
        _record(3, 2, "20.00", _at(0)),
        _record(4, 3, "99.00", _at(0, day=2)),  # belongs to the next day
    ]
    query, store = FakeQuery(records), FakeStore()
    result = _scheduler(lock, query, store).run_once(RUN_AT)

    assert result.status == RunStatus.SUCCEEDED
    assert result.settlement_date == DAY
    assert result.payment_count == 3
    assert result.written == 2
    status, start, end = query.calls[0]
    assert status == "paid"
    assert (start, end) == (_at(0), _at(0, day=2))
    written = {row.partner_id: row.total_amount for row in store.batches[0]}
    assert written == {1: Decimal("15.50"), 2: Decimal("20.00")}
    assert not lock.is_locked(JOB)


def test_no_payments_is_a_successful_empty_run():
    store = FakeStore()
    result = _scheduler(store=store).run_once(RUN_AT)
    assert result.status == RunStatus.SUCCEEDED
    assert result.written == 0
    assert store.batches == []


def test_batch_failure_notifies_once_with_failed_partners():
    lock = InMemoryLockService()
    records = [_record(i, i, "10") for i in range(1, 6)]
    notifier = RecordingNotifier()
    result = _scheduler(lock, FakeQuery(records), FakeStore(failing_partner_ids={2, 4}), notifier).run_once(RUN_AT)

    assert result.status == RunStatus.FAILED
    assert result.failure_kind == FailureKind.BATCH_WRITE_FAILURE
    assert result.failed_partner_ids == [2, 4]
    assert result.written == 3
    assert notifier.calls == [([2, 4], DAY)]
    with pytest.raises(BatchWriteFailure):
        result.raise_for_failure()
    assert not lock.is_locked(JOB)


def test_notifier_error_does_not_change_outcome():
    records = [_record(1, 1, "10")]
    notifier = RecordingNotifier(error=RuntimeError("alert sink down"))
    result = _scheduler(query=FakeQuery(records), store=FakeStore(failing_partner_ids={1}), notifier=notifier).run_once(RUN_AT)
    assert result.status == RunStatus.FAILED
    assert len(notifier.calls) == 1


def test_query_failure_writes_nothing():
    lock, store, notifier = InMemoryLockService(), FakeStore(), RecordingNotifier()
    result = _scheduler(lock, FakeQuery(error=QueryFailure("db gone")), store, notifier).run_once(RUN_AT)
    assert result.status == RunStatus.FAILED
    assert result.failure_kind == FailureKind.QUERY_FAILURE
    assert isinstance(result.error, QueryFailure)
    assert store.batches == [] and notifier.calls == []
    assert not lock.is_locked(JOB)


def test_lock_released_when_run_raises():
    lock = InMemoryLockService()
    scheduler = _scheduler(lock, FakeQuery([_record(1, 1, "1")]), FakeStore(error=RuntimeError("boom")))
    with pytest.raises(RuntimeError):
        scheduler.run_once(RUN_AT)
    assert not lock.is_locked(JOB)
    assert lock.acquire(JOB, 60) is not None


def test_end_to_end_against_database(payment_factory, session_factory, db_session):
    payment_factory(1, "10.00", _at(9))
    payment_factory(1, "5.50", _at(23, 59, 59, 999000))
    payment_factory(2, "20.00", _at(0))
    payment_factory(2, "7.00", _at(15), status=PaymentStatus.REFUNDED)
    payment_factory(3, "8.00", datetime(2025, 2, 28, 23, 59, 59, tzinfo=timezone.utc))
    payment_factory(4, "3.00", _at(0, day=2))

    scheduler = create_settlement_scheduler(session_factory, lock_service=InMemoryLockService())
    result = scheduler.run_once(RUN_AT)

    assert result.status == RunStatus.SUCCEEDED, result.summary()
    rows = db_session.execute(select(Settlement).order_by(Settlement.partner_id)).scalars().all()
    assert [(r.partner_id, r.total_amount, r.settlement_date) for r in rows] == [
        (1, Decimal("15.50"), DAY),
        (2, Decimal("20.00"), DAY),
    ]


def test_end_to_end_failure_is_recorded_for_remediation(payment_factory, session_factory, db_session):
    payment_factory(1, "10.00", _at(9))
    payment_factory(2, "-5.00", _at(10))

    scheduler = create_settlement_scheduler(session_factory, lock_service=InMemoryLockService())
    result = scheduler.run_once(RUN_AT)

    assert result.status == RunStatus.FAILED
    assert result.failed_partner_ids == [2]
    failures = db_session.execute(select(SettlementFailure)).scalars().all()
    assert [(f.partner_id, f.settlement_date, f.status) for f in failures] == [(2, DAY, FailureStatus.OPEN)]
    assert failures[0].run_id == result.run_id
