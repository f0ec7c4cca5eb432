import threading

from settlement_system.jobs.settlement_scheduler import SettlementRunResult
from settlement_system.jobs.worker_settlement import SettlementWorker
from settlement_system.models.db import RunStatus


class StubScheduler:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0
        self.ticked = threading.Event()

    def run_once(self):
        self.calls += 1
        self.ticked.set()
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_tick_records_last_result():
    result = SettlementRunResult(run_id="r1", status=RunStatus.SUCCEEDED)
    worker = SettlementWorker(StubScheduler(result), interval_seconds=60)
    assert worker.tick() is result
    assert worker.last_result is result


def test_tick_survives_scheduler_exception():
    ok = SettlementRunResult(run_id="r2", status=RunStatus.SKIPPED)
    scheduler = StubScheduler(RuntimeError("boom"), ok)
    worker = SettlementWorker(scheduler, interval_seconds=60)
    assert worker.tick() is None
    assert worker.last_result is None
    assert worker.tick() is ok


def test_start_and_stop_thread():
    scheduler = StubScheduler(SettlementRunResult(run_id="r3", status=RunStatus.SUCCEEDED))
    worker = SettlementWorker(scheduler, interval_seconds=30)
    worker.start()
    try:
        assert scheduler.ticked.wait(timeout=5)
        assert worker.is_running
    finally:
        worker.stop(timeout=5)
    assert not worker.is_running
    assert scheduler.calls == 1
