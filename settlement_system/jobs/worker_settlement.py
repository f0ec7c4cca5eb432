"""Background ticker driving the settlement scheduler."""
from __future__ import annotations

import threading
from typing import Optional

from settlement_system.config import SCHEDULER_SETTINGS
from settlement_system.jobs.settlement_scheduler import SettlementRunResult, SettlementScheduler
from settlement_system.models.db.enums import RunStatus
from settlement_system.utils import get_logger

logger = get_logger(__name__)


class SettlementWorker:
    """Calls ``run_once()`` every ``interval_seconds`` on one daemon thread.

    A tick runs to completion before the next wait starts, so one instance
    never overlaps with itself.
    """

    def __init__(self, scheduler: SettlementScheduler, *, interval_seconds: Optional[float] = None):
        self.scheduler = scheduler
        self.interval_seconds = float(interval_seconds or SCHEDULER_SETTINGS["tick_interval_seconds"])
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self.last_result: SettlementRunResult | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():  # pragma: no cover
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="settlement-worker", daemon=True)
        self._thread.start()
        logger.info("Settlement worker started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("Settlement worker stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self.interval_seconds)

    def tick(self) -> SettlementRunResult | None:
        try:
            result = self.scheduler.run_once()
        except Exception as e:
            logger.error("Settlement tick raised", error=str(e), error_type=type(e).__name__, exc_info=True)
            return None
        self.last_result = result
        if result.status == RunStatus.FAILED:
            logger.error("Settlement tick failed", **result.summary())
        elif result.status == RunStatus.SUCCEEDED:
            logger.info("Settlement tick succeeded", **result.summary())
        return result


__all__ = ["SettlementWorker"]
