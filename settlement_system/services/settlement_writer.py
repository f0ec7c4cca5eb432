"""Bulk persistence of daily settlement totals.

``SettlementWriter.write(aggregate, settlement_date)`` turns the aggregate
mapping into rows ordered by partner_id, hands them to a ``SettlementStore``
in one bulk call, and reports exactly which partner_ids did not commit.

Failure mapping:
* ``BatchInsertError`` from the store carries per-row update counts; rows
  marked ``EXECUTE_FAILED`` (or never reached) are reported failed.
* Any other storage error (connection lost, no row information) fails the
  whole batch: every partner_id is reported.
* Anything else is not a storage fault and propagates to the caller.

The writer never raises for failed rows itself; callers inspect
``WriteResult`` and use ``raise_for_failures()`` to turn it into a
``BatchWriteFailure``.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, Mapping, Protocol, Sequence

from sqlalchemy import func, insert
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from settlement_system.exceptions import EXECUTE_FAILED, BatchInsertError, BatchWriteFailure
from settlement_system.models.db.settlements import Settlement
from settlement_system.utils import get_logger

logger = get_logger(__name__)

STORAGE_ERRORS = (SQLAlchemyError, ConnectionError)


@dataclass(frozen=True, slots=True)
class SettlementRow:
    partner_id: int
    total_amount: Decimal
    settlement_date: date

    def as_params(self) -> dict[str, object]:
        return {
            "partner_id": self.partner_id,
            "total_amount": self.total_amount,
            "settlement_date": self.settlement_date,
        }


@dataclass
class WriteResult:
    total: int
    failed_partner_ids: list[int] = field(default_factory=list)
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return not self.failed_partner_ids

    @property
    def written(self) -> int:
        return self.total - len(self.failed_partner_ids)

    def raise_for_failures(self) -> None:
        if self.failed_partner_ids:
            raise BatchWriteFailure(self.failed_partner_ids, self.total, cause=self.error) from self.error

    @classmethod
    def merge(cls, results: Iterable["WriteResult"]) -> "WriteResult":
        """Combine chunk results; failures sorted by partner_id, first error kept."""
        results = list(results)
        failed = sorted({pid for r in results for pid in r.failed_partner_ids})
        error = next((r.error for r in results if r.error is not None), None)
        return cls(total=sum(r.total for r in results), failed_partner_ids=failed, error=error)


class SettlementStore(Protocol):
    def bulk_insert(self, rows: Sequence[SettlementRow]) -> int:
        """Insert all rows; raise ``BatchInsertError`` when only some fail."""
        ...


def build_rows(aggregate: Mapping[int, Decimal], settlement_date: date) -> list[SettlementRow]:
    return [
        SettlementRow(partner_id=partner_id, total_amount=aggregate[partner_id], settlement_date=settlement_date)
        for partner_id in sorted(aggregate)
    ]


class SettlementWriter:
    def __init__(self, store: SettlementStore, *, max_workers: int = 1):
        self._store = store
        self.max_workers = max(1, int(max_workers))

    def write(self, aggregate: Mapping[int, Decimal], settlement_date: date) -> WriteResult:
        rows = build_rows(aggregate, settlement_date)
        if not rows:
            logger.info("No settlement rows to write", settlement_date=settlement_date.isoformat())
            return WriteResult(total=0)
        if self.max_workers > 1 and len(rows) > 1:
            return self.write_parallel(rows)
        return self._write_rows(rows)

    def write_parallel(self, rows: Sequence[SettlementRow]) -> WriteResult:
        """Write disjoint chunks on a bounded pool; merge results by partner_id."""
        workers = min(self.max_workers, len(rows))
        chunks = [list(rows[i::workers]) for i in range(workers)]
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="settlement-writer") as pool:
            results = list(pool.map(self._write_rows, chunks))
        merged = WriteResult.merge(results)
        logger.info(
            "Parallel settlement write finished",
            chunks=len(chunks),
            total=merged.total,
            failed=len(merged.failed_partner_ids),
        )
        return merged

    def _write_rows(self, rows: Sequence[SettlementRow]) -> WriteResult:
        try:
            self._store.bulk_insert(rows)
        except BatchInsertError as e:
            failed = self._failed_partner_ids(rows, e.update_counts)
            logger.error(
                "Settlement batch partially failed",
                total=len(rows),
                failed_partner_ids=failed,
                error=str(e.cause or e),
            )
            return WriteResult(total=len(rows), failed_partner_ids=failed, error=e)
        except STORAGE_ERRORS as e:
            failed = [row.partner_id for row in rows]
            logger.error(
                "Settlement batch failed without row information; treating all rows as failed",
                total=len(rows),
                error=str(e),
                error_type=type(e).__name__,
            )
            return WriteResult(total=len(rows), failed_partner_ids=failed, error=e)
        logger.debug("Settlement batch written", total=len(rows))
        return WriteResult(total=len(rows))

    @staticmethod
    def _failed_partner_ids(rows: Sequence[SettlementRow], update_counts: Sequence[int]) -> list[int]:
        failed: list[int] = []
        for index, row in enumerate(rows):
            # Drivers that stop at the first error return short count arrays
            if index >= len(update_counts) or update_counts[index] == EXECUTE_FAILED:
                failed.append(row.partner_id)
        return failed


class SqlSettlementStore:
    """``SettlementStore`` over the ``settlements`` table.

    The batch goes out as one multi-row statement in one transaction. If that
    statement hits a row-level constraint error the transaction is rolled back
    and the rows are replayed one transaction each, which commits the good rows
    and yields per-row update counts for the bad ones.
    """

    def __init__(self, session_factory: Callable[[], Session], *, upsert: bool = True):
        self._session_factory = session_factory
        self.upsert = upsert

    def _statement(self, dialect_name: str):
        if not self.upsert:
            return insert(Settlement)
        if dialect_name == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        elif dialect_name == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            logger.warning("Upsert not supported for dialect; using plain insert", dialect=dialect_name)
            return insert(Settlement)
        stmt = dialect_insert(Settlement)
        return stmt.on_conflict_do_update(
            index_elements=[Settlement.partner_id, Settlement.settlement_date],
            set_={"total_amount": stmt.excluded.total_amount, "updated_at": func.now()},
        )

    def bulk_insert(self, rows: Sequence[SettlementRow]) -> int:
        if not rows:
            return 0
        params = [row.as_params() for row in rows]
        session = self._session_factory()
        try:
            stmt = self._statement(session.get_bind().dialect.name)
            try:
                session.execute(stmt, params)
                session.commit()
                return len(params)
            except (IntegrityError, DataError) as batch_error:
                session.rollback()
                logger.warning(
                    "Bulk settlement insert rejected; replaying rows individually",
                    rows=len(params),
                    error=str(batch_error.orig),
                )
                counts = self._replay(session, stmt, params)
                if EXECUTE_FAILED in counts:
                    raise BatchInsertError(
                        f"{counts.count(EXECUTE_FAILED)} of {len(params)} settlement rows failed",
                        counts,
                        cause=batch_error,
                    ) from batch_error
                return len(params)
        finally:
            session.close()

    @staticmethod
    def _replay(session: Session, stmt, params: list[dict[str, object]]) -> list[int]:
        """Per-row counts for ``params``.

        A non-row storage error (connection lost) stops the replay and raises
        ``BatchInsertError`` with the counts gathered so far; rows after the
        last count are unreached and count as failed.
        """
        counts: list[int] = []
        for row_params in params:
            try:
                session.execute(stmt, row_params)
                session.commit()
                counts.append(1)
            except (IntegrityError, DataError) as e:
                session.rollback()
                counts.append(EXECUTE_FAILED)
                logger.debug("Settlement row rejected", partner_id=row_params["partner_id"], error=str(e.orig))
            except SQLAlchemyError as e:
                try:
                    session.rollback()
                except SQLAlchemyError as rollback_error:
                    logger.warning("Rollback after replay failure also failed", error=str(rollback_error))
                logger.error(
                    "Settlement replay aborted",
                    committed=counts.count(1),
                    unreached=len(params) - len(counts),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise BatchInsertError(
                    f"Replay aborted after {len(counts)} of {len(params)} settlement rows",
                    counts,
                    cause=e,
                ) from e
        return counts

__all__ = [
    "SettlementRow",
    "WriteResult",
    "SettlementStore",
    "SettlementWriter",
    "SqlSettlementStore",
    "build_rows",
]
