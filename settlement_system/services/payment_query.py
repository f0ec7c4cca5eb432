"""Read side for completed payments.

``PaymentQuery`` is the narrow contract the settlement job consumes;
``SqlPaymentQuery`` implements it against the ``payments`` table. Every call
opens a fresh session so a run never sees cached rows from an earlier one.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from settlement_system.exceptions import QueryFailure
from settlement_system.models.db.enums import PaymentStatus
from settlement_system.models.db.payments import Payment
from settlement_system.utils import get_logger
from settlement_system.utils.time import ensure_aware

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PaymentRecord:
    id: int
    partner_id: int
    amount: Decimal
    payment_date: datetime
    status: PaymentStatus


class PaymentQuery(Protocol):
    def find(self, status: str | PaymentStatus, start: datetime, end: datetime) -> Sequence[PaymentRecord]:
        """Payments with ``status`` and ``start <= payment_date < end``."""
        ...


class SqlPaymentQuery:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def find(self, status: str | PaymentStatus, start: datetime, end: datetime) -> list[PaymentRecord]:
        payment_status = PaymentStatus(status)
        # Stored timestamps are UTC
        start_utc = ensure_aware(start).astimezone(timezone.utc)
        end_utc = ensure_aware(end).astimezone(timezone.utc)
        stmt = (
            select(Payment)
            .where(
                Payment.status == payment_status,
                Payment.payment_date >= start_utc,
                Payment.payment_date < end_utc,
            )
            .order_by(Payment.id)
            .execution_options(populate_existing=True)
        )
        session = self._session_factory()
        try:
            rows = session.execute(stmt).scalars().all()
            records = [
                PaymentRecord(
                    id=row.id,
                    partner_id=row.partner_id,
                    amount=row.payment_amount,
                    payment_date=ensure_aware(row.payment_date),
                    status=row.status,
                )
                for row in rows
            ]
        except SQLAlchemyError as e:
            logger.error("Payment query failed", status=payment_status.value, error=str(e))
            raise QueryFailure(f"Failed to load {payment_status.value} payments: {e}") from e
        finally:
            session.close()
        logger.debug(
            "Payments loaded",
            status=payment_status.value,
            start=start_utc.isoformat(),
            end=end_utc.isoformat(),
            count=len(records),
        )
        return records


__all__ = ["PaymentRecord", "PaymentQuery", "SqlPaymentQuery"]
