"""Per-partner aggregation of completed payments.

Pure: no I/O, no config. Amounts are summed as ``Decimal`` starting from an
exact zero, so the result does not depend on input order.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Protocol

ZERO = Decimal("0")


class PaymentLike(Protocol):
    partner_id: int
    amount: Decimal


def _as_decimal(value: object) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so a float never contributes its binary representation
    return Decimal(str(value))


def aggregate(records: Iterable[PaymentLike]) -> dict[int, Decimal]:
    """Reduce payment records to ``{partner_id: total_amount}``.

    Raises:
        ValueError: a record has no partner_id (callers must filter upstream).
    """
    totals: dict[int, Decimal] = {}
    for record in records:
        partner_id = record.partner_id
        if partner_id is None:
            raise ValueError("Payment record without partner_id cannot be settled")
        totals[partner_id] = totals.get(partner_id, ZERO) + _as_decimal(record.amount)
    return totals


__all__ = ["aggregate", "PaymentLike"]
