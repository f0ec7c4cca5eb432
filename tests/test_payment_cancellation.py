import asyncio
from datetime import datetime, timezone

from settlement_system.exceptions import GatewayTransportError
from settlement_system.models.db import Payment, PaymentStatus
from settlement_system.models.schemas.gateway import CancelledPayment
from settlement_system.services.gateway_retry import GATEWAY_FAILURE_SENTINEL

PAID_AT = datetime(2025, 3, 1, 10, tzinfo=timezone.utc)


def _status(db_session, imp_uid):
    db_session.expire_all()
    return db_session.query(Payment).filter_by(imp_uid=imp_uid).one().status


def test_cancel_marks_payment_cancelled(payment_factory, fake_gateway, cancellation_service_factory, db_session):
    payment_factory(1, "10.00", PAID_AT, imp_uid="imp_ok")
    gateway = fake_gateway(CancelledPayment(imp_uid="imp_ok", status="cancelled"))
    result = asyncio.run(cancellation_service_factory(gateway).cancel("imp_ok"))
    assert result.ok
    assert gateway.calls == ["imp_ok"]
    assert _status(db_session, "imp_ok") == PaymentStatus.CANCELLED


def test_unreachable_gateway_returns_sentinel_and_keeps_state(payment_factory, fake_gateway, cancellation_service_factory, db_session):
    payment_factory(1, "10.00", PAID_AT, imp_uid="imp_down")
    gateway = fake_gateway(GatewayTransportError("timeout"))
    recovered = []

    def recover(error, imp_uid):
        recovered.append(imp_uid)
        return GATEWAY_FAILURE_SENTINEL

    result = asyncio.run(cancellation_service_factory(gateway, recover=recover).cancel("imp_down"))
    assert not result.ok
    assert result.value == GATEWAY_FAILURE_SENTINEL
    assert gateway.calls == ["imp_down", "imp_down"]
    assert recovered == ["imp_down"]
    assert _status(db_session, "imp_down") == PaymentStatus.PAID
