import os
import sys
import secrets
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'settlement_system' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

# Use file-based SQLite for thread-safe multi-connection access (writer pool + test thread)
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_settlement.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Rebind before the app is imported so nothing binds to the default database file
import settlement_system.database as _database  # noqa: E402
_database.SessionLocal = TestingSessionLocal  # type: ignore
_database.engine = engine  # type: ignore

from settlement_system.main import app  # noqa: E402
from settlement_system.database import Base  # noqa: E402
from settlement_system.api import deps  # noqa: E402
"""Pytest fixtures and factories.

All model modules are imported through ``settlement_system.models.db`` so
``Base.metadata`` knows every table before ``create_all``.
"""
from settlement_system.models.db import (  # noqa: E402
    Payment, PaymentStatus, Settlement, SettlementFailure, SchedulerLock,
)
from settlement_system.jobs.locks import InMemoryLockService  # noqa: E402
from settlement_system.jobs.settlement_scheduler import create_settlement_scheduler  # noqa: E402
from settlement_system.services.payment_cancellation import PaymentCancellationService  # noqa: E402
from settlement_system.services.gateway_retry import GatewayRetryClient  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_settlement.db")
    except OSError:
        pass

@pytest.fixture(autouse=True)
def _clean_tables(create_test_db):  # type: ignore[unused-argument]
    """Every test starts from empty tables."""
    yield
    session = TestingSessionLocal()
    try:
        for model in (SettlementFailure, Settlement, Payment, SchedulerLock):
            session.execute(delete(model))
        session.commit()
    finally:
        session.close()

@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture()
def session_factory():
    return TestingSessionLocal

# Override dependency
def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

app.dependency_overrides[deps.get_db] = _override_get_db


async def _no_sleep(_seconds: float) -> None:
    return None


class FakeGateway:
    """Stand-in for ``PaymentGatewayClient``; ``outcomes`` are returned or raised in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[str] = []

    async def cancel_payment(self, imp_uid: str):
        self.calls.append(imp_uid)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture()
def fake_gateway():
    return FakeGateway


@pytest.fixture()
def lock_service():
    return InMemoryLockService()

@pytest.fixture()
def client(lock_service):
    """App client with the services lifespan would create, minus the background worker."""
    app.state.lock_service = lock_service  # type: ignore[attr-defined]
    app.state.settlement_scheduler = create_settlement_scheduler(TestingSessionLocal, lock_service=lock_service)  # type: ignore[attr-defined]
    yield TestClient(app)
    for attr in ("lock_service", "settlement_scheduler", "cancellation_service"):
        if hasattr(app.state, attr):
            delattr(app.state, attr)

@pytest.fixture()
def cancellation_service_factory():
    def _create(gateway, recover=None):
        service = PaymentCancellationService(gateway, TestingSessionLocal)
        service.retry_client = GatewayRetryClient(recover=recover or service.handle_cancellation_failure, sleep=_no_sleep)
        return service
    return _create

# ---------- Data factory helpers ----------

@pytest.fixture()
def payment_factory(db_session):
    def _create(
        partner_id: int,
        amount: str | Decimal,
        payment_date: datetime,
        status: PaymentStatus = PaymentStatus.PAID,
        imp_uid: str | None = None,
    ) -> Payment:
        if payment_date.tzinfo is not None:
            payment_date = payment_date.astimezone(timezone.utc)
        payment = Payment(
            imp_uid=imp_uid or f"imp_{secrets.token_hex(6)}",
            partner_id=partner_id,
            payment_amount=Decimal(str(amount)),
            payment_date=payment_date,
            status=status,
        )
        db_session.add(payment)
        db_session.commit()
        db_session.refresh(payment)
        return payment
    return _create
