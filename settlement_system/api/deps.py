"""
Dependencies for database sessions and the job / gateway services kept on app.state.
"""
from typing import Generator
from fastapi import HTTPException, Request, status
from sqlalchemy.orm import Session
from settlement_system.database import SessionLocal
from settlement_system.jobs.settlement_scheduler import SettlementScheduler
from settlement_system.services.payment_cancellation import PaymentCancellationService
from settlement_system.utils import get_logger

logger = get_logger(__name__)

def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()

def get_settlement_scheduler(request: Request) -> SettlementScheduler:
    scheduler = getattr(request.app.state, "settlement_scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Settlement scheduler not available")
    return scheduler

def get_cancellation_service(request: Request) -> PaymentCancellationService:
    service = getattr(request.app.state, "cancellation_service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payment cancellation not available")
    return service
