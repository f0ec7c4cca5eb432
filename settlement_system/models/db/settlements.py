"""
SQLAlchemy model for persisted daily settlement totals.
One row per partner per settlement_date.
"""
from sqlalchemy import Column, Integer, BigInteger, Numeric, Date, DateTime, UniqueConstraint, CheckConstraint
from sqlalchemy.sql import func
from settlement_system.database import Base

class Settlement(Base):
    __tablename__ = "settlements"

    id = Column(Integer, primary_key=True, index=True)
    partner_id = Column(BigInteger, nullable=False, index=True)
    total_amount = Column(Numeric(18, 2), nullable=False)
    settlement_date = Column(Date, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    __table_args__ = (
        UniqueConstraint('partner_id', 'settlement_date', name='unique_partner_settlement_date'),
        CheckConstraint('total_amount >= 0', name='check_total_amount_non_negative'),
    )
