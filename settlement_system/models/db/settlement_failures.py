"""SQLAlchemy model for partner rows that failed to settle, kept for remediation."""
from __future__ import annotations
from datetime import date, datetime
from sqlalchemy import Integer, BigInteger, String, Date, DateTime, Enum, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from settlement_system.database import Base
from .enums import FailureStatus

class SettlementFailure(Base):
    __tablename__ = "settlement_failures"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    partner_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    settlement_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    run_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[FailureStatus] = mapped_column(Enum(FailureStatus), default=FailureStatus.OPEN, index=True)
    resolved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
