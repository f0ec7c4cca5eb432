"""SQLAlchemy model for individual payment records (owned by the payment subsystem)."""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Integer, BigInteger, String, Numeric, DateTime, Enum
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from settlement_system.database import Base
from .enums import PaymentStatus

class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    # Gateway-side payment identifier
    imp_uid: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    partner_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    payment_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    payment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    status: Mapped[PaymentStatus] = mapped_column(Enum(PaymentStatus), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Payment id={self.id} partner={self.partner_id} amount={self.payment_amount} status={self.status}>"
