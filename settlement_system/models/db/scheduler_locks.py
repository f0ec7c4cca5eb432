"""SQLAlchemy model backing the SQL lease lock (one row per job name)."""
from datetime import datetime
from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from settlement_system.database import Base

class SchedulerLock(Base):
    __tablename__ = "scheduler_locks"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    lock_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    locked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    locked_by: Mapped[str] = mapped_column(String(255), nullable=False)
    # Opaque per-acquisition value; release only deletes a matching token
    token: Mapped[str] = mapped_column(String(36), nullable=False)
