"""
Pydantic schemas for settlement rows, run summaries and failure records.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict
from settlement_system.models.db.enums import FailureStatus

class SettlementRead(BaseModel):
    id: int
    partner_id: int
    total_amount: Decimal
    settlement_date: date
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class SettlementRunSummary(BaseModel):
    run_id: str
    status: str = Field(description="SUCCEEDED, FAILED or SKIPPED")
    settlement_date: Optional[date] = None
    payment_count: int = 0
    partner_count: int = 0
    written: int = 0
    failed_partner_ids: List[int] = Field(default_factory=list)
    failure_kind: Optional[str] = None
    error: Optional[str] = None
    duration_ms: Optional[float] = None

class SettlementFailureRead(BaseModel):
    id: int
    partner_id: int
    settlement_date: date
    run_id: Optional[str]
    reason: Optional[str]
    status: FailureStatus
    resolved_by: Optional[str]
    resolved_at: Optional[datetime]
    resolution_notes: Optional[str]
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

class SettlementFailureResolve(BaseModel):
    """
    Schema for resolving a recorded settlement failure.
    """
    resolved_by: str = Field(min_length=1, max_length=100)
    resolution_notes: Optional[str] = Field(None, max_length=1000)
