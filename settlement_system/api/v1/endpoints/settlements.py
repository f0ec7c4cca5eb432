"""
Settlement endpoints: manual run trigger, settlement rows, failure records.
"""
from datetime import date, datetime, timezone
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
import time
from settlement_system.api.deps import get_db, get_settlement_scheduler
from settlement_system.jobs.settlement_scheduler import SettlementScheduler
from settlement_system.models.db import Settlement, SettlementFailure, FailureStatus, RunStatus
from settlement_system.models.schemas.base import ResponseBase
from settlement_system.models.schemas.settlements import (
    SettlementRead,
    SettlementRunSummary,
    SettlementFailureRead,
    SettlementFailureResolve,
)
from settlement_system.utils import get_logger, log_business_event, log_performance

router = APIRouter()
logger = get_logger(__name__)

@router.post(
    "/run",
    response_model=ResponseBase,
    summary="Run the daily settlement now"
)
async def trigger_settlement(
    request: Request,
    scheduler: SettlementScheduler = Depends(get_settlement_scheduler)
) -> ResponseBase:
    """Run one settlement pass for the previous day.

    Takes the same cluster lock as the background worker, so a run already in
    progress elsewhere makes this call a SKIPPED no-op.
    """
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info("Manual settlement run triggered", request_id=request_id)

    result = await run_in_threadpool(scheduler.run_once)
    summary = SettlementRunSummary(**result.summary())

    messages = {
        RunStatus.SUCCEEDED: "Settlement run completed",
        RunStatus.SKIPPED: "Settlement lock held elsewhere; run skipped",
        RunStatus.FAILED: "Settlement run failed",
    }
    return ResponseBase(
        success=result.status != RunStatus.FAILED,
        message=messages[result.status],
        data=summary.model_dump(mode="json"),
    )

@router.get(
    "/",
    response_model=List[SettlementRead],
    summary="List settlement rows"
)
async def list_settlements(
    settlement_date: Optional[date] = Query(None),
    partner_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
) -> List[SettlementRead]:
    start_time = time.time()
    stmt = select(Settlement)
    if settlement_date is not None:
        stmt = stmt.where(Settlement.settlement_date == settlement_date)
    if partner_id is not None:
        stmt = stmt.where(Settlement.partner_id == partner_id)
    rows = db.execute(
        stmt.order_by(Settlement.settlement_date.desc(), Settlement.partner_id).offset(offset).limit(limit)
    ).scalars().all()

    log_performance(
        operation="list_settlements",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"rows_returned": len(rows)}
    )
    return [SettlementRead.model_validate(row) for row in rows]

@router.get(
    "/failures",
    response_model=List[SettlementFailureRead],
    summary="List recorded settlement failures"
)
async def list_failures(
    status_filter: Optional[FailureStatus] = Query(None, alias="status"),
    settlement_date: Optional[date] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
) -> List[SettlementFailureRead]:
    stmt = select(SettlementFailure)
    if status_filter is not None:
        stmt = stmt.where(SettlementFailure.status == status_filter)
    if settlement_date is not None:
        stmt = stmt.where(SettlementFailure.settlement_date == settlement_date)
    rows = db.execute(
        stmt.order_by(SettlementFailure.created_at.desc(), SettlementFailure.id.desc()).offset(offset).limit(limit)
    ).scalars().all()
    return [SettlementFailureRead.model_validate(row) for row in rows]

@router.put(
    "/failures/{failure_id}/resolve",
    response_model=ResponseBase,
    summary="Resolve a settlement failure"
)
async def resolve_failure(
    failure_id: int,
    resolution_data: SettlementFailureResolve,
    request: Request,
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    failure = db.get(SettlementFailure, failure_id)
    if failure is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Settlement failure {failure_id} not found")
    if failure.status == FailureStatus.RESOLVED:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Settlement failure {failure_id} already resolved")

    failure.status = FailureStatus.RESOLVED
    failure.resolved_by = resolution_data.resolved_by
    failure.resolution_notes = resolution_data.resolution_notes
    failure.resolved_at = datetime.now(timezone.utc)
    db.commit()

    log_business_event(
        "settlement_failure_resolved",
        {"failure_id": failure_id, "resolved_by": resolution_data.resolved_by, "request_id": request_id},
        run_id=failure.run_id,
        partner_id=failure.partner_id,
    )
    return ResponseBase(
        message="Settlement failure resolved",
        data={
            "failure_id": failure_id,
            "resolved_by": failure.resolved_by,
            "resolved_at": failure.resolved_at.isoformat(),
        }
    )
