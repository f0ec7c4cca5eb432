"""
Payment endpoints backed by the payment gateway.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy import select
from sqlalchemy.orm import Session
from settlement_system.api.deps import get_db, get_cancellation_service
from settlement_system.exceptions import GatewayApplicationError
from settlement_system.models.db import FailureKind, Payment, PaymentStatus
from settlement_system.models.schemas.base import ResponseBase
from settlement_system.services.payment_cancellation import PaymentCancellationService
from settlement_system.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)

@router.post(
    "/{imp_uid}/cancel",
    response_model=ResponseBase,
    summary="Cancel a payment through the gateway"
)
async def cancel_payment(
    imp_uid: str,
    request: Request,
    db: Session = Depends(get_db),
    service: PaymentCancellationService = Depends(get_cancellation_service)
) -> ResponseBase:
    """Cancel a payment with the gateway's retry / recovery policy.

    ``success=False`` with the sentinel in ``data.result`` means the gateway
    could not be reached; a compensating action may be required.
    """
    request_id = request.headers.get("X-Request-ID", "unknown")
    payment = db.execute(select(Payment).where(Payment.imp_uid == imp_uid)).scalar_one_or_none()
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Payment {imp_uid} not found")
    if payment.status == PaymentStatus.CANCELLED:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Payment {imp_uid} already cancelled")

    logger.info("Payment cancellation requested", imp_uid=imp_uid, request_id=request_id)
    try:
        result = await service.cancel(imp_uid)
    except GatewayApplicationError as e:
        logger.warning(
            "Gateway rejected cancellation",
            imp_uid=imp_uid,
            failure_kind=FailureKind.GATEWAY_APPLICATION_FAILURE.value,
            error=str(e),
            request_id=request_id
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Gateway rejected cancellation: {e}")

    if not result.ok:
        return ResponseBase(
            success=False,
            message="Cancellation did not succeed; compensating action may be required",
            data={"imp_uid": imp_uid, "attempts": result.attempts, "result": result.value},
        )
    value = result.value.model_dump() if hasattr(result.value, "model_dump") else result.value
    return ResponseBase(
        message="Payment cancelled",
        data={"imp_uid": imp_uid, "attempts": result.attempts, "result": value},
    )
