"""Payment cancellation through the gateway with retry and recovery.

On success the local payment is marked ``cancelled``. When the gateway stays
unreachable the recovery callback logs the failure and the caller gets the
sentinel back; local state is left untouched because nothing was changed
before the gateway call.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_system.exceptions import GatewayError
from settlement_system.integrations.payment_gateway import PaymentGatewayClient
from settlement_system.models.db.enums import FailureKind, PaymentStatus
from settlement_system.models.db.payments import Payment
from settlement_system.services.gateway_retry import GatewayResult, GatewayRetryClient, log_gateway_failure
from settlement_system.utils import get_logger, log_business_event

logger = get_logger(__name__)


class PaymentCancellationService:
    def __init__(
        self,
        gateway: PaymentGatewayClient,
        session_factory: Callable[[], Session],
        *,
        retry_client: Optional[GatewayRetryClient] = None,
    ):
        self.gateway = gateway
        self._session_factory = session_factory
        self.retry_client = retry_client or GatewayRetryClient(recover=self.handle_cancellation_failure)

    def handle_cancellation_failure(self, error: GatewayError, imp_uid: Any) -> str:
        log_business_event(
            "payment_cancellation_failed",
            {
                "imp_uid": imp_uid,
                "failure_kind": FailureKind.GATEWAY_TRANSIENT_FAILURE.value,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )
        return log_gateway_failure(error, imp_uid)

    async def cancel(self, imp_uid: str) -> GatewayResult:
        result = await self.retry_client.invoke("cancel_payment", self.gateway.cancel_payment, imp_uid, identifier=imp_uid)
        if result.ok:
            self._mark_cancelled(imp_uid)
            log_business_event("payment_cancelled", {"imp_uid": imp_uid, "attempts": result.attempts})
        return result

    def _mark_cancelled(self, imp_uid: str) -> None:
        session = self._session_factory()
        try:
            payment = session.execute(select(Payment).where(Payment.imp_uid == imp_uid)).scalar_one_or_none()
            if payment is None:
                logger.warning("Cancelled payment not found locally", imp_uid=imp_uid)
                return
            payment.status = PaymentStatus.CANCELLED
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


__all__ = ["PaymentCancellationService"]
