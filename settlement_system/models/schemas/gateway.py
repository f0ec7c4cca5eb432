"""
Pydantic schemas for payment gateway (PortOne / iamport style) responses.
Every gateway reply is an envelope: ``code == 0`` means success, anything
else is an application-level rejection.
"""
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, ConfigDict

class GatewayEnvelope(BaseModel):
    code: int = Field(description="0 on success, non-zero when the gateway rejected the request")
    message: Optional[str] = None
    response: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="allow")

class AccessTokenPayload(BaseModel):
    access_token: str = Field(min_length=1)
    now: Optional[int] = None
    expired_at: Optional[int] = None

class CancelledPayment(BaseModel):
    """Subset of the cancelled payment object the service relies on."""
    imp_uid: str
    merchant_uid: Optional[str] = None
    status: Optional[str] = None
    cancel_amount: Optional[float] = None

    model_config = ConfigDict(extra="allow", json_schema_extra={
        "example": {
            "imp_uid": "imp_123456789012",
            "merchant_uid": "order_20241026_0001",
            "status": "cancelled",
            "cancel_amount": 15000
        }
    })
