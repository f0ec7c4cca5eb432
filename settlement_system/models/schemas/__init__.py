from .base import ResponseBase
from .gateway import GatewayEnvelope, AccessTokenPayload, CancelledPayment
from .settlements import SettlementRead, SettlementRunSummary, SettlementFailureRead, SettlementFailureResolve

__all__ = [
    "ResponseBase",
    "GatewayEnvelope",
    "AccessTokenPayload",
    "CancelledPayment",
    "SettlementRead",
    "SettlementRunSummary",
    "SettlementFailureRead",
    "SettlementFailureResolve",
]
