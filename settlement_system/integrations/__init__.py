"""
Integrations package initialization.
Exports the payment gateway client.
"""
from .payment_gateway import PaymentGatewayClient, GatewayPath, TRANSIENT_STATUS_CODES

__all__ = [
    "PaymentGatewayClient",
    "GatewayPath",
    "TRANSIENT_STATUS_CODES",
]
