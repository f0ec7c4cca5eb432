"""Settlement system package.

Daily per-partner settlement job plus the payment gateway client used for
cancellations. The FastAPI application lives in ``settlement_system.main``.
"""

__all__: list[str] = []
