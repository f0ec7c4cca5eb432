"""Retry / recover wrapper for named payment gateway operations.

``GatewayRetryClient.invoke("cancel_payment", client.cancel_payment, imp_uid)``

* up to ``max_attempts`` calls (default 2: one initial call, one retry);
* only ``GatewayTransportError`` is retried, with the configured backoff
  between attempts (default: fixed 1s, no jitter);
* ``GatewayApplicationError`` and anything else propagates on first sight;
* when attempts run out the injected ``recover(error, identifier)`` callback
  runs exactly once, before ``invoke`` returns, and its return value becomes
  the sentinel ``value`` of a failed ``GatewayResult``. Nothing is raised.

The wait is ``asyncio.sleep``: it suspends only the calling task and is
cancelled along with it, e.g. by ``deadline_seconds``.
"""
from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional

from settlement_system.config import GATEWAY_RETRY_POLICY
from settlement_system.exceptions import GatewayError, GatewayTransportError
from settlement_system.utils import get_logger
from settlement_system.utils.backoff import compute_backoff_seconds

logger = get_logger(__name__)

GATEWAY_FAILURE_SENTINEL = "500 INTERNAL_SERVER_ERROR"

RecoveryCallback = Callable[[GatewayError, Any], Any]


@dataclass
class GatewayResult:
    operation: str
    ok: bool
    value: Any
    attempts: int
    recovered: bool = False
    error: Optional[BaseException] = None


def log_gateway_failure(error: GatewayError, identifier: Any) -> str:
    """Default recovery: record the failure and hand back the sentinel.

    Compensation (undoing local state changed before the call) and paging an
    operator belong in a callback passed by the caller.
    """
    logger.error(
        "Gateway operation failed after retries",
        identifier=identifier,
        error=str(error),
        error_type=type(error).__name__,
    )
    return GATEWAY_FAILURE_SENTINEL


class GatewayRetryClient:
    def __init__(
        self,
        recover: RecoveryCallback = log_gateway_failure,
        *,
        max_attempts: Optional[int] = None,
        policy: Optional[Mapping[str, int | float]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.policy = dict(policy if policy is not None else GATEWAY_RETRY_POLICY)
        self.max_attempts = int(max_attempts if max_attempts is not None else self.policy["max_attempts"])
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        self._recover = recover
        self._sleep = sleep

    async def invoke(
        self,
        operation_name: str,
        operation: Callable[..., Any],
        *args: Any,
        identifier: Any = None,
        deadline_seconds: Optional[float] = None,
        **kwargs: Any,
    ) -> GatewayResult:
        """Run ``operation(*args, **kwargs)`` under the retry policy.

        ``identifier`` is what the recovery callback receives (defaults to the
        first positional argument, e.g. the payment id).
        """
        if identifier is None and args:
            identifier = args[0]
        call = self._invoke(operation_name, operation, args, kwargs, identifier)
        if deadline_seconds is not None:
            return await asyncio.wait_for(call, timeout=deadline_seconds)
        return await call

    async def _invoke(self, operation_name, operation, args, kwargs, identifier) -> GatewayResult:
        attempts = 0
        last_error: GatewayTransportError | None = None
        while attempts < self.max_attempts:
            attempts += 1
            try:
                value = operation(*args, **kwargs)
                if inspect.isawaitable(value):
                    value = await value
            except GatewayTransportError as e:
                last_error = e
                if attempts >= self.max_attempts:
                    break
                delay = compute_backoff_seconds(attempts, policy=self.policy)
                logger.warning(
                    "Gateway call failed; retry scheduled",
                    operation=operation_name,
                    identifier=identifier,
                    attempt=attempts,
                    backoff_seconds=round(delay, 2),
                    error=str(e),
                )
                await self._sleep(delay)
                continue
            if attempts > 1:
                logger.info("Gateway call succeeded after retry", operation=operation_name, identifier=identifier, attempts=attempts)
            return GatewayResult(operation=operation_name, ok=True, value=value, attempts=attempts)

        sentinel = self._recover(last_error, identifier)
        return GatewayResult(
            operation=operation_name,
            ok=False,
            value=sentinel,
            attempts=attempts,
            recovered=True,
            error=last_error,
        )


__all__ = [
    "GATEWAY_FAILURE_SENTINEL",
    "GatewayResult",
    "GatewayRetryClient",
    "RecoveryCallback",
    "log_gateway_failure",
]
