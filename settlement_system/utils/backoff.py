"""Backoff delay computation (fixed, exponential, optional jitter)."""
from __future__ import annotations

import random
from typing import Mapping, Optional

from settlement_system.config import GATEWAY_RETRY_POLICY


def compute_backoff_seconds(
    attempt: int,
    *,
    base: Optional[float] = None,
    factor: Optional[float] = None,
    max_seconds: Optional[float] = None,
    jitter_pct: Optional[float] = None,
    policy: Optional[Mapping[str, int | float]] = None,
) -> float:
    """Delay to wait after failed attempt number ``attempt``.

    ``factor=1`` gives a fixed delay of ``base`` seconds, which is the gateway
    default. Explicit keyword values win over ``policy``.
    """
    policy = policy if policy is not None else GATEWAY_RETRY_POLICY
    if attempt < 1:
        attempt = 1
    base = float(base if base is not None else policy["base_seconds"])
    factor = float(factor if factor is not None else policy["factor"])
    max_seconds = float(max_seconds if max_seconds is not None else policy["max_seconds"])
    jitter_pct = float(jitter_pct if jitter_pct is not None else policy["jitter_pct"])

    delay = base * (factor ** (attempt - 1))
    delay = min(delay, max_seconds)
    if jitter_pct > 0:
        jitter_amount = delay * jitter_pct
        delay = random.uniform(delay - jitter_amount, delay + jitter_amount)
    return max(delay, 0.0)


__all__ = ["compute_backoff_seconds"]
