"""Core application configuration & tunable settlement rules.

Everything that may need tuning per deployment (job identity, settlement
timezone, scheduler cadence, lock lease, gateway retry policy) is centralized
here as module constants. Values come from environment variables with
defaults; tests monkeypatch the dicts directly.

The scheduler cadence (how often a tick fires) is deliberately separate from
the business window: every run settles the previous full calendar day, no
matter how often ticks fire.
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: str) -> bool:
	return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# ------------------------------- Settlement ------------------------------- #
SETTLEMENT_SETTINGS: dict[str, str | bool | int] = {
	# Cluster-wide lock name; every instance must use the same value.
	"job_name": os.getenv("SETTLEMENT_JOB_NAME", "ScheduledTask_run"),
	# Only payments in this status are settled.
	"payment_status": "paid",
	# Calendar used to decide what "yesterday" means.
	"timezone": os.getenv("SETTLEMENT_TIMEZONE", "UTC"),
	# Upsert on (partner_id, settlement_date) so a re-run of the same day is safe.
	"upsert": _env_bool("SETTLEMENT_UPSERT", "true"),
	# >1 switches the writer to the chunked thread-pool path.
	"parallel_workers": int(os.getenv("SETTLEMENT_PARALLEL_WORKERS", "1")),
}

# -------------------------------- Scheduler ------------------------------- #
SCHEDULER_SETTINGS: dict[str, bool | int] = {
	"enabled": _env_bool("SCHEDULER_ENABLED", "true"),
	"tick_interval_seconds": int(os.getenv("SCHEDULER_TICK_SECONDS", "60")),
	# Must exceed the longest expected run; an expired lease is reclaimable.
	"lock_lease_seconds": int(os.getenv("SCHEDULER_LOCK_LEASE_SECONDS", "600")),
}

# ---------------------------------- Locks --------------------------------- #
LOCK_SETTINGS: dict[str, str | float] = {
	# redis | sql | memory. "memory" is only safe for a single instance.
	"backend": os.getenv("LOCK_BACKEND", "sql"),
	"redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
	"redis_key_prefix": "settlement:lock:",
	"redis_health_check_timeout": 2.0,
}

# --------------------------------- Gateway -------------------------------- #
GATEWAY_SETTINGS: dict[str, str | float | None] = {
	"base_url": os.getenv("PAYMENT_GATEWAY_BASE_URL", "https://api.iamport.kr"),
	"imp_key": os.getenv("PAYMENT_IMP_KEY") or None,
	"imp_secret": os.getenv("PAYMENT_IMP_SECRET") or None,
	"timeout_seconds": float(os.getenv("PAYMENT_GATEWAY_TIMEOUT", "10")),
}

# ------------------------------ Gateway Retry ----------------------------- #
# 1 initial call + 1 retry, fixed 1s wait between them.
GATEWAY_RETRY_POLICY: dict[str, int | float] = {
	"max_attempts": 2,
	"base_seconds": 1,
	"factor": 1,
	"max_seconds": 1,
	"jitter_pct": 0.0,
}

__all__ = [
	"SETTLEMENT_SETTINGS",
	"SCHEDULER_SETTINGS",
	"LOCK_SETTINGS",
	"GATEWAY_SETTINGS",
	"GATEWAY_RETRY_POLICY",
]
