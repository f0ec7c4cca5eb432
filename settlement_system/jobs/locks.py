"""Cluster-wide lease locks for scheduled jobs.

A lock is keyed by job name and carries a lease: a holder that crashes stops
blocking the job once its lease runs out. Acquisition never waits; a caller
that loses simply gets ``None`` back and skips its tick.

Backends:
 1. RedisLockService - ``SET key token NX PX lease``; release is a Lua
    compare-and-delete so an instance can only free its own token.
 2. SqlLockService - one row per job name in ``scheduler_locks``
    (insert, or take over a row whose ``lock_until`` has passed).
 3. InMemoryLockService - process-local; for single-instance setups and tests.

Release is token-checked everywhere: releasing after the lease expired and
another instance took over is a no-op that returns False.
"""
from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

import redis
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement_system.config import LOCK_SETTINGS
from settlement_system.models.db.scheduler_locks import SchedulerLock
from settlement_system.utils import get_logger
from settlement_system.utils.observability import instance_id
from settlement_system.utils.time import utc_now

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class LockToken:
    name: str
    value: str
    acquired_at: datetime
    lease_seconds: float

    @property
    def expires_at(self) -> datetime:
        return self.acquired_at + timedelta(seconds=self.lease_seconds)


class LockService(Protocol):
    def acquire(self, name: str, lease_seconds: float) -> Optional[LockToken]: ...
    def release(self, token: LockToken) -> bool: ...


def _new_token(name: str, lease_seconds: float, now: datetime) -> LockToken:
    return LockToken(name=name, value=str(uuid.uuid4()), acquired_at=now, lease_seconds=float(lease_seconds))


class InMemoryLockService:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._held: dict[str, tuple[str, float]] = {}  # name -> (token value, expires_at monotonic)

    def acquire(self, name: str, lease_seconds: float) -> Optional[LockToken]:
        with self._lock:
            now = self._clock()
            current = self._held.get(name)
            if current is not None and current[1] > now:
                return None
            token = _new_token(name, lease_seconds, utc_now())
            self._held[name] = (token.value, now + lease_seconds)
            return token

    def release(self, token: LockToken) -> bool:
        with self._lock:
            current = self._held.get(token.name)
            if current is None or current[0] != token.value:
                return False
            del self._held[token.name]
            return True

    def is_locked(self, name: str) -> bool:
        with self._lock:
            current = self._held.get(name)
            return current is not None and current[1] > self._clock()


class RedisLockService:
    RELEASE_SCRIPT = (
        "if redis.call('get', KEYS[1]) == ARGV[1] then "
        "return redis.call('del', KEYS[1]) "
        "else return 0 end"
    )

    def __init__(self, client: Optional[redis.Redis] = None, *, redis_url: Optional[str] = None, key_prefix: Optional[str] = None):
        self._redis_url = str(redis_url or LOCK_SETTINGS.get("redis_url", "redis://localhost:6379/0"))
        self._key_prefix = str(key_prefix or LOCK_SETTINGS.get("redis_key_prefix", "settlement:lock:"))
        timeout = float(LOCK_SETTINGS.get("redis_health_check_timeout", 2.0))  # type: ignore[arg-type]
        self._client = client if client is not None else redis.from_url(self._redis_url, socket_connect_timeout=timeout)

    def _key(self, name: str) -> str:
        return f"{self._key_prefix}{name}"

    def health_check(self) -> bool:
        try:
            self._client.ping()
            return True
        except (redis.RedisError, ConnectionError) as e:
            logger.warning("Redis lock backend unavailable", url=self._redis_url, error=str(e))
            return False

    def acquire(self, name: str, lease_seconds: float) -> Optional[LockToken]:
        token = _new_token(name, lease_seconds, utc_now())
        acquired = self._client.set(self._key(name), token.value, nx=True, px=int(lease_seconds * 1000))
        return token if acquired else None

    def release(self, token: LockToken) -> bool:
        deleted = self._client.eval(self.RELEASE_SCRIPT, 1, self._key(token.name), token.value)
        return bool(deleted)


class SqlLockService:
    def __init__(self, session_factory: Callable[[], Session], *, clock: Callable[[], datetime] = utc_now, owner: Optional[str] = None):
        self._session_factory = session_factory
        self._clock = clock
        self._owner = owner or instance_id()

    def acquire(self, name: str, lease_seconds: float) -> Optional[LockToken]:
        now = self._clock()
        token = _new_token(name, lease_seconds, now)
        session = self._session_factory()
        try:
            # Take over an expired lease first
            result = session.execute(
                update(SchedulerLock)
                .where(SchedulerLock.name == name, SchedulerLock.lock_until <= now)
                .values(lock_until=token.expires_at, locked_at=now, locked_by=self._owner, token=token.value)
            )
            if result.rowcount == 1:
                session.commit()
                return token
            session.add(
                SchedulerLock(name=name, lock_until=token.expires_at, locked_at=now, locked_by=self._owner, token=token.value)
            )
            try:
                session.commit()
            except IntegrityError:
                # Row exists and its lease is still live
                session.rollback()
                return None
            return token
        finally:
            session.close()

    def release(self, token: LockToken) -> bool:
        session = self._session_factory()
        try:
            result = session.execute(
                delete(SchedulerLock).where(SchedulerLock.name == token.name, SchedulerLock.token == token.value)
            )
            session.commit()
            return result.rowcount == 1
        finally:
            session.close()


def create_lock_service(session_factory: Callable[[], Session]) -> LockService:
    """Build the configured lock backend.

    An unreachable Redis falls back to the SQL backend, which is still shared
    by every instance that points at the same database.
    """
    backend = str(LOCK_SETTINGS.get("backend", "sql")).lower()
    if backend == "redis":
        try:
            service = RedisLockService()
            if service.health_check():
                logger.info("Using Redis lock backend")
                return service
            logger.warning("Redis lock backend unreachable; falling back to SQL lock backend")
        except (redis.RedisError, ValueError) as e:
            logger.warning("Error initializing Redis lock backend; falling back to SQL lock backend", error=str(e))
        return SqlLockService(session_factory)
    if backend == "memory":
        logger.warning("Using in-memory lock backend; only safe with a single instance")
        return InMemoryLockService()
    logger.info("Using SQL lock backend")
    return SqlLockService(session_factory)


__all__ = [
    "LockToken",
    "LockService",
    "InMemoryLockService",
    "RedisLockService",
    "SqlLockService",
    "create_lock_service",
]
