"""Short-lived cache for risk assessments."""

from __future__ import annotations

import json
import logging
import time
from threading import Lock
from typing import Any

import redis

from vericred_gate.core.security import normalize_address
from vericred_gate.core.settings import settings

logger = logging.getLogger(__name__)


def cache_key(recipient_address: str, issuer_address: str, credential_type: str) -> str:
    return (
        f"risk:{normalize_address(recipient_address)}:"
        f"{normalize_address(issuer_address)}:{credential_type}"
    )


class RiskAssessmentCache:
    """Store serialized assessments in Redis, or in process when Redis is absent.

    A Redis failure drops the instance back to its local cache for the rest of
    its lifetime.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        ttl_seconds: int | None = None,
        client: Any = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds or settings.risk_cache_ttl_seconds
        self._redis = client
        url = redis_url if redis_url is not None else settings.redis_url
        if self._redis is None and url:
            try:
                self._redis = redis.from_url(url)  # type: ignore[no-untyped-call]
            except (redis.RedisError, ValueError) as err:
                logger.warning("Redis unavailable for risk cache: %s", err)
                self._redis = None
        self._local: dict[str, tuple[float, str]] = {}
        self._lock = Lock()

    @property
    def backend(self) -> str:
        return "redis" if self._redis is not None else "memory"

    def get(self, key: str) -> dict[str, Any] | None:
        raw: str | bytes | None = None
        if self._redis is not None:
            try:
                raw = self._redis.get(key)
            except redis.RedisError as err:
                logger.warning("Risk cache read failed, using local cache: %s", err)
                self._redis = None
        if self._redis is None:
            with self._lock:
                entry = self._local.get(key)
                if entry is not None and entry[0] < time.monotonic():
                    self._local.pop(key, None)
                    entry = None
            raw = entry[1] if entry else None
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable cached assessment for %s", key)
            return None
        return value if isinstance(value, dict) else None

    def set(self, key: str, value: dict[str, Any]) -> None:
        payload = json.dumps(value)
        if self._redis is not None:
            try:
                self._redis.set(key, payload, ex=int(self.ttl_seconds))
                return
            except redis.RedisError as err:
                logger.warning("Risk cache write failed, using local cache: %s", err)
                self._redis = None
        now = time.monotonic()
        with self._lock:
            self._purge_expired_locked(now)
            self._local[key] = (now + self.ttl_seconds, payload)

    def _purge_expired_locked(self, now: float) -> None:
        expired = [k for k, (expires_at, _) in self._local.items() if expires_at < now]
        for k in expired:
            del self._local[k]

    def clear(self) -> None:
        with self._lock:
            self._local.clear()

    def close(self) -> None:
        if self._redis is not None:
            try:
                self._redis.close()
            except redis.RedisError:  # pragma: no cover - best effort on shutdown
                logger.debug("Ignoring error while closing redis client")
            self._redis = None
