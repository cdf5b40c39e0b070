"""Sliding-window rate limiting backed by the shared database."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Final

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from vericred_gate.core.security import normalize_address
from vericred_gate.core.settings import settings
from vericred_gate.db.time import utcnow
from vericred_gate.models.rate_limit import RateLimitEntry

logger = logging.getLogger(__name__)

# Insert races are resolved by re-running the conditional updates.
_MAX_ATTEMPTS: Final[int] = 3


@dataclass(frozen=True)
class RateLimitPolicy:
    """Request ceiling for an endpoint class."""

    name: str
    max_requests: int
    window: timedelta


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime


def get_policy(name: str) -> RateLimitPolicy:
    """Return the configured policy for an endpoint class, or the default one."""
    policies = settings.rate_limit_policies
    max_requests = policies.get(name, policies["default"])
    return RateLimitPolicy(
        name=name if name in policies else "default",
        max_requests=max_requests,
        window=timedelta(seconds=settings.rate_limit_window_seconds),
    )


def address_key(address: str) -> str:
    return f"address:{normalize_address(address)}"


def ip_key(ip: str) -> str:
    return f"ip:{ip}"


def endpoint_key(address: str, endpoint: str) -> str:
    return f"endpoint:{normalize_address(address)}:{endpoint}"


class RateLimiter:
    """Per-key request counter with reset-on-expiry windows.

    Every transition is a single conditional statement so that two callers
    racing for a key's last slot cannot both be admitted. If the backing
    store is unreachable the limiter fails open.
    """

    def __init__(
        self,
        session: Session,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session = session
        self._clock = clock

    def check_limit(self, key: str, max_requests: int, window: timedelta) -> RateLimitResult:
        """Count one request against `key` and report whether it is allowed."""
        now = self._clock()
        try:
            return self._check(key, max_requests, window, now)
        except SQLAlchemyError as err:
            self.session.rollback()
            logger.warning("Rate limiter store unavailable, allowing request for %s: %s", key, err)
            return RateLimitResult(
                allowed=True,
                remaining=max(max_requests - 1, 0),
                reset_at=now + window,
            )

    def check_policy(self, key: str, policy: RateLimitPolicy) -> RateLimitResult:
        return self.check_limit(key, policy.max_requests, policy.window)

    def _check(
        self,
        key: str,
        max_requests: int,
        window: timedelta,
        now: datetime,
    ) -> RateLimitResult:
        for _ in range(_MAX_ATTEMPTS):
            # Active window with headroom: count one more.
            result = self.session.execute(
                update(RateLimitEntry)
                .where(
                    RateLimitEntry.key == key,
                    RateLimitEntry.reset_at > now,
                    RateLimitEntry.count < max_requests,
                )
                .values(count=RateLimitEntry.count + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                current = self._load(key)
                self.session.commit()
                if current is None:  # pragma: no cover - deleted concurrently
                    return RateLimitResult(True, max_requests - 1, now + window)
                count, entry_reset_at = current
                return RateLimitResult(
                    allowed=True,
                    remaining=max(max_requests - count, 0),
                    reset_at=entry_reset_at,
                )

            # Elapsed window: start a fresh one at count=1.
            reset_at = now + window
            result = self.session.execute(
                update(RateLimitEntry)
                .where(RateLimitEntry.key == key, RateLimitEntry.reset_at <= now)
                .values(count=1, reset_at=reset_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self.session.commit()
                return RateLimitResult(
                    allowed=True,
                    remaining=max_requests - 1,
                    reset_at=reset_at,
                )

            current = self._load(key)
            if current is not None:
                self.session.commit()
                if current[1] <= now:
                    # Window rolled over between statements.
                    continue
                # Active window at its ceiling.
                return RateLimitResult(allowed=False, remaining=0, reset_at=current[1])

            try:
                self.session.execute(
                    insert(RateLimitEntry).values(key=key, count=1, reset_at=reset_at)
                )
                self.session.commit()
            except IntegrityError:
                # Another caller created the entry first; re-evaluate against it.
                self.session.rollback()
                continue
            return RateLimitResult(allowed=True, remaining=max_requests - 1, reset_at=reset_at)

        logger.warning("Rate limiter contention on %s, allowing request", key)
        return RateLimitResult(
            allowed=True,
            remaining=max(max_requests - 1, 0),
            reset_at=now + window,
        )

    def _load(self, key: str) -> tuple[int, datetime] | None:
        stmt = select(RateLimitEntry.count, RateLimitEntry.reset_at).where(
            RateLimitEntry.key == key
        )
        row = self.session.execute(stmt).first()
        if row is None:
            return None
        return int(row[0]), row[1]

    def clear(self, key: str) -> None:
        """Forget the counter for `key`."""
        self.session.execute(delete(RateLimitEntry).where(RateLimitEntry.key == key))
        self.session.commit()

    def purge_expired(self) -> int:
        """Delete entries whose window has elapsed and return how many were removed."""
        result = self.session.execute(
            delete(RateLimitEntry).where(RateLimitEntry.reset_at < self._clock())
        )
        self.session.commit()
        removed = int(result.rowcount or 0)
        if removed:
            logger.debug("Purged %d expired rate limit entries", removed)
        return removed
