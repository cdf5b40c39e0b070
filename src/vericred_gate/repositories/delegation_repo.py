"""Data access for delegation grants.

Every lifecycle mutation is a single conditional UPDATE so that concurrent
requests sharing a delegation are linearized by the database rather than by
in-process locks.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from vericred_gate.core.security import normalize_address
from vericred_gate.core.settings import settings
from vericred_gate.db.time import ensure_utc, utcnow
from vericred_gate.models.delegation import Delegation

__all__ = ["DelegationGrant", "DelegationRepository", "UsageStats"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DelegationGrant:
    """Input for :meth:`DelegationRepository.create`."""

    issuer_address: str
    smart_account_address: str
    backend_address: str
    delegation_payload: dict[str, Any]
    max_calls: int | None = None
    expires_at: datetime | None = None
    contract_address: str | None = None
    caveats: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class UsageStats:
    calls_used: int
    max_calls: int
    calls_remaining: int
    percent_used: float


def _usable_clause(now: datetime) -> tuple[Any, ...]:
    return (
        Delegation.is_revoked.is_(False),
        Delegation.expires_at > now,
        Delegation.calls_used < Delegation.max_calls,
    )


class DelegationRepository:
    """Thin wrapper around database access for delegation entities."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def create(self, grant: DelegationGrant) -> Delegation:
        """Insert a new delegation with zero usage and normalized addresses.

        `max_calls` defaults to the configured ceiling (100) and `expires_at`
        to 30 days from now when the grant leaves them unset.
        """
        now = utcnow()
        if grant.expires_at is not None:
            expires_at = ensure_utc(grant.expires_at)
        else:
            expires_at = now + timedelta(days=settings.delegation_default_ttl_days)
        delegation = Delegation(
            issuer_address=normalize_address(grant.issuer_address),
            smart_account_address=normalize_address(grant.smart_account_address),
            backend_address=normalize_address(grant.backend_address),
            delegation_payload=grant.delegation_payload,
            contract_address=(
                normalize_address(grant.contract_address) if grant.contract_address else None
            ),
            caveats=list(grant.caveats),
            max_calls=grant.max_calls or settings.delegation_default_max_calls,
            calls_used=0,
            created_at=now,
            expires_at=expires_at,
            is_revoked=False,
        )
        self.session.add(delegation)
        self.session.commit()
        logger.info(
            "Stored delegation %s for issuer %s (max_calls=%d, expires_at=%s)",
            delegation.id,
            delegation.issuer_address,
            delegation.max_calls,
            delegation.expires_at.isoformat(),
        )
        return delegation

    def find_by_id(self, delegation_id: str) -> Delegation | None:
        """Return a delegation by identifier."""
        return self.session.get(Delegation, delegation_id)

    def find_active_by_issuer(self, issuer_address: str) -> Delegation | None:
        """Return the issuer's most recently created usable delegation, if any."""
        now = utcnow()
        stmt = (
            select(Delegation)
            .where(
                Delegation.issuer_address == normalize_address(issuer_address),
                *_usable_clause(now),
            )
            .order_by(Delegation.created_at.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalars().first()

    def has_exhausted_delegation(self, issuer_address: str) -> bool:
        """True if the issuer holds a live delegation with no calls left."""
        now = utcnow()
        stmt = (
            select(Delegation.id)
            .where(
                Delegation.issuer_address == normalize_address(issuer_address),
                Delegation.is_revoked.is_(False),
                Delegation.expires_at > now,
                Delegation.calls_used >= Delegation.max_calls,
            )
            .limit(1)
        )
        return self.session.execute(stmt).first() is not None

    def increment_call_count(self, delegation_id: str) -> bool:
        """Reserve one call against a delegation.

        Returns True only if the delegation was usable and `calls_used` was
        incremented. Returns False without mutating anything when it is
        revoked, expired, at its cap, or missing.
        """
        now = utcnow()
        stmt = (
            update(Delegation)
            .where(Delegation.id == delegation_id, *_usable_clause(now))
            .values(calls_used=Delegation.calls_used + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        reserved = result.rowcount == 1
        if not reserved:
            logger.info("Reservation refused for delegation %s", delegation_id)
        return reserved

    def revoke(self, delegation_id: str, reason: str | None = None) -> Delegation | None:
        """Revoke a delegation; revoking twice is a successful no-op.

        Returns the delegation, or None if it does not exist.
        """
        stmt = (
            update(Delegation)
            .where(Delegation.id == delegation_id, Delegation.is_revoked.is_(False))
            .values(is_revoked=True, revoked_at=utcnow(), revoked_reason=reason)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        if result.rowcount:
            logger.info("Revoked delegation %s", delegation_id)
        delegation = self.session.get(Delegation, delegation_id, populate_existing=True)
        return delegation

    def revoke_all_for_issuer(self, issuer_address: str, reason: str = "Revoked by issuer") -> int:
        """Revoke every outstanding delegation for an issuer and return the count."""
        stmt = (
            update(Delegation)
            .where(
                Delegation.issuer_address == normalize_address(issuer_address),
                Delegation.is_revoked.is_(False),
            )
            .values(is_revoked=True, revoked_at=utcnow(), revoked_reason=reason)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return int(result.rowcount or 0)

    def list_for_issuer(
        self,
        issuer_address: str,
        include_revoked: bool = False,
        smart_account_address: str | None = None,
    ) -> list[Delegation]:
        """Return an issuer's delegations, newest first."""
        stmt = select(Delegation).where(
            Delegation.issuer_address == normalize_address(issuer_address)
        )
        if not include_revoked:
            stmt = stmt.where(Delegation.is_revoked.is_(False))
        if smart_account_address:
            stmt = stmt.where(
                Delegation.smart_account_address == normalize_address(smart_account_address)
            )
        stmt = stmt.order_by(Delegation.created_at.desc())
        return list(self.session.execute(stmt).scalars())

    def usage_stats(self, delegation_id: str) -> UsageStats | None:
        delegation = self.find_by_id(delegation_id)
        if delegation is None:
            return None
        return UsageStats(
            calls_used=delegation.calls_used,
            max_calls=delegation.max_calls,
            calls_remaining=delegation.calls_remaining,
            percent_used=(delegation.calls_used / delegation.max_calls) * 100,
        )

    def check_validity(self, delegation_id: str) -> tuple[bool, str | None]:
        """Return `(valid, reason)` describing whether a delegation can be used."""
        delegation = self.find_by_id(delegation_id)
        if delegation is None:
            return False, "Delegation not found"
        if delegation.is_revoked:
            return False, "Delegation revoked"
        if delegation.is_expired():
            return False, "Delegation expired"
        if delegation.calls_used >= delegation.max_calls:
            return False, "Call limit reached"
        return True, None
