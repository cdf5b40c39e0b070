# src/vericred_gate/models/delegation.py
"""SQLAlchemy model for delegation grants from issuers to the backend signer."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vericred_gate.db.session import Base
from vericred_gate.db.time import utcnow
from vericred_gate.db.types import UTCDateTime


def _new_delegation_id() -> str:
    return uuid.uuid4().hex


class Delegation(Base):
    """A signed, caveat-bound grant of limited minting authority.

    Rows are never deleted; revoked and exhausted grants are retained for audit.
    """

    __tablename__ = "delegation"
    __table_args__ = (
        Index("ix_delegation_active_lookup", "issuer_address", "is_revoked", "expires_at"),
        CheckConstraint("calls_used <= max_calls", name="ck_delegation_calls_within_max"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_delegation_id)
    issuer_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    smart_account_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    backend_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    # Signed delegation (caveats + signature) exactly as produced by the issuer's wallet.
    delegation_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    contract_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    caveats: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    max_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    calls_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)

    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    revoked_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def calls_remaining(self) -> int:
        """Return how many reservations are still available."""
        return max(self.max_calls - self.calls_used, 0)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Return True once the grant's expiry has passed."""
        return (now or utcnow()) >= self.expires_at

    def is_usable(self, now: datetime | None = None) -> bool:
        """Return True if the grant is not revoked, not expired and has quota left."""
        return (
            not self.is_revoked
            and not self.is_expired(now)
            and self.calls_used < self.max_calls
        )
