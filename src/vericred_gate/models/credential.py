# src/vericred_gate/models/credential.py
"""Record of credentials minted through a delegation."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, ForeignKey, Integer, SmallInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vericred_gate.db.session import Base
from vericred_gate.db.time import utcnow
from vericred_gate.db.types import UTCDateTime


class IssuedCredential(Base):
    """Issued credential kept for issuer and holder dashboards."""

    __tablename__ = "issued_credential"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    token_id: Mapped[str] = mapped_column(String(78), nullable=False, index=True)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False, unique=True)
    recipient_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    recipient_name: Mapped[str] = mapped_column(Text, nullable=False)
    issuer_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    issuer_name: Mapped[str] = mapped_column(Text, nullable=False)
    credential_type: Mapped[str] = mapped_column(Text, nullable=False)
    credential_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    metadata_uri: Mapped[str] = mapped_column(Text, nullable=False)
    delegation_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("delegation.id"),
        nullable=False,
    )
    # Snapshot of the fraud analysis at issuance time, if one was available.
    risk_level: Mapped[str | None] = mapped_column(String(8), nullable=True)
    risk_score: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    recommendation: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_revoked: Mapped[bool] = mapped_column(default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
