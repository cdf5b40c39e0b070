"""Data access helpers for issued credentials."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from vericred_gate.core.security import normalize_address
from vericred_gate.models.credential import IssuedCredential

__all__ = ["CredentialRepository"]


class CredentialRepository:
    """Thin wrapper around database access for issued credentials."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def record(self, credential: IssuedCredential) -> IssuedCredential:
        """Persist an issued credential and return it."""
        self.session.add(credential)
        self.session.commit()
        return credential

    def list_for_issuer(self, issuer_address: str) -> list[IssuedCredential]:
        stmt = (
            select(IssuedCredential)
            .where(IssuedCredential.issuer_address == normalize_address(issuer_address))
            .order_by(IssuedCredential.created_at.desc())
        )
        return list(self.session.execute(stmt).scalars())
