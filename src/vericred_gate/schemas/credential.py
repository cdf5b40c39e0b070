"""Credential issuance Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field, field_validator

from vericred_gate.schemas.common import CamelModel
from vericred_gate.schemas.delegation import validate_address
from vericred_gate.schemas.risk import RiskSummary

AUTO_DELEGATION = "auto"


class IssueCredentialRequest(CamelModel):
    """Inbound issuance request.

    `delegation_id` may name a delegation explicitly or be "auto" (or omitted)
    to use the issuer's current usable delegation.
    """

    recipient_address: str = Field(..., description="Holder receiving the credential")
    credential_type: str = Field(..., min_length=1, max_length=200)
    credential_data: dict[str, Any] = Field(..., description="Credential payload")
    recipient_name: str | None = Field(None, max_length=200)
    issuer_name: str | None = Field(None, max_length=200)
    delegation_id: str | None = Field(None, description='Delegation id or "auto"')

    @field_validator("recipient_address")
    @classmethod
    def _check_recipient(cls, v: str) -> str:
        return validate_address(v)

    @field_validator("credential_data")
    @classmethod
    def _require_data(cls, v: dict[str, Any]) -> dict[str, Any]:
        if not v:
            raise ValueError("credentialData must not be empty")
        return v


class IssueCredentialResponse(CamelModel):
    success: bool = True
    token_id: str
    transaction_hash: str
    metadata_uri: str = Field(..., alias="metadataURI")
    fraud_analysis: RiskSummary | None = None


class IssuedCredentialOut(CamelModel):
    token_id: str
    transaction_hash: str
    recipient_address: str
    recipient_name: str
    issuer_address: str
    issuer_name: str
    credential_type: str
    credential_data: dict[str, Any]
    metadata_uri: str = Field(..., alias="metadataURI")
    delegation_id: str
    gateway_url: str | None = Field(None, alias="gatewayURL")
    risk_level: str | None = None
    risk_score: int | None = None
    is_revoked: bool
    created_at: datetime


class CredentialStats(CamelModel):
    total_issued: int
    active_credentials: int
    revoked_credentials: int
    unique_recipients: int


class CredentialListResponse(CamelModel):
    credentials: list[IssuedCredentialOut]
    stats: CredentialStats
