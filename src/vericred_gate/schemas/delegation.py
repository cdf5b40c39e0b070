"""Delegation-related Pydantic schemas."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from pydantic import Field, field_validator

from vericred_gate.schemas.common import CamelModel

_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def validate_address(value: str) -> str:
    """Validate a 0x-prefixed 20-byte hex address and lower-case it."""
    if not _ADDRESS_PATTERN.match(value.strip()):
        raise ValueError("Address must be a 0x-prefixed 40 character hex string")
    return value.strip().lower()


class DelegationCreateRequest(CamelModel):
    """Signed delegation submitted by an issuer's wallet."""

    delegation: dict[str, Any] = Field(..., description="Signed delegation object (caveats + signature)")
    smart_account_address: str = Field(..., description="Issuer smart account granting authority")
    max_calls: int | None = Field(None, ge=1, description="Maximum credentials this grant allows")
    expires_at: datetime | None = Field(None, description="Absolute expiry; defaults to 30 days")
    contract_address: str | None = Field(None, description="Credential contract named in the caveats")
    caveats: list[str] = Field(default_factory=list, description="Caveat types applied to the grant")

    @field_validator("smart_account_address")
    @classmethod
    def _check_smart_account(cls, v: str) -> str:
        return validate_address(v)

    @field_validator("contract_address")
    @classmethod
    def _check_contract(cls, v: str | None) -> str | None:
        return validate_address(v) if v is not None else None

    @field_validator("delegation")
    @classmethod
    def _require_signature(cls, v: dict[str, Any]) -> dict[str, Any]:
        if not v.get("signature"):
            raise ValueError("Delegation must be signed")
        return v


class DelegationCreateResponse(CamelModel):
    success: bool = True
    delegation_id: str
    message: str = "Delegation stored successfully"


class DelegationSummary(CamelModel):
    """Dashboard projection of a delegation.

    The signed delegation object is deliberately absent.
    """

    id: str
    issuer_address: str
    smart_account_address: str
    backend_address: str
    max_calls: int
    calls_used: int
    created_at: datetime
    expires_at: datetime
    is_revoked: bool
    revoked_at: datetime | None = None


class DelegationListResponse(CamelModel):
    delegations: list[DelegationSummary]
    count: int


class DelegationRevokeRequest(CamelModel):
    reason: str | None = Field(None, max_length=500)


class DelegationRevokeAllResponse(CamelModel):
    success: bool = True
    revoked: int


class DelegationUsageStats(CamelModel):
    calls_used: int
    max_calls: int
    calls_remaining: int
    percent_used: float


class DelegationStatus(CamelModel):
    """Public validity check for a delegation."""

    valid: bool
    reason: str | None = None
