"""Delegation lifecycle endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from vericred_gate.api.v1.dependencies import (
    ServicesDep,
    SessionDep,
    ip_rate_limit,
    issuer_rate_limit,
)
from vericred_gate.core.errors import Forbidden, NotFound, to_http_exception
from vericred_gate.core.settings import settings
from vericred_gate.models.delegation import Delegation
from vericred_gate.repositories.delegation_repo import DelegationGrant, DelegationRepository
from vericred_gate.schemas.delegation import (
    DelegationCreateRequest,
    DelegationCreateResponse,
    DelegationListResponse,
    DelegationRevokeAllResponse,
    DelegationRevokeRequest,
    DelegationStatus,
    DelegationSummary,
    DelegationUsageStats,
    validate_address,
)
from vericred_gate.services.auth import AuthenticatedIssuer
from vericred_gate.services.chain import ChainSubmissionError, Web3ChainSubmitter
from vericred_gate.services.container import ServiceContainer
from vericred_gate.services.rate_limiter import RateLimitResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/delegations", tags=["delegations"])

IssuerDep = Annotated[AuthenticatedIssuer, Depends(issuer_rate_limit("default"))]
VerificationLimitDep = Annotated[RateLimitResult, Depends(ip_rate_limit("verification"))]


def _backend_address(services: ServiceContainer) -> str:
    if settings.backend_delegation_address:
        return settings.backend_delegation_address
    if isinstance(services.chain, Web3ChainSubmitter):
        try:
            return services.chain.address
        except ChainSubmissionError:
            pass
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": "CONFIGURATION_ERROR", "message": "Backend delegation address not configured"},
    )


def _owned_delegation(
    repo: DelegationRepository,
    delegation_id: str,
    issuer: AuthenticatedIssuer,
) -> Delegation:
    delegation = repo.find_by_id(delegation_id)
    if delegation is None:
        raise to_http_exception(NotFound("Delegation not found"))
    if delegation.issuer_address != issuer.address:
        raise to_http_exception(Forbidden("Delegation does not belong to this issuer"))
    return delegation


@router.post("", response_model=DelegationCreateResponse)
async def create_delegation(
    payload: DelegationCreateRequest,
    issuer: IssuerDep,
    db: SessionDep,
    services: ServicesDep,
) -> DelegationCreateResponse:
    """Store a signed delegation from the issuer's smart account to the backend.

    Args:
        payload: Signed delegation plus its limits
        issuer: Authenticated issuer identity
        db: Database session
        services: Shared collaborators

    Returns:
        The identifier assigned to the stored delegation
    """
    delegation = DelegationRepository(db).create(
        DelegationGrant(
            issuer_address=issuer.address,
            smart_account_address=payload.smart_account_address,
            backend_address=_backend_address(services),
            delegation_payload=payload.delegation,
            max_calls=payload.max_calls,
            expires_at=payload.expires_at,
            contract_address=payload.contract_address,
            caveats=payload.caveats,
        )
    )
    return DelegationCreateResponse(delegation_id=delegation.id)


@router.get("", response_model=DelegationListResponse)
async def list_delegations(
    issuer: IssuerDep,
    db: SessionDep,
    include_revoked: Annotated[bool, Query(alias="includeRevoked")] = False,
    smart_account_address: Annotated[str | None, Query(alias="smartAccountAddress")] = None,
) -> DelegationListResponse:
    """List the caller's delegations without their signed payloads."""
    if smart_account_address is not None:
        try:
            smart_account_address = validate_address(smart_account_address)
        except ValueError as err:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "VALIDATION_ERROR", "message": str(err)},
            ) from err
    delegations = DelegationRepository(db).list_for_issuer(
        issuer.address,
        include_revoked=include_revoked,
        smart_account_address=smart_account_address,
    )
    summaries = [DelegationSummary.model_validate(d) for d in delegations]
    return DelegationListResponse(delegations=summaries, count=len(summaries))


@router.post("/revoke-all", response_model=DelegationRevokeAllResponse)
async def revoke_all_delegations(
    issuer: IssuerDep,
    db: SessionDep,
    payload: DelegationRevokeRequest | None = None,
) -> DelegationRevokeAllResponse:
    """Revoke every outstanding delegation held for the caller."""
    reason = (payload.reason if payload else None) or "Revoked by issuer"
    revoked = DelegationRepository(db).revoke_all_for_issuer(issuer.address, reason)
    logger.info("Issuer %s revoked %d delegations", issuer.address, revoked)
    return DelegationRevokeAllResponse(revoked=revoked)


@router.post("/{delegation_id}/revoke", response_model=DelegationSummary)
async def revoke_delegation(
    delegation_id: str,
    issuer: IssuerDep,
    db: SessionDep,
    payload: DelegationRevokeRequest | None = None,
) -> DelegationSummary:
    """Revoke one of the caller's delegations. Revoking twice is not an error."""
    repo = DelegationRepository(db)
    _owned_delegation(repo, delegation_id, issuer)
    delegation = repo.revoke(delegation_id, payload.reason if payload else None)
    if delegation is None:  # pragma: no cover - existence checked above
        raise to_http_exception(NotFound("Delegation not found"))
    return DelegationSummary.model_validate(delegation)


@router.get("/{delegation_id}/usage", response_model=DelegationUsageStats)
async def get_delegation_usage(
    delegation_id: str,
    issuer: IssuerDep,
    db: SessionDep,
) -> DelegationUsageStats:
    """Return how much of a delegation's call allowance has been consumed."""
    repo = DelegationRepository(db)
    _owned_delegation(repo, delegation_id, issuer)
    stats = repo.usage_stats(delegation_id)
    if stats is None:  # pragma: no cover - existence checked above
        raise to_http_exception(NotFound("Delegation not found"))
    return DelegationUsageStats(
        calls_used=stats.calls_used,
        max_calls=stats.max_calls,
        calls_remaining=stats.calls_remaining,
        percent_used=stats.percent_used,
    )


@router.get("/{delegation_id}/status", response_model=DelegationStatus)
async def get_delegation_status(
    delegation_id: str,
    _limit: VerificationLimitDep,
    db: SessionDep,
) -> DelegationStatus:
    """Report whether a delegation can currently be used. No authentication required."""
    valid, reason = DelegationRepository(db).check_validity(delegation_id)
    return DelegationStatus(valid=valid, reason=reason)
