"""Credential issuance endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from vericred_gate.api.v1.dependencies import ServicesDep, SessionDep, issuer_rate_limit
from vericred_gate.core.errors import GateError, to_http_exception
from vericred_gate.repositories.credential_repo import CredentialRepository
from vericred_gate.schemas.credential import (
    CredentialListResponse,
    IssueCredentialRequest,
    IssueCredentialResponse,
    IssuedCredentialOut,
)
from vericred_gate.schemas.risk import RiskSummary
from vericred_gate.services.auth import AuthenticatedIssuer
from vericred_gate.services.issuance import IssueCredentialCommand
from vericred_gate.services.metadata import gateway_url

router = APIRouter(prefix="/credentials", tags=["credentials"])

IssuanceIssuerDep = Annotated[AuthenticatedIssuer, Depends(issuer_rate_limit("issuance"))]
DefaultIssuerDep = Annotated[AuthenticatedIssuer, Depends(issuer_rate_limit("default"))]


@router.post("/issue", response_model=IssueCredentialResponse)
async def issue_credential(
    payload: IssueCredentialRequest,
    issuer: IssuanceIssuerDep,
    db: SessionDep,
    services: ServicesDep,
) -> IssueCredentialResponse:
    """Mint a credential on behalf of the authenticated issuer.

    Args:
        payload: Recipient, credential type/data and the delegation to use
        issuer: Authenticated, rate-limited issuer identity
        db: Database session
        services: Shared collaborators

    Returns:
        Token id, transaction hash, metadata URI and the risk summary

    Raises:
        HTTPException: 404 when no delegation is found, 403 when it cannot be
            used or the recipient is high risk, 500 when publishing or minting fails
    """
    pipeline = services.issuance_pipeline(db)
    try:
        command = IssueCredentialCommand(
            issuer_address=issuer.address,
            recipient_address=payload.recipient_address,
            credential_type=payload.credential_type,
            credential_data=payload.credential_data,
            recipient_name=payload.recipient_name,
            issuer_name=payload.issuer_name,
            delegation_id=payload.delegation_id,
        )
        result = await pipeline.issue(command)
    except GateError as err:
        raise to_http_exception(err) from err

    fraud_analysis = None
    if result.risk is not None:
        fraud_analysis = RiskSummary(
            risk_level=result.risk.risk_level.value,
            risk_score=result.risk.risk_score,
            recommendation=result.risk.recommendation,
        )
    return IssueCredentialResponse(
        token_id=result.token_id,
        transaction_hash=result.transaction_hash,
        metadata_uri=result.metadata_uri,
        fraud_analysis=fraud_analysis,
    )


@router.get("", response_model=CredentialListResponse)
async def list_credentials(issuer: DefaultIssuerDep, db: SessionDep) -> CredentialListResponse:
    """List credentials issued by the authenticated issuer, newest first."""
    credentials = CredentialRepository(db).list_for_issuer(issuer.address)
    revoked = sum(1 for c in credentials if c.is_revoked)
    return CredentialListResponse(
        credentials=[
            IssuedCredentialOut.model_validate(c).model_copy(
                update={"gateway_url": gateway_url(c.metadata_uri)}
            )
            for c in credentials
        ],
        stats={
            "total_issued": len(credentials),
            "active_credentials": len(credentials) - revoked,
            "revoked_credentials": revoked,
            "unique_recipients": len({c.recipient_address for c in credentials}),
        },
    )
