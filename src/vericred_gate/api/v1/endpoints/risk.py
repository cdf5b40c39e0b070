"""Fraud risk analysis endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from vericred_gate.api.v1.dependencies import ServicesDep, issuer_rate_limit
from vericred_gate.schemas.risk import RiskAnalysisDetail, RiskAnalyzeRequest, RiskAssessmentOut
from vericred_gate.services.auth import AuthenticatedIssuer

router = APIRouter(prefix="/risk", tags=["risk"])

AnalysisIssuerDep = Annotated[AuthenticatedIssuer, Depends(issuer_rate_limit("ai_analysis"))]


@router.post("/analyze", response_model=RiskAssessmentOut)
async def analyze_risk(
    payload: RiskAnalyzeRequest,
    issuer: AnalysisIssuerDep,
    services: ServicesDep,
) -> RiskAssessmentOut:
    """Preview the fraud assessment for a prospective issuance.

    The issuer defaults to the authenticated caller. No delegation usage is
    consumed.
    """
    issuer_address = payload.issuer_address or issuer.address
    assessment = await services.risk_gate.assess(
        payload.recipient_address,
        issuer_address,
        payload.credential_type,
    )
    analysis = None
    if assessment.analysis:
        analysis = RiskAnalysisDetail.model_validate(assessment.analysis)
    return RiskAssessmentOut(
        risk_score=assessment.risk_score,
        risk_level=assessment.risk_level.value,
        recommendation=assessment.recommendation,
        red_flags=assessment.red_flags,
        source=assessment.source,
        analysis=analysis,
    )
