"""Risk analysis Pydantic schemas."""

from pydantic import Field, field_validator

from vericred_gate.schemas.common import CamelModel
from vericred_gate.schemas.delegation import validate_address


class RiskAnalyzeRequest(CamelModel):
    recipient_address: str
    credential_type: str = Field(..., min_length=1)
    issuer_address: str | None = Field(
        None,
        description="Defaults to the authenticated issuer",
    )

    @field_validator("recipient_address")
    @classmethod
    def _check_recipient(cls, v: str) -> str:
        return validate_address(v)

    @field_validator("issuer_address")
    @classmethod
    def _check_issuer(cls, v: str | None) -> str | None:
        return validate_address(v) if v is not None else None


class RiskAnalysisDetail(CamelModel):
    prior_interactions: int
    recipient_history: str
    issuer_reputation: str
    red_flags: list[str]


class RiskAssessmentOut(CamelModel):
    risk_score: int = Field(..., ge=0, le=100)
    risk_level: str
    recommendation: str
    red_flags: list[str]
    source: str
    analysis: RiskAnalysisDetail | None = None


class RiskSummary(CamelModel):
    """Risk fields echoed back with an issuance result."""

    risk_level: str
    risk_score: int
    recommendation: str
