"""Pydantic schemas for API requests and responses."""

from .credential import (
    CredentialListResponse,
    IssueCredentialRequest,
    IssueCredentialResponse,
    IssuedCredentialOut,
)
from .delegation import (
    DelegationCreateRequest,
    DelegationCreateResponse,
    DelegationListResponse,
    DelegationRevokeAllResponse,
    DelegationRevokeRequest,
    DelegationStatus,
    DelegationSummary,
    DelegationUsageStats,
)
from .risk import RiskAnalyzeRequest, RiskAssessmentOut, RiskSummary

__all__ = [
    "CredentialListResponse",
    "DelegationCreateRequest",
    "DelegationCreateResponse",
    "DelegationListResponse",
    "DelegationRevokeAllResponse",
    "DelegationRevokeRequest",
    "DelegationStatus",
    "DelegationSummary",
    "DelegationUsageStats",
    "IssueCredentialRequest",
    "IssueCredentialResponse",
    "IssuedCredentialOut",
    "RiskAnalyzeRequest",
    "RiskAssessmentOut",
    "RiskSummary",
]
