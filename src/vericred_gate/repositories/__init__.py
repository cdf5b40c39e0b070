"""Repositories wrapping database access."""

from .credential_repo import CredentialRepository
from .delegation_repo import DelegationGrant, DelegationRepository, UsageStats

__all__ = ["CredentialRepository", "DelegationGrant", "DelegationRepository", "UsageStats"]
