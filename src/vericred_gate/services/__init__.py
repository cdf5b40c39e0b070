"""Business logic services for VeriCred Gate."""

from .auth import SignatureAuthenticator
from .container import ServiceContainer
from .issuance import IssuancePipeline
from .rate_limiter import RateLimiter
from .risk import RiskGate

__all__ = [
    "IssuancePipeline",
    "RateLimiter",
    "RiskGate",
    "ServiceContainer",
    "SignatureAuthenticator",
]
