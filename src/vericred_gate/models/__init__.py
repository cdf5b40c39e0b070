# src/vericred_gate/models/__init__.py
"""SQLAlchemy models for the VeriCred Gate service."""

from .credential import IssuedCredential
from .delegation import Delegation
from .rate_limit import RateLimitEntry

__all__ = [
    "Delegation",
    "IssuedCredential",
    "RateLimitEntry",
]
