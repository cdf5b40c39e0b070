"""API endpoint modules for version 1."""

from .credentials import router as credentials_router
from .delegations import router as delegations_router
from .risk import router as risk_router
from .system import router as system_router

__all__ = [
    "credentials_router",
    "delegations_router",
    "risk_router",
    "system_router",
]
