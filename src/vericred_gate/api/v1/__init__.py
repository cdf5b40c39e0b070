"""Version 1 API endpoints."""

from .endpoints import (
    credentials_router,
    delegations_router,
    risk_router,
    system_router,
)

__all__ = [
    "credentials_router",
    "delegations_router",
    "risk_router",
    "system_router",
]
