"""System and configuration endpoints for VeriCred Gate."""

from __future__ import annotations

import time

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from vericred_gate.api.v1.dependencies import ServicesDep, SessionDep
from vericred_gate.core.settings import settings

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/config")
async def get_public_config() -> dict[str, object]:
    """Return a sanitized snapshot of public runtime configuration.

    Excludes secrets, keys and connection strings.
    """
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "debug": settings.debug,
        },
        "auth": {
            "max_age_seconds": settings.auth_max_age_seconds,
            "max_clock_skew_seconds": settings.auth_max_clock_skew_seconds,
        },
        "rate_limits": {
            "window_seconds": settings.rate_limit_window_seconds,
            "policies": settings.rate_limit_policies,
        },
        "delegations": {
            "default_max_calls": settings.delegation_default_max_calls,
            "default_ttl_days": settings.delegation_default_ttl_days,
            "backend_address": settings.backend_delegation_address,
        },
        "chain": {
            "credential_contract": settings.credential_contract_address,
            "delegation_manager": settings.delegation_manager_address,
        },
    }


@router.get("/health")
async def get_system_health(db: SessionDep, services: ServicesDep) -> dict[str, object]:
    """Health check covering the database and the configured collaborators.

    Args:
        db: Database session
        services: Shared collaborators

    Returns:
        Overall status, per-component status and version info
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError as e:
        db_status = f"unhealthy: {e}"

    return {
        "status": "healthy" if db_status == "healthy" else "unhealthy",
        "timestamp": int(time.time()),
        "components": {
            "database": db_status,
            "risk_cache": services.cache.backend,
            "indexer": "configured" if services.indexer.enabled else "disabled",
            "risk_model": "configured" if services.analyzer.api_key else "rules-only",
            "metadata": "configured" if services.uploader.configured else "unconfigured",
        },
        "version": settings.app_version,
    }
