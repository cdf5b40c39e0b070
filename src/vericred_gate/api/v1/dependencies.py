"""Shared API dependencies for authentication, rate limiting and services."""

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from vericred_gate.core.errors import RateLimited, Unauthenticated, to_http_exception
from vericred_gate.db.session import get_db
from vericred_gate.services.auth import AuthenticatedIssuer
from vericred_gate.services.container import ServiceContainer
from vericred_gate.services.rate_limiter import (
    RateLimitResult,
    address_key,
    get_policy,
    ip_key,
)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_services(request: Request) -> ServiceContainer:
    """Return the application's service container, creating it on first use."""
    services: ServiceContainer | None = getattr(request.app.state, "services", None)
    if services is None:
        services = ServiceContainer()
        request.app.state.services = services
    return services


ServicesDep = Annotated[ServiceContainer, Depends(get_services)]


def get_current_issuer(request: Request, services: ServicesDep) -> AuthenticatedIssuer:
    """Authenticate the caller from the signed X-Address/X-Signature/X-Timestamp headers.

    Raises:
        HTTPException: 401 if the signature is missing, stale or invalid
    """
    try:
        return services.authenticator.authenticate_headers(request.headers)
    except Unauthenticated as err:
        raise to_http_exception(err) from err


CurrentIssuerDep = Annotated[AuthenticatedIssuer, Depends(get_current_issuer)]


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client is not None:
        return request.client.host
    return "unknown"


def _rate_limit_headers(limit: int, result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": result.reset_at.isoformat(),
    }


def _enforce(
    key: str,
    policy_name: str,
    response: Response,
    db: Session,
    services: ServiceContainer,
) -> RateLimitResult:
    policy = get_policy(policy_name)
    result = services.rate_limiter(db).check_policy(key, policy)
    headers = _rate_limit_headers(policy.max_requests, result)
    if not result.allowed:
        err = RateLimited("Too many requests. Please try again later.", result.reset_at)
        raise HTTPException(status_code=err.status_code, detail=err.to_detail(), headers=headers)
    response.headers.update(headers)
    return result


def issuer_rate_limit(policy_name: str) -> Callable[..., AuthenticatedIssuer]:
    """Build a dependency that authenticates, then counts the request against the issuer."""

    def dependency(
        issuer: CurrentIssuerDep,
        response: Response,
        db: SessionDep,
        services: ServicesDep,
    ) -> AuthenticatedIssuer:
        _enforce(address_key(issuer.address), policy_name, response, db, services)
        return issuer

    return dependency


def ip_rate_limit(policy_name: str) -> Callable[..., RateLimitResult]:
    """Build a dependency that counts an unauthenticated request against the client IP."""

    def dependency(
        request: Request,
        response: Response,
        db: SessionDep,
        services: ServicesDep,
    ) -> RateLimitResult:
        return _enforce(ip_key(get_client_ip(request)), policy_name, response, db, services)

    return dependency
