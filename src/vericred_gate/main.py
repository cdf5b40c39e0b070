"""Main entry point for the VeriCred Gate application."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from vericred_gate import __version__
from vericred_gate.api.v1 import (
    credentials_router,
    delegations_router,
    risk_router,
    system_router,
)
from vericred_gate.core.errors import GateError
from vericred_gate.core.settings import settings
from vericred_gate.db.session import create_tables
from vericred_gate.services.container import ServiceContainer

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="VeriCred Gate API",
    description="Delegated credential issuance with signature auth, rate limits and risk gating",
    version=__version__,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(credentials_router, prefix="/api/v1")
app.include_router(delegations_router, prefix="/api/v1")
app.include_router(risk_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Report malformed request bodies as 400 with the shared error shape."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": {
                "code": "VALIDATION_ERROR",
                "message": f"{field}: {message}" if field else message,
                "errors": [
                    {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
                    for err in errors
                ],
            }
        },
    )


@app.exception_handler(GateError)
async def gate_error_handler(request: Request, exc: GateError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


@app.on_event("startup")
async def on_startup() -> None:
    if settings.db_auto_create:
        create_tables()
    services: ServiceContainer | None = getattr(app.state, "services", None)
    if services is None:
        services = ServiceContainer()
        app.state.services = services
    await services.initialize()
    logger.info("%s %s started", settings.app_name, __version__)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    services: ServiceContainer | None = getattr(app.state, "services", None)
    if services is not None:
        await services.shutdown()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": "VeriCred Gate API",
        "version": __version__,
        "description": "Delegated credential issuance with signature auth, rate limits and risk gating",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("vericred_gate.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
