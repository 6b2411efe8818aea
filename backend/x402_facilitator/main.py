"""
Main FastAPI application entry point.

This module creates and configures the facilitator application: loads
configuration, builds the facilitator service, and registers the x402
endpoints and health check.
"""

import logging
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from x402_facilitator.payment.api_key import ApiKeyGate
from x402_facilitator.payment.config import FacilitatorSettings
from x402_facilitator.payment.facilitator import FacilitatorService
from x402_facilitator.payment.routes import router as facilitator_router

# Configuration constants
API_VERSION = "0.1.0"
SERVICE_NAME = "SBC x402 Facilitator"

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[FacilitatorSettings] = None,
    service: Optional[FacilitatorService] = None,
    api_key_gate: Optional[ApiKeyGate] = None,
) -> FastAPI:
    """Create and configure the facilitator FastAPI application.

    Args:
        settings: Configuration (read from the environment when omitted)
        service: Pre-built facilitator service (built from settings when omitted)
        api_key_gate: Pre-built API key gate (built from settings when omitted)

    Returns:
        Configured FastAPI application instance
    """
    if settings is None:
        settings = FacilitatorSettings()

    app = FastAPI(
        title=SERVICE_NAME,
        description="x402 payment verification and settlement",
        version=API_VERSION,
    )

    app.state.facilitator = service or FacilitatorService.from_settings(settings)
    app.state.api_key_gate = api_key_gate or ApiKeyGate(
        settings.dashboard_url,
        enabled=settings.enable_api_key_gating,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint for monitoring and load balancers."""
        return JSONResponse(content={"status": "ok", "service": SERVICE_NAME})

    app.include_router(facilitator_router)

    for descriptor in app.state.facilitator.registry.list():
        logger.info(f"{descriptor.display_name} ({descriptor.network}): configured")

    return app


def run() -> None:
    """Console entry point: load .env, configure logging and serve."""
    load_dotenv()
    settings = FacilitatorSettings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(settings)
    logger.info(f"{SERVICE_NAME} listening on port {settings.facilitator_port}")
    uvicorn.run(app, host="0.0.0.0", port=settings.facilitator_port)


if __name__ == "__main__":
    run()
