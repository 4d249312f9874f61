"""
MAILDECK - Application Factory

Builds one FastAPI application per audience tier. Every application shares
the process readiness flag:

- /health  liveness, always 200
- /ready   200 once the bootstrap has completed, 503 before
- anything else answers 503 "starting" until ready, since the listeners are
  bound long before the background services exist
"""
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.security.headers import SecurityHeadersConfig, SecurityHeadersMiddleware
from config import Config, get_config
from core.listeners import AudienceTier
from core.readiness import ReadinessFlag
from observability.logging import get_logger

logger = get_logger("maildeck.api")

PROBE_PATHS = frozenset({"/health", "/ready"})


class HealthResponse(BaseModel):
    status: str
    tier: str


class ReadyResponse(BaseModel):
    ready: bool
    ready_at: Optional[float] = None


class TierInfo(BaseModel):
    service: str
    tier: str
    trusted_url_base: str


def create_app(
    tier: AudienceTier,
    readiness: ReadinessFlag,
    config: Optional[Config] = None,
) -> FastAPI:
    """Create the application served by the `tier` listener."""
    cfg = config or get_config()

    app = FastAPI(
        title=f"{cfg.title} ({tier.value})",
        docs_url="/docs" if tier == AudienceTier.TRUSTED else None,
        redoc_url=None,
        openapi_url="/openapi.json" if tier == AudienceTier.TRUSTED else None,
    )
    app.state.tier = tier
    app.state.readiness = readiness

    app.add_middleware(
        SecurityHeadersMiddleware,
        config=SecurityHeadersConfig.for_tier(
            tier.value, cfg.www.trusted_url_base, environment=cfg.env.value,
        ),
    )

    @app.middleware("http")
    async def starting_gate(request: Request, call_next):
        """Hold back application routes until the bootstrap is complete."""
        if not readiness.is_ready and request.url.path not in PROBE_PATHS:
            return JSONResponse(
                status_code=503,
                content={"status": "starting"},
                headers={"Retry-After": "5"},
            )
        return await call_next(request)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", tier=tier.value)

    @app.get("/ready", response_model=ReadyResponse)
    async def ready():
        body = ReadyResponse(ready=readiness.is_ready, ready_at=readiness.ready_at)
        if not readiness.is_ready:
            return JSONResponse(status_code=503, content=body.model_dump())
        return body

    @app.get("/", response_model=TierInfo)
    async def index() -> TierInfo:
        return TierInfo(service=cfg.title, tier=tier.value, trusted_url_base=cfg.www.trusted_url_base)

    logger.debug("Application created", tier=tier.value, component="Express")
    return app
