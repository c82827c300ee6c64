"""
Health endpoints.

Lightweight probes for operational monitoring; never expose secrets.
"""

import logging
from pydantic import BaseModel

from fastapi import APIRouter, Depends

from dressup.core.config import Settings
from dressup.core.gateways import get_settings
from dressup.core.logging import get_request_id

logger = logging.getLogger("dressup")

router = APIRouter(prefix="/api/health", tags=["health"])
root_router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Whether the image API key is configured."""
    ok: bool


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("", response_model=HealthResponse)
def health(cfg: Settings = Depends(get_settings)):
    ok = bool(cfg.GEMINI_API_KEY)
    logger.debug("health.check", extra={"request_id": get_request_id()})
    return HealthResponse(ok=ok)
