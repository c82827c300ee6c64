"""
Image API routes.

- POST /api/edit: Gemini edit proxy (upstream answer relayed verbatim)
- POST /api/generate: Credit-gated generation
- GET  /api/fetch-file: Download a remote image as a data URL
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response

from dressup.core.auth import require_identity
from dressup.core.config import Settings
from dressup.core.errors import ValidationError
from dressup.core.gateways import get_account_store, get_catalog, get_image_client, get_settings
from dressup.features.accounts.provider import AccountStore
from dressup.features.accounts.service import get_or_create_account
from dressup.features.imaging.gemini import GeminiClient
from dressup.features.imaging.service import edit_image, fetch_file, generate_image
from dressup.features.plans.catalog import PlanCatalog
from dressup.models.account import Identity
from dressup.models.imaging import GenerateRequest

logger = logging.getLogger("dressup")

router = APIRouter(prefix="/api", tags=["images"])


@router.post("/edit")
async def edit(
    request: Request,
    client: GeminiClient = Depends(get_image_client),
    cfg: Settings = Depends(get_settings),
):
    """
    Forward an edit request to Gemini.

    Accepts { prompt, image1, image2?, mime1?, mime2?, model? } (with
    aliases) or a ready { model, contents } body.
    """
    try:
        raw = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body", code="invalid_json")
    if not isinstance(raw, dict):
        raise ValidationError("Body must be a JSON object", code="invalid_json")

    upstream = await edit_image(client, raw, cfg)
    return Response(content=upstream.text, status_code=upstream.status_code, media_type=upstream.content_type)


@router.post("/generate")
async def generate(
    body: GenerateRequest,
    identity: Identity = Depends(require_identity),
    store: AccountStore = Depends(get_account_store),
    catalog: PlanCatalog = Depends(get_catalog),
    client: GeminiClient = Depends(get_image_client),
    cfg: Settings = Depends(get_settings),
):
    """
    Generate an image, spending one credit.

    Errors:
        400: Missing prompt/image1 or malformed data URL
        401: No valid bearer token
        402: No credits left
        409: Credit could not be consumed
        500: Upstream error or no image in the answer
    """
    account = await run_in_threadpool(get_or_create_account, store, identity, catalog)
    result = await generate_image(client, store, account, body, cfg)
    logger.info(f"[generate] image generated for user {identity.user_id}", extra={"user_id": identity.user_id})
    return result


@router.get("/fetch-file")
async def fetch_remote_file(
    url: Optional[str] = Query(None),
    client: GeminiClient = Depends(get_image_client),
    cfg: Settings = Depends(get_settings),
):
    return await fetch_file(client, url, cfg.FETCH_FILE_TIMEOUT_SECONDS, cfg.FETCH_FILE_MAX_BYTES)
