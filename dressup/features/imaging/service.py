"""
Image edit / generation service.

Handles:
- Data URL decoding
- Payload construction for Gemini (prompt + 1-2 inline images)
- Image extraction from the upstream answer
- Credit consumption before a metered generation
"""
import base64
import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import httpx
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError as PydanticValidationError

from dressup.core.config import Settings
from dressup.core.errors import NoImageError, UpstreamError, ValidationError
from dressup.features.accounts.provider import AccountStore
from dressup.features.accounts.service import consume_generation
from dressup.features.imaging.gemini import GeminiClient, UpstreamResponse
from dressup.models.account import Account
from dressup.models.imaging import EditRequest, GenerateRequest

logger = logging.getLogger("dressup")

DATA_URL_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)
DEFAULT_MIME = "image/png"

IMAGE_ONLY_SUFFIX = (
    "\n\nReturn an IMAGE only (inlineData) that reflects the instruction. "
    "Do NOT return any text or explanations."
)
IMAGE_EDITOR_INSTRUCTION = (
    "You are an image editor. Return an IMAGE only (inlineData) that reflects the instruction. "
    "Do NOT return any text or explanations. Preserve pose and lighting unless the instruction says otherwise."
)
EDIT_BODY_HINT = "body must be { prompt, image1, image2? } or { model, contents }"


def split_data_url(value: str) -> Tuple[str, str]:
    """Split a base64 data URL into (mime, base64). Raises ValidationError."""
    match = DATA_URL_RE.match(value.strip())
    if not match:
        raise ValidationError("Invalid data URL", code="invalid_image")
    return match.group(1), match.group(2)


def to_inline_part(value: str, fallback_mime: Optional[str] = None) -> Dict[str, Any]:
    """Accept a data URL or bare base64 and build a Gemini inlineData part."""
    value = value.strip()
    match = DATA_URL_RE.match(value)
    if match:
        mime, data = match.group(1), match.group(2)
    else:
        mime, data = fallback_mime or DEFAULT_MIME, value
    return {"inlineData": {"mimeType": mime, "data": data}}


def extract_inline_image(payload: Any) -> Optional[Dict[str, str]]:
    """First inlineData part of the first candidate, or None."""
    if not isinstance(payload, dict):
        return None
    candidates = payload.get("candidates") or []
    if not candidates:
        return None
    parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
    for part in parts:
        inline = (part or {}).get("inlineData") or (part or {}).get("inline_data")
        if inline and inline.get("data"):
            return {"data": inline["data"], "mimeType": inline.get("mimeType") or inline.get("mime_type") or DEFAULT_MIME}
    return None


def _first_text(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for candidate in payload.get("candidates") or []:
        for part in ((candidate or {}).get("content") or {}).get("parts") or []:
            if isinstance((part or {}).get("text"), str):
                return part["text"]
    return payload.get("text") if isinstance(payload.get("text"), str) else None


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


def _raise_for_upstream(upstream: UpstreamResponse) -> Any:
    """Turn an upstream answer into its JSON payload or a structured error."""
    if not upstream.ok:
        logger.error(f"[imaging] upstream returned {upstream.status_code}")
        raise UpstreamError(
            "upstream error",
            extra={"status": upstream.status_code, "detail": upstream.text[:2000]},
        )
    payload = _parse_json(upstream.text)
    if extract_inline_image(payload) is None:
        logger.warning("[imaging] upstream answered without an image part")
        raise NoImageError("No image in response", extra={"text": _first_text(payload)})
    return payload


def build_edit_payload(raw: Dict[str, Any], default_model: str) -> Tuple[str, Dict[str, Any]]:
    """
    Normalize an edit request body into (model, generateContent payload).

    Bodies already in Gemini shape (with `contents`) pass through unchanged.
    """
    if raw.get("contents"):
        return raw.get("model") or default_model, {k: v for k, v in raw.items() if k != "model"}

    try:
        request = EditRequest.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid edit request body",
            code="invalid_body",
            extra={
                "gotKeys": sorted(raw.keys()),
                "fields": [".".join(str(loc) for loc in err["loc"]) for err in e.errors()],
                "hint": EDIT_BODY_HINT,
            },
        )
    if not request.prompt or not request.image1:
        raise ValidationError(
            "prompt and image1 are required",
            code="missing_fields",
            extra={"gotKeys": sorted(raw.keys()), "hint": EDIT_BODY_HINT},
        )

    parts: List[Dict[str, Any]] = [
        {"text": f"{request.prompt}{IMAGE_ONLY_SUFFIX}"},
        to_inline_part(request.image1, request.mime1),
    ]
    if request.image2:
        parts.append(to_inline_part(request.image2, request.mime2))

    return request.model or default_model, {"contents": [{"parts": parts}]}


async def edit_image(client: GeminiClient, raw: Dict[str, Any], cfg: Settings) -> UpstreamResponse:
    """
    Forward an edit instruction to Gemini.

    Returns:
        The upstream response, to be relayed verbatim

    Raises:
        ValidationError: Missing prompt or image1, or wrongly typed fields
        UpstreamError: Upstream failure or error status
        NoImageError: Upstream answered without an image
    """
    model, payload = build_edit_payload(raw, cfg.GEMINI_EDIT_MODEL)
    upstream = await client.generate_content(model, payload)
    _raise_for_upstream(upstream)
    return upstream


def validate_generate_request(body: GenerateRequest) -> List[Dict[str, Any]]:
    """Check the body and build the image parts. Raises ValidationError."""
    if not body.prompt or not body.image1:
        raise ValidationError("Missing prompt or image1", code="missing_fields")

    mime, data = split_data_url(body.image1)
    parts: List[Dict[str, Any]] = [
        {"text": f"{body.prompt}{IMAGE_ONLY_SUFFIX}"},
        {"inlineData": {"mimeType": mime, "data": data}},
    ]
    if body.image2:
        ref_mime, ref_data = split_data_url(body.image2)
        parts.append({"inlineData": {"mimeType": ref_mime, "data": ref_data}})
    return parts


async def generate_image(
    client: GeminiClient,
    store: AccountStore,
    account: Account,
    body: GenerateRequest,
    cfg: Settings,
) -> Dict[str, Any]:
    """
    Metered generation: validate, spend one credit, call Gemini.

    Returns:
        {"image": {"data", "mimeType"}, "candidates": [...]}
    """
    parts = validate_generate_request(body)
    await run_in_threadpool(consume_generation, store, account)

    if cfg.ECHO_GENERATE:
        inline = parts[1]["inlineData"]
        image = {"data": inline["data"], "mimeType": inline["mimeType"]}
    else:
        generation_config: Dict[str, Any] = {
            "responseModalities": ["IMAGE"],
            "temperature": body.temperature,
        }
        if body.seed is not None:
            generation_config["seed"] = body.seed

        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
            "systemInstruction": {"parts": [{"text": IMAGE_EDITOR_INSTRUCTION}]},
        }
        upstream = await client.generate_content(cfg.GEMINI_IMAGE_MODEL, payload)
        image = extract_inline_image(_raise_for_upstream(upstream))

    return {
        "candidates": [{"content": {"parts": [{"inlineData": image}]}}],
        "image": image,
    }


def to_data_url(content_type: str, content: bytes) -> str:
    return f"data:{content_type};base64,{base64.b64encode(content).decode('ascii')}"


async def fetch_file(client: GeminiClient, url: Optional[str], timeout: float, max_bytes: int) -> Dict[str, str]:
    """
    Download a remote file and return it as a data URL.

    Returns:
        {"dataUrl": "data:<mime>;base64,...", "mime": "<mime>"}

    Raises:
        ValidationError: URL missing or not http(s)
        PayloadTooLargeError (413): Body larger than max_bytes
        UpstreamError (502): Download failed or returned non-2xx
    """
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("url must be an http(s) URL", code="invalid_url")

    try:
        fetched = await client.fetch(url, timeout, max_bytes)
    except httpx.HTTPError as e:
        logger.warning(f"[fetch-file] download failed: {e}")
        raise UpstreamError("fetch failed", code="fetch_failed", status_code=502, extra={"detail": str(e)})

    if not fetched.ok:
        raise UpstreamError("fetch failed", code="fetch_failed", status_code=502, extra={"status": fetched.status_code})

    mime = (fetched.content_type or "application/octet-stream").split(";")[0].strip()
    return {"dataUrl": to_data_url(mime, fetched.content), "mime": mime}
