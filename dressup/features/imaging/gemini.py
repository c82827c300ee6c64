"""
Gemini generateContent client.

One shared httpx.AsyncClient per process; every call is a single request
with a bounded timeout. No retries.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from dressup.core.errors import PayloadTooLargeError, UpstreamError

logger = logging.getLogger("dressup")


@dataclass
class UpstreamResponse:
    status_code: int
    text: str
    content_type: str = "application/json"

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class FetchedFile:
    status_code: int
    content_type: Optional[str]
    content: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class GeminiClient:
    """ImageClient backed by the Generative Language REST API."""

    def __init__(
        self,
        api_key: Optional[str],
        endpoint: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def model_url(self, model: str) -> str:
        name = model[len("models/"):] if model.startswith("models/") else model
        return f"{self.endpoint}/models/{name}:generateContent"

    async def generate_content(self, model: str, payload: Dict[str, Any]) -> UpstreamResponse:
        """POST a generateContent request and return the raw upstream answer."""
        if not self.api_key:
            raise UpstreamError("API key not configured", code="not_configured")
        try:
            response = await self._http.post(
                self.model_url(model),
                json=payload,
                headers={"x-goog-api-key": self.api_key},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.error(f"[gemini] timeout after {self.timeout}s: {e}")
            raise UpstreamError("upstream error", extra={"detail": "upstream timeout"})
        except httpx.HTTPError as e:
            logger.error(f"[gemini] transport error: {e}")
            raise UpstreamError("upstream error", extra={"detail": str(e)})

        return UpstreamResponse(
            status_code=response.status_code,
            text=response.text,
            content_type=response.headers.get("content-type", "application/json"),
        )

    async def fetch(self, url: str, timeout: float, max_bytes: int) -> FetchedFile:
        """
        Streamed GET used by the fetch-file proxy.

        Reading stops as soon as the body passes max_bytes; error bodies
        are not read at all.
        """
        async with self._http.stream("GET", url, timeout=timeout, follow_redirects=True) as response:
            content_type = response.headers.get("content-type")
            if not 200 <= response.status_code < 300:
                return FetchedFile(status_code=response.status_code, content_type=content_type)

            declared = response.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > max_bytes:
                raise PayloadTooLargeError("file too large", extra={"maxBytes": max_bytes})

            chunks: List[bytes] = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > max_bytes:
                    logger.warning(f"[fetch-file] {url} exceeded {max_bytes} bytes")
                    raise PayloadTooLargeError("file too large", extra={"maxBytes": max_bytes})
                chunks.append(chunk)

        return FetchedFile(status_code=response.status_code, content_type=content_type, content=b"".join(chunks))

    async def aclose(self) -> None:
        await self._http.aclose()
