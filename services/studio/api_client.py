"""
HTTP client for the studio proxy routes.

Implements the same submit/poll/open surface as the in-process gateway,
poller and retriever, so a GenerationOrchestrator can run against a remote
proxy server. Error bodies are turned back into the StudioError classes the
server raised.
"""

import base64
import logging
from typing import Any, Optional

import httpx

from core.errors import (
    NoImageProduced,
    QuotaExceeded,
    TransportError,
    UpstreamDownloadFailed,
    UpstreamRejected,
    error_from_payload,
)
from services.image_generation.models import (
    GeneratedImage,
    ImageBackend,
    ImageModel,
    SafetyLevel,
    TextGenerationResult,
)
from services.video_generation.client import parse_retry_after
from services.video_generation.models import (
    GenerationRequest,
    OperationHandle,
    OperationStatus,
)
from services.video_generation.retriever import AssetStream

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"


def _payload(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def raise_for_route(response: httpx.Response):
    """Raise the StudioError described by a non-success proxy response."""
    if response.is_success:
        return

    payload = _payload(response)
    if not payload:
        payload = {"error": f"HTTP {response.status_code} {response.reason_phrase}".strip(),
                   "details": response.text[:2000] or None}

    error = error_from_payload(response.status_code, payload)
    if isinstance(error, QuotaExceeded) and error.retry_after is None:
        error.retry_after = parse_retry_after(response)
    raise error


def _image_from_payload(data: dict[str, Any]) -> GeneratedImage:
    image = data.get("image") or {}
    if not image.get("imageBytes"):
        raise NoImageProduced("No image returned")
    return GeneratedImage(
        data=base64.b64decode(image["imageBytes"]),
        mime_type=image.get("mimeType") or "image/png",
    )


class StudioApiClient:
    """
    Client for a running studio proxy server.

    Usage:
        api = StudioApiClient("http://localhost:8000", token=id_token)
        handle = await api.submit(GenerationRequest(prompt="a cat on a skateboard"))
        status = await api.poll(handle)
        await api.close()
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._http_client = http_client
        self._owns_client = http_client is None

    def set_auth_token(self, token: Optional[str]):
        self.token = token

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(None, connect=30.0))
        return self._http_client

    async def close(self):
        """Close the HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, f"{self.base_url}{path}", headers=self._headers, **kwargs)
        except httpx.RequestError as e:
            raise TransportError(f"{method} {path} failed: {type(e).__name__}", details=str(e))
        raise_for_route(response)
        return response

    async def _json(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        response = await self._request(method, path, **kwargs)
        payload = _payload(response)
        if not payload:
            raise UpstreamRejected(f"{path} returned a non-JSON response", upstream_status=response.status_code)
        return payload

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------

    async def submit(self, request: GenerationRequest) -> OperationHandle:
        """POST /api/veo/generate. Validation runs locally first."""
        request.validate()

        data = {"prompt": request.prompt, "model": request.model.value}
        if request.negative_prompt:
            data["negativePrompt"] = request.negative_prompt
        if request.aspect_ratio:
            data["aspectRatio"] = request.aspect_ratio

        files = None
        if request.image is not None:
            files = {"imageFile": ("reference", request.image.data, request.image.mime_type)}

        logger.debug(f"Submitting {request.model.value} generation to {self.base_url}")
        payload = await self._json("POST", "/api/veo/generate", data=data, files=files)
        name = payload.get("name")
        if not name:
            raise UpstreamRejected("Proxy returned no operation name")
        return OperationHandle(name=name)

    async def poll(self, handle: OperationHandle) -> OperationStatus:
        """POST /api/veo/operation."""
        payload = await self._json("POST", "/api/veo/operation", json={"name": handle.name})
        return OperationStatus.from_dict(payload)

    async def open(self, uri: str) -> AssetStream:
        """POST /api/veo/download, returning the unconsumed stream."""
        client = await self._get_client()
        request = client.build_request(
            "POST", f"{self.base_url}/api/veo/download", headers=self._headers, json={"uri": uri}
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.RequestError as e:
            raise TransportError(f"Download failed: {type(e).__name__}", details=str(e))

        if response.is_success:
            return AssetStream(response)

        try:
            await response.aread()
        finally:
            await response.aclose()
        if _payload(response):
            raise_for_route(response)
        raise UpstreamDownloadFailed(response.status_code, response.text[:2000] or None,
                                     reason=response.reason_phrase)

    # ------------------------------------------------------------------
    # Images and text
    # ------------------------------------------------------------------

    async def generate_image(
        self,
        prompt: str,
        model: ImageModel = ImageModel.IMAGEN_4_FAST,
        aspect_ratio: str = "16:9",
    ) -> GeneratedImage:
        """Route to /api/imagen/generate or /api/gemini/generate by model backend."""
        route = "/api/imagen/generate" if model.spec.backend == ImageBackend.IMAGEN else "/api/gemini/generate"
        payload = await self._json(
            "POST", route, json={"prompt": prompt, "model": model.value, "aspectRatio": aspect_ratio}
        )
        return _image_from_payload(payload)

    async def edit_image(
        self,
        prompt: str,
        image: GeneratedImage,
        model: ImageModel = ImageModel.GEMINI_FLASH_IMAGE_PREVIEW,
    ) -> GeneratedImage:
        payload = await self._json(
            "POST",
            "/api/gemini/edit",
            data={"prompt": prompt, "model": model.value},
            files={"imageFile": ("image", image.data, image.mime_type)},
        )
        return _image_from_payload(payload)

    async def compose_image(
        self,
        prompt: str,
        images: list[GeneratedImage],
        model: ImageModel = ImageModel.GEMINI_FLASH_IMAGE_PREVIEW,
    ) -> GeneratedImage:
        files = [("imageFiles", (f"image-{i}", img.data, img.mime_type)) for i, img in enumerate(images)]
        payload = await self._json(
            "POST", "/api/gemini/edit", data={"prompt": prompt, "model": model.value}, files=files
        )
        return _image_from_payload(payload)

    async def generate_text(
        self,
        prompt: str,
        model: Optional[str] = None,
        temperature: float = 1.0,
        top_p: float = 0.95,
        max_output_tokens: int = 32768,
        safety_level: SafetyLevel = SafetyLevel.OFF,
    ) -> TextGenerationResult:
        body = {
            "prompt": prompt,
            "temperature": temperature,
            "topP": top_p,
            "maxOutputTokens": max_output_tokens,
            "safetyLevel": safety_level.value,
        }
        if model:
            body["model"] = model
        payload = await self._json("POST", "/api/text/generate", json=body)
        usage = payload.get("usage") or {}
        return TextGenerationResult(
            text=payload.get("response", ""),
            model=payload.get("model", model or ""),
            prompt_tokens=usage.get("promptTokenCount"),
            candidate_tokens=usage.get("candidatesTokenCount"),
            total_tokens=usage.get("totalTokenCount"),
        )

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    async def get_logs(
        self,
        service: Optional[str] = None,
        level: Optional[str] = None,
        limit: int = 100,
    ) -> dict[str, Any]:
        params = {"limit": limit}
        if service:
            params["service"] = service
        if level:
            params["level"] = level
        return await self._json("GET", "/api/logs", params=params)

    async def export_logs_csv(self, service: Optional[str] = None, level: Optional[str] = None) -> str:
        params = {"format": "csv", "limit": 1000}
        if service:
            params["service"] = service
        if level:
            params["level"] = level
        response = await self._request("GET", "/api/logs", params=params)
        return response.text

    async def clear_logs(self):
        await self._request("DELETE", "/api/logs")

    async def health(self) -> dict[str, Any]:
        return await self._json("GET", "/health")
