"""
Image Generation Client - Imagen and Gemini image models via google-genai

Covers the synchronous studio operations:
- generate_image: text-to-image (Imagen or Gemini image model)
- edit_image: prompt + one image
- compose_image: prompt + several images
- generate_text: plain Gemini text generation with safety thresholds

Provider errors are classified into the core.errors taxonomy; a response
without image data raises NoImageProduced rather than returning nothing.
"""

import logging
from typing import Any, Optional, Sequence

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from core.config import get_config
from core.errors import (
    InvalidRequest,
    NoImageProduced,
    QuotaExceeded,
    TransportError,
    UpstreamRejected,
)

from .models import (
    GeneratedImage,
    ImageBackend,
    ImageModel,
    SafetyLevel,
    TextGenerationResult,
)

logger = logging.getLogger(__name__)

MAX_COMPOSE_IMAGES = 10

SAFETY_THRESHOLDS = {
    SafetyLevel.OFF: types.HarmBlockThreshold.OFF,
    SafetyLevel.LOW: types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    SafetyLevel.MEDIUM: types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    SafetyLevel.HIGH: types.HarmBlockThreshold.BLOCK_LOW_AND_ABOVE,
}

SAFETY_CATEGORIES = (
    types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
    types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    types.HarmCategory.HARM_CATEGORY_HARASSMENT,
)


def classify_provider_error(error: Exception, action: str) -> Exception:
    """Translate a google-genai / transport exception into a StudioError."""
    if isinstance(error, genai_errors.APIError):
        message = error.message or str(error)
        if error.code == 429 or error.status == "RESOURCE_EXHAUSTED" or "quota" in message.lower():
            return QuotaExceeded(f"Quota exceeded while trying to {action}", details=message)
        return UpstreamRejected(
            f"Provider rejected {action}: {message}",
            details=str(error),
            upstream_status=error.code,
        )
    if isinstance(error, httpx.RequestError):
        return TransportError(f"{action} request failed: {type(error).__name__}", details=str(error))
    return error


def _first_inline_image(response: Any) -> Optional[GeneratedImage]:
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            if getattr(part, "text", None):
                logger.debug(f"Generated text alongside image: {part.text[:100]}")
                continue
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                return GeneratedImage(data=inline.data, mime_type=inline.mime_type or "image/png")
    return None


class ImageGenerationClient:
    """
    Client for image generation and editing.

    Usage:
        client = ImageGenerationClient()
        image = await client.generate_image("a lighthouse at dusk")
        edited = await client.edit_image("make it snow", image)
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        genai_client: Optional[genai.Client] = None,
        text_client: Optional[genai.Client] = None,
    ):
        self.config = config or get_config()
        self._client = genai_client
        self._text_client = text_client

    def _get_client(self) -> genai.Client:
        """Get or create the Gemini client (lazy-loaded)."""
        if self._client is None:
            if not self.config.api.gemini_api_key:
                raise ValueError("GEMINI_API_KEY environment variable not set")
            self._client = genai.Client(api_key=self.config.api.gemini_api_key)
        return self._client

    def _get_text_client(self) -> genai.Client:
        if self._text_client is None:
            if self.config.api.text_api_key == self.config.api.gemini_api_key:
                self._text_client = self._get_client()
            else:
                self._text_client = genai.Client(api_key=self.config.api.text_api_key)
        return self._text_client

    async def generate_image(
        self,
        prompt: str,
        model: Optional[ImageModel] = None,
        aspect_ratio: str = "16:9",
    ) -> GeneratedImage:
        """Generate an image from a text prompt."""
        if not prompt or not prompt.strip():
            raise InvalidRequest("Missing prompt")

        model = model or ImageModel(self.config.models.default_image)
        logger.info(f"Image generate: model={model.value}, prompt={prompt[:50]}...")

        if model.spec.backend == ImageBackend.IMAGEN:
            return await self._generate_with_imagen(prompt, model, aspect_ratio)
        return await self._generate_content_image([prompt], model, "generate image")

    async def edit_image(
        self,
        prompt: str,
        image: GeneratedImage,
        model: Optional[ImageModel] = None,
    ) -> GeneratedImage:
        """Apply a text instruction to a single image."""
        return await self.compose_image(prompt, [image], model=model, action="edit image")

    async def compose_image(
        self,
        prompt: str,
        images: Sequence[GeneratedImage],
        model: Optional[ImageModel] = None,
        action: str = "compose images",
    ) -> GeneratedImage:
        """Combine several images under a text instruction."""
        if not prompt or not prompt.strip():
            raise InvalidRequest("Missing prompt")
        if not images:
            raise InvalidRequest("No images provided for editing")
        if len(images) > MAX_COMPOSE_IMAGES:
            raise InvalidRequest(f"At most {MAX_COMPOSE_IMAGES} images can be composed")

        model = model or ImageModel(self.config.models.default_image_edit)
        if not model.spec.supports_editing:
            raise InvalidRequest(f"{model.spec.label} does not support image editing")

        contents: list[Any] = [prompt]
        contents.extend(types.Part.from_bytes(data=img.data, mime_type=img.mime_type) for img in images)

        logger.info(f"Image {action}: model={model.value}, images={len(images)}")
        return await self._generate_content_image(contents, model, action)

    async def generate_text(
        self,
        prompt: str,
        model: Optional[str] = None,
        temperature: float = 1.0,
        top_p: float = 0.95,
        max_output_tokens: int = 32768,
        safety_level: SafetyLevel = SafetyLevel.OFF,
    ) -> TextGenerationResult:
        """Generate text with explicit sampling and safety settings."""
        if not prompt or not prompt.strip():
            raise InvalidRequest("Missing prompt")

        model = model or self.config.models.default_text
        threshold = SAFETY_THRESHOLDS[safety_level]
        config = types.GenerateContentConfig(
            temperature=temperature,
            top_p=top_p,
            max_output_tokens=max_output_tokens,
            safety_settings=[
                types.SafetySetting(category=category, threshold=threshold)
                for category in SAFETY_CATEGORIES
            ],
        )

        try:
            response = await self._get_text_client().aio.models.generate_content(
                model=model,
                contents=prompt,
                config=config,
            )
        except (genai_errors.APIError, httpx.RequestError) as e:
            raise classify_provider_error(e, "generate text")

        usage = getattr(response, "usage_metadata", None)
        return TextGenerationResult(
            text=response.text or "",
            model=model,
            prompt_tokens=getattr(usage, "prompt_token_count", None),
            candidate_tokens=getattr(usage, "candidates_token_count", None),
            total_tokens=getattr(usage, "total_token_count", None),
        )

    async def _generate_with_imagen(
        self,
        prompt: str,
        model: ImageModel,
        aspect_ratio: str,
    ) -> GeneratedImage:
        try:
            response = await self._get_client().aio.models.generate_images(
                model=model.value,
                prompt=prompt,
                config=types.GenerateImagesConfig(
                    number_of_images=1,
                    aspect_ratio=aspect_ratio,
                ),
            )
        except (genai_errors.APIError, httpx.RequestError) as e:
            raise classify_provider_error(e, "generate image")

        generated = getattr(response, "generated_images", None) or []
        image = generated[0].image if generated else None
        if image is None or not image.image_bytes:
            raise NoImageProduced("No image returned")

        return GeneratedImage(data=image.image_bytes, mime_type=image.mime_type or "image/png")

    async def _generate_content_image(
        self,
        contents: list[Any],
        model: ImageModel,
        action: str,
    ) -> GeneratedImage:
        try:
            response = await self._get_client().aio.models.generate_content(
                model=model.value,
                contents=contents,
            )
        except (genai_errors.APIError, httpx.RequestError) as e:
            raise classify_provider_error(e, action)

        image = _first_inline_image(response)
        if image is None:
            raise NoImageProduced("No image generated")
        return image
