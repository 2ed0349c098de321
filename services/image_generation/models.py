"""
Image and text generation data model.
"""

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from core.errors import InvalidRequest


class ImageBackend(str, Enum):
    """Which provider API serves an image model."""
    IMAGEN = "imagen"   # generate_images
    GEMINI = "gemini"   # generate_content with inline image parts


@dataclass(frozen=True)
class ImageModelSpec:
    label: str
    backend: ImageBackend
    supports_editing: bool = False
    tier: str = "paid"
    daily_limit: Optional[str] = None


class ImageModel(str, Enum):
    """Available image generation models."""
    IMAGEN_4_FAST = "imagen-4.0-fast-generate-001"
    IMAGEN_4 = "imagen-4.0-generate-001"
    GEMINI_FLASH_IMAGE_PREVIEW = "gemini-2.5-flash-image-preview"
    GEMINI_FLASH_IMAGE = "gemini-2.5-flash-image"

    @classmethod
    def resolve(cls, value: Optional[str], default: "ImageModel" = None) -> "ImageModel":
        if not value:
            return default or cls.IMAGEN_4_FAST
        try:
            return cls(value)
        except ValueError:
            supported = ", ".join(m.value for m in cls)
            raise InvalidRequest(f"Unsupported image model: {value}", details=f"Supported: {supported}")

    @property
    def spec(self) -> ImageModelSpec:
        return IMAGE_MODEL_SPECS[self]


IMAGE_MODEL_SPECS = {
    ImageModel.IMAGEN_4_FAST: ImageModelSpec("Imagen 4 Fast", ImageBackend.IMAGEN),
    ImageModel.IMAGEN_4: ImageModelSpec("Imagen 4", ImageBackend.IMAGEN),
    ImageModel.GEMINI_FLASH_IMAGE_PREVIEW: ImageModelSpec(
        "Gemini 2.5 Flash Image (preview)",
        ImageBackend.GEMINI,
        supports_editing=True,
        tier="free",
        daily_limit="50 requests/day",
    ),
    ImageModel.GEMINI_FLASH_IMAGE: ImageModelSpec(
        "Gemini 2.5 Flash Image",
        ImageBackend.GEMINI,
        supports_editing=True,
        tier="free",
        daily_limit="50 requests/day",
    ),
}


class SafetyLevel(str, Enum):
    """Blocking strictness for text generation."""
    OFF = "off"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class GeneratedImage:
    """Image bytes returned by a provider."""
    data: bytes
    mime_type: str = "image/png"

    def to_payload(self) -> dict:
        return {
            "imageBytes": base64.b64encode(self.data).decode("ascii"),
            "mimeType": self.mime_type,
        }

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.data).decode('ascii')}"


@dataclass(frozen=True)
class TextGenerationResult:
    text: str
    model: str
    prompt_tokens: Optional[int] = None
    candidate_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    def to_payload(self) -> dict:
        usage = {
            "promptTokenCount": self.prompt_tokens,
            "candidatesTokenCount": self.candidate_tokens,
            "totalTokenCount": self.total_tokens,
        }
        return {
            "response": self.text,
            "model": self.model,
            "usage": {k: v for k, v in usage.items() if v is not None},
        }
