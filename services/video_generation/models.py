"""
Video generation data model.

Supported models are an explicit enum; everything that differs per model
(image support, aspect ratios, labels) lives in VIDEO_MODEL_SPECS and is
resolved once when a request is built.
"""

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from core.errors import InvalidRequest


class VideoModel(str, Enum):
    """Available video generation models."""
    VEO_3 = "veo-3.0-generate-001"            # Veo 3 - best quality, with audio
    VEO_3_FAST = "veo-3.0-fast-generate-001"  # Veo 3 Fast - faster, cheaper
    VEO_2 = "veo-2.0-generate-001"            # Veo 2 - silent, supports 9:16

    @classmethod
    def resolve(cls, value: Optional[str], default: "VideoModel" = None) -> "VideoModel":
        """Map a model identifier to the enum, rejecting unknown models."""
        if not value:
            return default or cls.VEO_3
        try:
            return cls(value)
        except ValueError:
            supported = ", ".join(m.value for m in cls)
            raise InvalidRequest(f"Unsupported video model: {value}", details=f"Supported: {supported}")

    @property
    def spec(self) -> "ModelSpec":
        return VIDEO_MODEL_SPECS[self]


@dataclass(frozen=True)
class ModelSpec:
    """Per-model routing and parameter metadata."""
    label: str
    accepts_image: bool = True
    requires_image: bool = False
    accepts_negative_prompt: bool = True
    aspect_ratios: tuple[str, ...] = ("16:9",)
    has_audio: bool = False
    tier: str = "paid"


VIDEO_MODEL_SPECS = {
    VideoModel.VEO_3: ModelSpec(
        label="Veo 3",
        aspect_ratios=("16:9", "9:16"),
        has_audio=True,
    ),
    VideoModel.VEO_3_FAST: ModelSpec(
        label="Veo 3 Fast",
        aspect_ratios=("16:9", "9:16"),
        has_audio=True,
    ),
    VideoModel.VEO_2: ModelSpec(
        label="Veo 2",
        aspect_ratios=("16:9", "9:16"),
    ),
}


@dataclass(frozen=True)
class ReferenceImage:
    """First-frame / style reference supplied with a generation request."""
    data: bytes
    mime_type: str = "image/png"

    @classmethod
    def from_base64(cls, value: str, mime_type: Optional[str] = None) -> "ReferenceImage":
        """Accept raw base64 or a data URL (`data:image/png;base64,...`)."""
        header, _, payload = value.partition(",") if "," in value else ("", "", value)
        if not mime_type and header.startswith("data:"):
            mime_type = header[len("data:"):].split(";")[0] or None
        try:
            data = base64.b64decode(payload, validate=True)
        except ValueError as e:
            raise InvalidRequest("Reference image is not valid base64", details=str(e))
        return cls(data=data, mime_type=mime_type or "image/png")

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass(frozen=True)
class GenerationRequest:
    """Request for video generation. Immutable once built."""
    prompt: str
    model: VideoModel = VideoModel.VEO_3
    image: Optional[ReferenceImage] = None
    negative_prompt: Optional[str] = None
    aspect_ratio: Optional[str] = None

    def validate(self):
        """Raise InvalidRequest if the request cannot be submitted."""
        if not self.prompt or not self.prompt.strip():
            raise InvalidRequest("Missing prompt")

        spec = self.model.spec
        if spec.requires_image and self.image is None:
            raise InvalidRequest(f"{spec.label} requires a reference image")
        if self.image is not None and not spec.accepts_image:
            raise InvalidRequest(f"{spec.label} does not accept a reference image")
        if self.image is not None and not self.image.data:
            raise InvalidRequest("Reference image is empty")
        if self.aspect_ratio and self.aspect_ratio not in spec.aspect_ratios:
            raise InvalidRequest(
                f"Aspect ratio {self.aspect_ratio} not supported by {spec.label}",
                details=f"Supported: {', '.join(spec.aspect_ratios)}",
            )


@dataclass(frozen=True)
class OperationHandle:
    """Opaque identifier of a long-running provider job."""
    name: str

    def __str__(self) -> str:
        return self.name


class OperationState(str, Enum):
    """Status of a video generation operation."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationState.COMPLETED, OperationState.FAILED)


@dataclass
class OperationStatus:
    """Result of a single poll. Fresh per poll, never persisted."""
    state: OperationState
    progress: Optional[float] = None
    asset_uri: Optional[str] = None
    error: Optional[str] = None
    raw: dict = field(default_factory=dict, repr=False)

    def to_dict(self) -> dict:
        data = {"status": self.state.value, "done": self.state.is_terminal}
        if self.progress is not None:
            data["progress"] = self.progress
        if self.asset_uri:
            data["uri"] = self.asset_uri
        if self.error:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "OperationStatus":
        return cls(
            state=OperationState(data.get("status", "pending")),
            progress=data.get("progress"),
            asset_uri=data.get("uri"),
            error=data.get("error"),
            raw=data,
        )
