"""
Request/response models for the proxy routes.

Field names follow the camelCase wire format the studio front end sends.
"""

from typing import Any, Optional

from pydantic import BaseModel


class OperationRequest(BaseModel):
    """Poll request for a video operation."""
    name: Optional[str] = None


class DownloadRequest(BaseModel):
    """Download request for a generated file."""
    uri: Optional[str] = None
    file: Optional[dict[str, Any]] = None

    @property
    def resolved_uri(self) -> Optional[str]:
        return self.uri or (self.file or {}).get("uri")


class GenerateResponse(BaseModel):
    name: str


class OperationResponse(BaseModel):
    name: str
    status: str
    done: bool
    progress: Optional[float] = None
    uri: Optional[str] = None
    error: Optional[str] = None


class ImageGenerationRequest(BaseModel):
    prompt: str = ""
    model: Optional[str] = None
    aspectRatio: str = "16:9"


class ImagePayload(BaseModel):
    imageBytes: str
    mimeType: str


class ImageResponse(BaseModel):
    image: ImagePayload


class TextGenerationRequest(BaseModel):
    prompt: str = ""
    model: Optional[str] = None
    temperature: float = 1.0
    topP: float = 0.95
    maxOutputTokens: int = 32768
    safetyLevel: str = "off"


class TextGenerationResponse(BaseModel):
    response: str
    model: str
    usage: dict[str, int] = {}


class LogsResponse(BaseModel):
    logs: list[dict[str, Any]]
    count: int
    stats: dict[str, Any]
