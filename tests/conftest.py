"""
Shared fakes for the studio tests.

The fakes stand in for the provider-facing collaborators so workflows can be
driven deterministically without network access or ffmpeg.
"""

import asyncio
import os
import sys
from typing import Callable, Optional

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Config  # noqa: E402
from core.errors import StudioError  # noqa: E402
from services.studio.post_processor import CaptureUnavailable  # noqa: E402
from services.video_generation.models import (  # noqa: E402
    OperationHandle,
    OperationState,
    OperationStatus,
)
from services.video_generation.retriever import AssetStream  # noqa: E402

VIDEO_URI = "https://generativelanguage.googleapis.com/v1beta/files/abc123:download?alt=media"
OPERATION_NAME = "models/veo-3.0-generate-001/operations/op-123"


def make_config(environment: str = "development") -> Config:
    config = Config()
    config.api.gemini_api_key = "test-key"
    config.api.gemini_api_base = "https://veo.test/v1beta"
    config.server.environment = environment
    config.polling.interval_seconds = 0.0
    config.polling.max_attempts = None
    return config


def pending() -> OperationStatus:
    return OperationStatus(state=OperationState.PENDING)


def running(progress: Optional[float] = None) -> OperationStatus:
    return OperationStatus(state=OperationState.RUNNING, progress=progress)


def completed(uri: Optional[str] = VIDEO_URI) -> OperationStatus:
    return OperationStatus(state=OperationState.COMPLETED, progress=100.0, asset_uri=uri)


def failed(message: str) -> OperationStatus:
    return OperationStatus(state=OperationState.FAILED, error=message)


class FakeGateway:
    """Returns a fixed handle, or raises a configured error."""

    def __init__(self, name: str = OPERATION_NAME, error: Optional[StudioError] = None):
        self.name = name
        self.error = error
        self.requests = []

    async def submit(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return OperationHandle(name=self.name)


class FakePoller:
    """
    Replays scripted poll results; the last one repeats forever.

    Items may be OperationStatus values or exceptions to raise.
    """

    def __init__(self, script: list, latency: float = 0.0):
        self.script = list(script)
        self.latency = latency
        self.calls = 0
        self.handles = []

    async def poll(self, handle):
        self.calls += 1
        self.handles.append(handle)
        if self.latency:
            await asyncio.sleep(self.latency)
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakeRetriever:
    """Serves fixed bytes as an AssetStream."""

    def __init__(
        self,
        data: bytes = b"\x00\x00\x00\x18ftypmp42fake-video",
        content_type: Optional[str] = "video/mp4",
        error: Optional[StudioError] = None,
    ):
        self.data = data
        self.content_type = content_type
        self.error = error
        self.uris = []

    async def open(self, uri):
        self.uris.append(uri)
        if self.error is not None:
            raise self.error
        headers = {"content-type": self.content_type} if self.content_type else {}
        return AssetStream(httpx.Response(200, content=self.data, headers=headers))


class FakeCaptureSession:
    """Advances playback by `tick` seconds per progress event."""

    mime_type = "video/webm"

    def __init__(self, duration: float, tick: float = 0.5, delay: float = 0.0):
        self.duration = duration
        self.tick = tick
        self.delay = delay
        self.chunks: list[bytes] = []
        self.position = 0.0
        self.seeked_to: Optional[float] = None
        self.flush_interval: Optional[float] = None
        self.stopped = False
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    async def seek(self, position: float):
        self.seeked_to = position
        self.position = position

    async def start(self, flush_interval: float):
        self.flush_interval = flush_interval

    async def positions(self):
        while self.position < self.duration and not self._aborted:
            await asyncio.sleep(self.delay)
            if self._aborted:
                return
            self.position = min(self.position + self.tick, self.duration)
            self.chunks.append(b"webm-chunk")
            yield self.position

    async def stop(self):
        self.stopped = True

    def abort(self):
        self._aborted = True


class FakeCaptureBackend:
    def __init__(self, duration: float = 8.0, tick: float = 0.5, delay: float = 0.0, available: bool = True):
        self.duration = duration
        self.tick = tick
        self.delay = delay
        self.available = available
        self.sessions: list[FakeCaptureSession] = []

    def open(self, asset):
        if not self.available:
            raise CaptureUnavailable("MediaRecorder not supported")
        session = FakeCaptureSession(self.duration, tick=self.tick, delay=self.delay)
        self.sessions.append(session)
        return session


def mock_http_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest.fixture
def handles(tmp_path):
    from services.studio.assets import HandleRegistry

    registry = HandleRegistry(str(tmp_path / "handles"))
    yield registry
    registry.close()
