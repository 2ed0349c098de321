"""
Studio Client

Client-side video workflow:
- GenerationOrchestrator: submit -> poll -> retrieve state machine
- MediaPostProcessor: trim by capturing a real-time playthrough
- HandleRegistry: playable handles for retrieved and derived media
- StudioApiClient: the same submit/poll/open surface over the proxy routes
"""

from .api_client import StudioApiClient
from .assets import HandleRegistry, MediaAsset, PlayableHandle
from .ffmpeg_capture import FFmpegCaptureBackend
from .orchestrator import GenerationOrchestrator, Snapshot, TrimState, WorkflowState
from .post_processor import CaptureUnavailable, CapturedClip, MediaPostProcessor, TrimRange

__all__ = [
    "StudioApiClient",
    "HandleRegistry",
    "MediaAsset",
    "PlayableHandle",
    "FFmpegCaptureBackend",
    "GenerationOrchestrator",
    "Snapshot",
    "TrimState",
    "WorkflowState",
    "CaptureUnavailable",
    "CapturedClip",
    "MediaPostProcessor",
    "TrimRange",
]
