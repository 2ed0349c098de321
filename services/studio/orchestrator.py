"""
Generation Orchestrator - drives one video workflow from submit to playable asset.

States:
    IDLE -> SUBMITTING -> POLLING -> RETRIEVING -> READY
                 \\            \\            \\
                  +------------+------------+--> FAILED

The whole workflow runs as a single asyncio task. The next poll is only
scheduled after the previous one has been handled, so at most one poll is in
flight. reset() and aclose() cancel that task, which also cancels any
pending poll sleep.

Usage:
    orchestrator = GenerationOrchestrator(gateway, poller, retriever, HandleRegistry())
    orchestrator.start(GenerationRequest(prompt="a cat on a skateboard"))
    snapshot = await orchestrator.wait()
    if snapshot.state == WorkflowState.READY:
        filename, data, mime_type = orchestrator.download()
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from core.errors import (
    InvalidRequest,
    NoAssetProduced,
    OperationFailed,
    QuotaExceeded,
    StudioError,
    TransportError,
    TrimInProgress,
    UpstreamRejected,
)
from services.video_generation.models import (
    GenerationRequest,
    OperationHandle,
    OperationState,
    OperationStatus,
)
from services.video_generation.retriever import AssetStream

from .assets import HandleRegistry, MediaAsset
from .post_processor import MediaPostProcessor, TrimRange

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DOWNLOAD_BASENAME = "veo3_video"


class Gateway(Protocol):
    async def submit(self, request: GenerationRequest) -> OperationHandle: ...


class Poller(Protocol):
    async def poll(self, handle: OperationHandle) -> OperationStatus: ...


class Retriever(Protocol):
    async def open(self, uri: str) -> AssetStream: ...


class WorkflowState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    POLLING = "polling"
    RETRIEVING = "retrieving"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_busy(self) -> bool:
        return self in (WorkflowState.SUBMITTING, WorkflowState.POLLING, WorkflowState.RETRIEVING)


class TrimState(str, Enum):
    NOT_TRIMMED = "not_trimmed"
    TRIMMING = "trimming"
    TRIMMED = "trimmed"


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time view of the workflow for rendering."""
    state: WorkflowState
    trim_state: TrimState
    operation: Optional[str] = None
    progress: Optional[float] = None
    poll_count: int = 0
    error: Optional[StudioError] = None
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None

    @property
    def remediation(self) -> Optional[str]:
        if isinstance(self.error, QuotaExceeded):
            return self.error.remediation
        return None


class GenerationOrchestrator:
    """
    Owns the workflow state, the operation handle and the current-asset slot.

    Args:
        gateway: submits requests (GenerationGateway or StudioApiClient)
        poller: polls operations (OperationPoller or StudioApiClient)
        retriever: opens asset streams (AssetRetriever or StudioApiClient)
        handles: creates and releases playable handles
        post_processor: trims assets; trimming is disabled when None
        poll_interval: seconds between polls
        max_poll_attempts: None polls until a terminal status
        on_change: called with a Snapshot after every transition
    """

    def __init__(
        self,
        gateway: Gateway,
        poller: Poller,
        retriever: Retriever,
        handles: Optional[HandleRegistry] = None,
        post_processor: Optional[MediaPostProcessor] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_poll_attempts: Optional[int] = None,
        on_change: Optional[Callable[[Snapshot], None]] = None,
    ):
        self.gateway = gateway
        self.poller = poller
        self.retriever = retriever
        self.handles = handles or HandleRegistry()
        self.post_processor = post_processor
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.on_change = on_change

        self.state = WorkflowState.IDLE
        self.trim_state = TrimState.NOT_TRIMMED
        self.handle: Optional[OperationHandle] = None
        self.progress: Optional[float] = None
        self.error: Optional[StudioError] = None

        self._original: Optional[MediaAsset] = None
        self._trimmed: Optional[MediaAsset] = None
        self._task: Optional[asyncio.Task] = None
        self._epoch = 0

        # Instrumentation
        self.poll_count = 0
        self._polls_in_flight = 0
        self.max_polls_in_flight = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def active_asset(self) -> Optional[MediaAsset]:
        """The trimmed derivative if one exists, else the original."""
        return self._trimmed or self._original

    @property
    def original_asset(self) -> Optional[MediaAsset]:
        return self._original

    @property
    def is_recording(self) -> bool:
        return self.post_processor is not None and self.post_processor.is_recording(self._original)

    @property
    def loop_enabled(self) -> bool:
        """Players loop the original only, and never while a capture runs."""
        return self._trimmed is None and not self.is_recording

    def snapshot(self) -> Snapshot:
        asset = self.active_asset
        return Snapshot(
            state=self.state,
            trim_state=self.trim_state,
            operation=self.handle.name if self.handle else None,
            progress=self.progress,
            poll_count=self.poll_count,
            error=self.error,
            mime_type=asset.mime_type if asset else None,
            size_bytes=len(asset.data) if asset else None,
        )

    def _notify(self):
        if self.on_change is not None:
            self.on_change(self.snapshot())

    def _transition(self, state: WorkflowState, epoch: int) -> bool:
        if epoch != self._epoch:
            return False
        logger.debug(f"Workflow {self.state.value} -> {state.value}")
        self.state = state
        self._notify()
        return True

    # ------------------------------------------------------------------
    # Generation workflow
    # ------------------------------------------------------------------

    def can_start(self, request: GenerationRequest, require_image: bool = False) -> bool:
        """Readiness predicate: non-empty prompt, and an image in image modes."""
        if self.state not in (WorkflowState.IDLE, WorkflowState.FAILED):
            return False
        if not request.prompt or not request.prompt.strip():
            return False
        if (require_image or request.model.spec.requires_image) and request.image is None:
            return False
        return True

    def start(self, request: GenerationRequest, require_image: bool = False) -> bool:
        """
        Begin a workflow. Must be called from a running event loop.

        Returns False without side effects when the readiness predicate fails
        or a workflow is already running or finished (reset first).
        """
        if not self.can_start(request, require_image=require_image):
            logger.debug(f"Start ignored in state {self.state.value}")
            return False

        self._epoch += 1
        self.handle = None
        self.progress = None
        self.error = None
        self.poll_count = 0
        self._transition(WorkflowState.SUBMITTING, self._epoch)

        self._task = asyncio.create_task(self._run(request, self._epoch))
        return True

    async def wait(self) -> Snapshot:
        """Wait for the current workflow to settle and return its snapshot."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
        return self.snapshot()

    async def _run(self, request: GenerationRequest, epoch: int):
        try:
            handle = await self.gateway.submit(request)
            if handle is None or not handle.name:
                raise UpstreamRejected("Provider returned no operation handle")
            self.handle = handle
            logger.info(f"Submitted generation, operation: {handle.name}")
            self._transition(WorkflowState.POLLING, epoch)

            uri = await self._poll_until_done(handle, epoch)

            self._transition(WorkflowState.RETRIEVING, epoch)
            stream = await self.retriever.open(uri)
            data = await stream.read()
            if not data:
                raise NoAssetProduced("Downloaded video is empty")

            if epoch != self._epoch:
                return
            asset = self.handles.materialize(data, stream.content_type)
            self._install_original(asset)
            logger.info(f"Video ready ({len(data) / 1024 / 1024:.1f} MB, {stream.content_type})")
            self._transition(WorkflowState.READY, epoch)

        except StudioError as e:
            if epoch != self._epoch:
                return
            logger.error(f"Workflow failed in {self.state.value}: {e.message}")
            self.error = e
            self._transition(WorkflowState.FAILED, epoch)

        except Exception as e:
            if epoch != self._epoch:
                return
            logger.exception(f"Unexpected error in {self.state.value}: {e}")
            details = f"{type(e).__name__}: {e}"
            if self.state == WorkflowState.RETRIEVING:
                self.error = NoAssetProduced("Downloaded video could not be stored", details=details)
            else:
                self.error = StudioError(f"Workflow failed while {self.state.value}", details=details)
            self._transition(WorkflowState.FAILED, epoch)

    async def _poll_until_done(self, handle: OperationHandle, epoch: int) -> str:
        attempts = 0
        while True:
            if self.max_poll_attempts is not None and attempts >= self.max_poll_attempts:
                raise OperationFailed(f"Operation did not complete after {attempts} polls")

            await asyncio.sleep(self.poll_interval)
            attempts += 1

            try:
                status = await self._poll_once(handle)
            except TransportError as e:
                logger.warning(f"Poll {attempts} failed, retrying in {self.poll_interval}s: {e.message}")
                continue

            if status.progress is not None and status.progress != self.progress:
                self.progress = status.progress
                self._notify()

            if status.state == OperationState.FAILED:
                raise OperationFailed(status.error or "Video generation failed")
            if status.state == OperationState.COMPLETED:
                if not status.asset_uri:
                    raise NoAssetProduced("Operation completed without a video")
                return status.asset_uri

            logger.debug(f"Operation {handle.name} still {status.state.value} after {attempts} polls")

    async def _poll_once(self, handle: OperationHandle) -> OperationStatus:
        self._polls_in_flight += 1
        self.max_polls_in_flight = max(self.max_polls_in_flight, self._polls_in_flight)
        self.poll_count += 1
        try:
            return await self.poller.poll(handle)
        finally:
            self._polls_in_flight -= 1

    def _install_original(self, asset: MediaAsset):
        self._release_trimmed()
        if self._original is not None:
            self.handles.release(self._original.handle)
        self._original = asset

    # ------------------------------------------------------------------
    # Trimming
    # ------------------------------------------------------------------

    async def trim(self, trim_range: TrimRange) -> bool:
        """
        Replace the active asset with a trimmed derivative of the original.

        Returns False when nothing was produced; the previous active asset
        stays in place.

        Raises:
            InvalidRequest: no ready video to trim, or the range falls
                outside the video
            TrimInProgress: a capture is already running
        """
        if self.state != WorkflowState.READY or self._original is None:
            raise InvalidRequest("No video ready to trim")
        if self.post_processor is None:
            logger.warning("Trimming unavailable: no post-processor configured")
            return False
        if trim_range.is_empty:
            logger.info(f"Ignoring empty trim range {trim_range.start}-{trim_range.end}")
            return False
        trim_range.validate(self._original.duration_seconds)
        if self.is_recording:
            raise TrimInProgress("A trim is already running")

        epoch = self._epoch
        original = self._original
        previous = self.trim_state
        self.trim_state = TrimState.TRIMMING
        self._notify()

        clip = None
        try:
            clip = await self.post_processor.trim(original, trim_range)
        finally:
            if epoch == self._epoch and clip is None:
                self.trim_state = previous
                self._notify()

        if epoch != self._epoch or clip is None:
            return False

        self._release_trimmed()
        self._trimmed = self.handles.materialize(clip.data, clip.mime_type, clip.duration_seconds)
        self.trim_state = TrimState.TRIMMED
        self._notify()
        return True

    def reset_trim(self):
        """Drop the derivative and restore the original as the active asset."""
        self._release_trimmed()
        if self.trim_state == TrimState.TRIMMED:
            self.trim_state = TrimState.NOT_TRIMMED
            self._notify()

    def _release_trimmed(self):
        if self._trimmed is not None:
            self.handles.release(self._trimmed.handle)
            self._trimmed = None

    def download(self) -> tuple[str, bytes, str]:
        """(filename, bytes, mime type) of the active asset."""
        asset = self.active_asset
        if asset is None:
            raise InvalidRequest("No video to download")
        suffix = "_trimmed" if asset is self._trimmed else ""
        return f"{DOWNLOAD_BASENAME}{suffix}{asset.extension}", asset.data, asset.mime_type

    # ------------------------------------------------------------------
    # Reset / teardown
    # ------------------------------------------------------------------

    def reset(self):
        """Return to IDLE: cancel polling, stop any capture, release handles."""
        self._epoch += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()

        if self.post_processor is not None:
            self.post_processor.cancel(self._original)

        self._release_trimmed()
        if self._original is not None:
            self.handles.release(self._original.handle)
            self._original = None

        self.handle = None
        self.progress = None
        self.error = None
        self.trim_state = TrimState.NOT_TRIMMED
        self.state = WorkflowState.IDLE
        logger.info("Workflow reset")
        self._notify()

    async def aclose(self):
        """Tear down: no callbacks or polls run after this returns."""
        task = self._task
        self.on_change = None
        self.reset()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        self.handles.close()
