"""
Media Post-Processor - trims a playable asset by capturing a live playthrough.

Algorithm:
    1. seek the playback position to `start`
    2. begin capturing the playback output into an encoder sink
    3. start playback
    4. on every playback tick compare the position to `end`; once reached,
       stop playback and capture
    5. the accumulated encoded chunks are the derivative clip

This is a real-time re-encode, not a bitstream cut: it takes wall-clock time
proportional to `end - start` and the output container can differ from the
input (WebM for the ffmpeg backend). If the platform cannot create a capture
sink the trim resolves to None and the original asset stays in use.
"""

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol

from core.errors import InvalidRequest, TrimInProgress

from .assets import MediaAsset

logger = logging.getLogger(__name__)


class CaptureUnavailable(Exception):
    """The capture sink cannot be created on this platform."""


@dataclass(frozen=True)
class TrimRange:
    """[start, end) offsets in seconds within an asset's timeline."""
    start: float
    end: float

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    @property
    def length(self) -> float:
        return max(0.0, self.end - self.start)

    def validate(self, duration: Optional[float] = None):
        """Raise InvalidRequest unless 0 <= start < end <= duration."""
        if self.start < 0:
            raise InvalidRequest(f"Trim start must be >= 0, got {self.start}")
        if self.is_empty:
            raise InvalidRequest(f"Trim end ({self.end}) must be after start ({self.start})")
        if duration is not None and self.end > duration:
            raise InvalidRequest(f"Trim end ({self.end}) is past the media duration ({duration})")

    def clamp(self, duration: float) -> "TrimRange":
        return TrimRange(start=max(0.0, min(self.start, duration)), end=max(0.0, min(self.end, duration)))


@dataclass(frozen=True)
class CapturedClip:
    """Encoded output of a capture."""
    data: bytes
    mime_type: str
    duration_seconds: float


class CaptureSession(Protocol):
    """Playback of one asset wired to an encoder sink."""

    mime_type: str
    chunks: list[bytes]

    async def seek(self, position: float) -> None: ...

    async def start(self, flush_interval: float) -> None:
        """Begin capture and playback from the seek position."""

    def positions(self) -> AsyncIterator[float]:
        """Playback position on every progress tick; ends when playback ends."""

    async def stop(self) -> None:
        """Stop playback and capture, flushing any buffered output."""

    def abort(self) -> None:
        """Stop immediately and mark the output as discarded."""

    @property
    def aborted(self) -> bool: ...


class CaptureBackend(Protocol):
    def open(self, asset: MediaAsset) -> CaptureSession:
        """Raise CaptureUnavailable when no sink can be created."""


class MediaPostProcessor:
    """
    Produces trimmed derivatives of playable assets.

    The processor never touches the caller's current-asset slot; it hands
    back a CapturedClip and the owner decides whether to substitute it.

    Usage:
        processor = MediaPostProcessor(FFmpegCaptureBackend())
        clip = await processor.trim(asset, TrimRange(1.0, 4.0))
        if clip is not None:
            ...
    """

    def __init__(self, backend: CaptureBackend, flush_interval: float = 0.2):
        self.backend = backend
        self.flush_interval = flush_interval
        self._active: dict[str, CaptureSession] = {}

    def is_recording(self, asset: Optional[MediaAsset]) -> bool:
        """True while a capture runs; players must not loop-restart meanwhile."""
        return asset is not None and asset.asset_id in self._active

    def cancel(self, asset: Optional[MediaAsset]) -> bool:
        """Forcibly stop an in-flight capture and discard its output."""
        session = self._active.get(asset.asset_id) if asset is not None else None
        if session is None:
            return False
        logger.info(f"Cancelling capture for asset {asset.asset_id}")
        session.abort()
        return True

    async def trim(self, asset: MediaAsset, trim_range: TrimRange) -> Optional[CapturedClip]:
        """
        Capture [start, end) of the asset into a new clip.

        Returns None when the range is empty, when capture is unavailable,
        when the capture was cancelled, or when nothing was encoded.

        Raises:
            InvalidRequest: start is negative or end is past the asset's duration
            TrimInProgress: a capture is already running for this asset
        """
        if trim_range.is_empty:
            logger.debug(f"Empty trim range {trim_range}, nothing to capture")
            return None
        trim_range.validate(asset.duration_seconds)
        if asset.asset_id in self._active:
            raise TrimInProgress(f"A trim is already running for asset {asset.asset_id}")

        try:
            session = self.backend.open(asset)
        except CaptureUnavailable as e:
            logger.warning(f"Capture unavailable, keeping original asset: {e}")
            return None

        self._active[asset.asset_id] = session
        last_position = trim_range.start
        try:
            await session.seek(trim_range.start)
            await session.start(self.flush_interval)

            async for position in session.positions():
                last_position = position
                if position >= trim_range.end:
                    break

            await session.stop()
        except CaptureUnavailable as e:
            logger.warning(f"Capture failed to start, keeping original asset: {e}")
            session.abort()
            return None
        except BaseException:
            # Cancelled or failed mid-capture: never leave the sink running
            session.abort()
            raise
        finally:
            self._active.pop(asset.asset_id, None)

        if session.aborted:
            logger.info(f"Capture for asset {asset.asset_id} was cancelled, output discarded")
            return None

        data = b"".join(session.chunks)
        if not data:
            logger.warning(f"Capture for asset {asset.asset_id} produced no data")
            return None

        duration = min(last_position, trim_range.end) - trim_range.start
        logger.info(
            f"Captured {duration:.2f}s clip ({len(data) / 1024:.0f} KB, {session.mime_type}) "
            f"from asset {asset.asset_id}"
        )
        return CapturedClip(data=data, mime_type=session.mime_type, duration_seconds=max(0.0, duration))
