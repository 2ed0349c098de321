"""
FFmpeg capture backend for the Media Post-Processor.

Plays the asset's handle at native frame rate (`-re`) from the seek point and
re-encodes the playthrough to WebM on stdout. Progress ticks come from
`-progress pipe:2`, one `out_time_us` per stats period, which the
post-processor compares against the trim end.
"""

import asyncio
import logging
import shutil
from typing import AsyncIterator, Optional

from .assets import MediaAsset
from .post_processor import CaptureUnavailable

logger = logging.getLogger(__name__)

CAPTURE_MIME_TYPE = "video/webm;codecs=vp8,opus"
STOP_TIMEOUT_SECONDS = 5.0
READ_CHUNK_SIZE = 64 * 1024


class FFmpegCaptureSession:
    """One real-time re-encode of a local media file."""

    mime_type = CAPTURE_MIME_TYPE

    def __init__(self, ffmpeg: str, source: str, cluster_ms: int = 200):
        self.ffmpeg = ffmpeg
        self.source = source
        self.cluster_ms = cluster_ms
        self.chunks: list[bytes] = []

        self._offset = 0.0
        self._process: Optional[asyncio.subprocess.Process] = None
        self._ticks: asyncio.Queue = asyncio.Queue()
        self._readers: list[asyncio.Task] = []
        self._reaper: Optional[asyncio.Task] = None
        self._errors: list[str] = []
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def errors(self) -> list[str]:
        return list(self._errors)

    def build_command(self, flush_interval: float) -> list[str]:
        return [
            self.ffmpeg,
            "-hide_banner",
            "-loglevel", "error",
            "-nostats",
            "-stats_period", f"{flush_interval:g}",
            "-progress", "pipe:2",
            "-re",
            "-ss", f"{self._offset:.3f}",
            "-i", self.source,
            "-c:v", "libvpx",
            "-deadline", "realtime",
            "-c:a", "libopus",
            "-f", "webm",
            "-flush_packets", "1",
            "-cluster_time_limit", str(self.cluster_ms),
            "pipe:1",
        ]

    async def seek(self, position: float):
        self._offset = max(0.0, position)

    async def start(self, flush_interval: float):
        cmd = self.build_command(flush_interval)
        logger.debug(f"Starting capture: {' '.join(cmd)}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CaptureUnavailable(f"Could not launch ffmpeg: {e}")

        self._readers = [
            asyncio.create_task(self._collect_output()),
            asyncio.create_task(self._watch_progress()),
        ]

    async def _collect_output(self):
        stream = self._process.stdout
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self.chunks.append(chunk)

    async def _watch_progress(self):
        stream = self._process.stderr
        try:
            while True:
                line = await stream.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="ignore").strip()
                key, sep, value = text.partition("=")
                if not sep:
                    if text:
                        self._errors.append(text)
                    continue
                if key == "out_time_us" and value.lstrip("-").isdigit():
                    self._ticks.put_nowait(self._offset + max(0, int(value)) / 1_000_000)
                elif key == "progress" and value == "end":
                    break
        finally:
            self._ticks.put_nowait(None)

    async def positions(self) -> AsyncIterator[float]:
        while True:
            position = await self._ticks.get()
            if position is None:
                return
            yield position

    async def stop(self):
        process = self._process
        if process is None:
            return

        if process.returncode is None and process.stdin is not None:
            try:
                process.stdin.write(b"q")
                await process.stdin.drain()
                process.stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                pass

        try:
            await asyncio.wait_for(process.wait(), timeout=STOP_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("ffmpeg did not stop in time, killing it")
            self._kill()
            await process.wait()

        await asyncio.gather(*self._readers, return_exceptions=True)
        if process.returncode not in (0, 255) and self._errors:
            logger.warning(f"ffmpeg exited with {process.returncode}: {self._errors[-1]}")
        if self._reaper is not None:
            await self._reaper

    def abort(self):
        self._aborted = True
        self._kill()
        self._ticks.put_nowait(None)
        if self._process is not None and self._reaper is None:
            self._reaper = asyncio.get_running_loop().create_task(self._reap())

    async def _reap(self):
        await self._process.wait()
        await asyncio.gather(*self._readers, return_exceptions=True)
        logger.debug(f"Aborted ffmpeg capture exited with {self._process.returncode}")

    def _kill(self):
        if self._process is not None and self._process.returncode is None:
            try:
                self._process.kill()
            except ProcessLookupError:
                pass


class FFmpegCaptureBackend:
    """
    Capture backend that drives a local ffmpeg binary.

    Usage:
        backend = FFmpegCaptureBackend(config.media.ffmpeg_path)
        processor = MediaPostProcessor(backend)
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", cluster_ms: int = 200):
        self.ffmpeg_path = ffmpeg_path
        self.cluster_ms = cluster_ms

    def resolve(self) -> Optional[str]:
        return shutil.which(self.ffmpeg_path)

    def open(self, asset: MediaAsset) -> FFmpegCaptureSession:
        ffmpeg = self.resolve()
        if ffmpeg is None:
            raise CaptureUnavailable(f"ffmpeg not found ({self.ffmpeg_path})")
        if not asset.is_playable:
            raise CaptureUnavailable(f"Asset {asset.asset_id} has no playable handle")
        return FFmpegCaptureSession(ffmpeg, str(asset.handle.path), cluster_ms=self.cluster_ms)
