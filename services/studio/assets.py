"""
Client-side media assets and their playable handles.

A playable handle is a temporary file holding the asset bytes so players and
the capture backend can open it without re-fetching. Handles are a scarce
process-wide resource: whoever replaces an asset must release the old
handle explicitly.
"""

import logging
import mimetypes
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_EXTENSION_OVERRIDES = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
    "image/jpeg": ".jpg",
}


def extension_for(mime_type: str) -> str:
    """File extension for a MIME type, ignoring parameters such as codecs."""
    base = (mime_type or "").split(";")[0].strip().lower()
    return _EXTENSION_OVERRIDES.get(base) or mimetypes.guess_extension(base) or ".bin"


@dataclass
class PlayableHandle:
    """Ephemeral local reference to media bytes."""
    handle_id: str
    path: Path
    mime_type: str
    released: bool = False


@dataclass
class MediaAsset:
    """Retrieved or derived media: bytes + MIME type + playable handle."""
    data: bytes
    mime_type: str
    handle: Optional[PlayableHandle] = None
    duration_seconds: Optional[float] = None
    asset_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def extension(self) -> str:
        return extension_for(self.mime_type)

    @property
    def is_playable(self) -> bool:
        return self.handle is not None and not self.handle.released


class HandleRegistry:
    """
    Creates and releases playable handles.

    Usage:
        handles = HandleRegistry()
        asset = handles.materialize(video_bytes, "video/mp4")
        ...
        handles.release(asset.handle)
    """

    def __init__(self, directory: Optional[str] = None):
        self._directory = Path(directory) if directory else None
        self._owns_directory = directory is None
        self._live: dict[str, PlayableHandle] = {}

    @property
    def directory(self) -> Path:
        if self._directory is None:
            self._directory = Path(tempfile.mkdtemp(prefix="studio-media-"))
        self._directory.mkdir(parents=True, exist_ok=True)
        return self._directory

    @property
    def live_handles(self) -> list[PlayableHandle]:
        return list(self._live.values())

    def create(self, data: bytes, mime_type: str) -> PlayableHandle:
        handle_id = uuid.uuid4().hex
        path = self.directory / f"{handle_id}{extension_for(mime_type)}"
        path.write_bytes(data)

        handle = PlayableHandle(handle_id=handle_id, path=path, mime_type=mime_type)
        self._live[handle_id] = handle
        logger.debug(f"Created playable handle {handle_id} ({len(data)} bytes, {mime_type})")
        return handle

    def materialize(
        self,
        data: bytes,
        mime_type: str,
        duration_seconds: Optional[float] = None,
    ) -> MediaAsset:
        """Wrap bytes in a MediaAsset with a fresh playable handle."""
        return MediaAsset(
            data=data,
            mime_type=mime_type,
            handle=self.create(data, mime_type),
            duration_seconds=duration_seconds,
        )

    def release(self, handle: Optional[PlayableHandle]):
        """Invalidate a handle. Releasing twice is harmless."""
        if handle is None or handle.released:
            return
        handle.released = True
        self._live.pop(handle.handle_id, None)
        handle.path.unlink(missing_ok=True)
        logger.debug(f"Released playable handle {handle.handle_id}")

    def release_all(self):
        for handle in list(self._live.values()):
            self.release(handle)

    def close(self):
        """Release everything and remove the scratch directory if we made it."""
        self.release_all()
        if self._owns_directory and self._directory is not None:
            shutil.rmtree(self._directory, ignore_errors=True)
            self._directory = None
