"""
Operation Poller - one status query per call, mapped to OperationStatus.

Transport failures raise TransportError (the caller may poll again). A job
the provider reports as failed comes back as a FAILED status, which is
terminal.
"""

import logging
from typing import Any, Optional

from core.errors import InvalidRequest

from .client import VeoClient
from .models import OperationHandle, OperationState, OperationStatus

logger = logging.getLogger(__name__)


def _first_video_uri(response: dict[str, Any]) -> Optional[str]:
    # REST shape: response.generateVideoResponse.generatedSamples[].video.uri
    samples = (response.get("generateVideoResponse") or {}).get("generatedSamples") or []
    # SDK shape: response.generatedVideos[].video.uri
    samples = samples or response.get("generatedVideos") or []

    for sample in samples:
        uri = ((sample or {}).get("video") or {}).get("uri")
        if uri:
            return uri
    return None


def _filter_reasons(response: dict[str, Any]) -> list[str]:
    video_response = response.get("generateVideoResponse") or response
    reasons = video_response.get("raiMediaFilteredReasons") or []
    return [str(r) for r in reasons if r]


def status_from_operation(operation: dict[str, Any]) -> OperationStatus:
    """Map a provider operation snapshot to an OperationStatus."""
    metadata = operation.get("metadata") or {}
    progress = metadata.get("progressPercent")
    progress = float(progress) if isinstance(progress, (int, float)) else None

    if not operation.get("done"):
        state = OperationState.RUNNING if metadata else OperationState.PENDING
        return OperationStatus(state=state, progress=progress, raw=operation)

    error = operation.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        return OperationStatus(
            state=OperationState.FAILED,
            error=message or "Generation failed (no specific reason)",
            raw=operation,
        )

    response = operation.get("response") or {}
    uri = _first_video_uri(response)
    if uri:
        return OperationStatus(
            state=OperationState.COMPLETED,
            progress=100.0,
            asset_uri=uri,
            raw=operation,
        )

    reasons = _filter_reasons(response)
    if reasons:
        return OperationStatus(state=OperationState.FAILED, error="; ".join(reasons), raw=operation)

    # Done without a locator; surfaced by the caller as NoAssetProduced
    return OperationStatus(state=OperationState.COMPLETED, progress=100.0, raw=operation)


class OperationPoller:
    """
    Queries the provider for the status of a video operation.

    Usage:
        poller = OperationPoller(VeoClient())
        status = await poller.poll(handle)
        if status.state == OperationState.COMPLETED:
            ...
    """

    def __init__(self, client: Optional[VeoClient] = None):
        self.client = client or VeoClient()

    async def poll(self, handle: OperationHandle) -> OperationStatus:
        if not handle or not handle.name:
            raise InvalidRequest("Missing operation name")

        operation = await self.client.get_operation(handle.name)
        status = status_from_operation(operation)

        logger.debug(f"Veo operation {handle.name}: {status.state.value}")
        if status.state == OperationState.FAILED:
            logger.warning(f"Veo operation {handle.name} failed: {status.error}")
        return status
