"""
Asset Retriever - streams a generated video from the provider's storage.

The body is passed through chunk by chunk; nothing is buffered beyond what
the transport hands over unless the caller explicitly asks for read().
"""

import logging
from typing import AsyncIterator, Optional

import httpx

from core.errors import InvalidRequest, TransportError, UpstreamDownloadFailed

from .client import VeoClient

logger = logging.getLogger(__name__)

DEFAULT_VIDEO_MIME_TYPE = "video/mp4"


class AssetStream:
    """An open upstream response whose body has not been consumed yet."""

    def __init__(self, response: httpx.Response, default_content_type: str = DEFAULT_VIDEO_MIME_TYPE):
        self._response = response
        self.content_type = response.headers.get("content-type") or default_content_type
        content_length = response.headers.get("content-length")
        self.content_length: Optional[int] = int(content_length) if content_length else None

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield body chunks, closing the upstream response when done."""
        try:
            async for chunk in self._response.aiter_bytes():
                if chunk:
                    yield chunk
        except httpx.RequestError as e:
            raise TransportError(f"Asset stream interrupted: {type(e).__name__}", details=str(e))
        finally:
            await self._response.aclose()

    async def read(self) -> bytes:
        """Collect the whole body."""
        chunks = [chunk async for chunk in self.iter_bytes()]
        return b"".join(chunks)

    async def aclose(self):
        await self._response.aclose()


async def open_checked(response: httpx.Response) -> AssetStream:
    """Wrap a streaming response, raising UpstreamDownloadFailed on non-success."""
    if response.is_success:
        return AssetStream(response)

    try:
        await response.aread()
        detail = response.text[:2000]
    except httpx.HTTPError:
        detail = ""
    finally:
        await response.aclose()

    logger.error(f"Asset download failed: {response.status_code} {response.reason_phrase}")
    raise UpstreamDownloadFailed(response.status_code, detail or None, reason=response.reason_phrase)


class AssetRetriever:
    """
    Proxies generated assets from the provider.

    Usage:
        retriever = AssetRetriever(VeoClient())
        stream = await retriever.open(status.asset_uri)
        async for chunk in stream.iter_bytes():
            sink.write(chunk)
    """

    def __init__(self, client: Optional[VeoClient] = None):
        self.client = client or VeoClient()

    async def open(self, uri: str) -> AssetStream:
        if not uri:
            raise InvalidRequest("Missing file uri")

        response = await self.client.open_download(uri)
        stream = await open_checked(response)
        logger.info(f"Streaming asset ({stream.content_type}, {stream.content_length or '?'} bytes)")
        return stream
