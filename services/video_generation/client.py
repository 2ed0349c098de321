"""
Veo Provider Client

Thin HTTP client for the Gemini API long-running video endpoints:
- POST models/{model}:predictLongRunning  -> operation name
- GET  {operation name}                    -> operation snapshot
- GET  {file uri}                          -> generated video bytes

Every method issues exactly one upstream request. Retrying is left to
callers; provider errors are classified into the core.errors taxonomy.
"""

import json
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import httpx

from core.config import get_config
from core.errors import InvalidRequest, QuotaExceeded, TransportError, UpstreamRejected

logger = logging.getLogger(__name__)

PROVIDER_HOST = "generativelanguage.googleapis.com"


def parse_retry_after(response: httpx.Response, error: Optional[dict] = None) -> Optional[float]:
    """
    Seconds to wait before retrying, if the provider said so.

    Checks the Retry-After header (delta-seconds or HTTP date), then the
    google.rpc.RetryInfo `retryDelay` ("37s") in the error details.
    """
    header = response.headers.get("retry-after")
    if header:
        try:
            return max(0.0, float(header))
        except ValueError:
            try:
                when = parsedate_to_datetime(header)
                return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())
            except (TypeError, ValueError):
                logger.debug(f"Unparseable Retry-After header: {header!r}")

    for detail in (error or {}).get("details") or []:
        delay = detail.get("retryDelay") if isinstance(detail, dict) else None
        if isinstance(delay, str) and delay.endswith("s"):
            try:
                return max(0.0, float(delay[:-1]))
            except ValueError:
                continue

    return None


def _error_body(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    error = data.get("error") if isinstance(data, dict) else None
    return error if isinstance(error, dict) else {}


def raise_for_upstream(response: httpx.Response, action: str):
    """Raise UpstreamRejected / QuotaExceeded for a non-success provider response."""
    if response.is_success:
        return

    error = _error_body(response)
    message = error.get("message") or response.reason_phrase or "Unknown error"
    details = response.text[:2000] if response.text else None

    if response.status_code == 429 or error.get("status") == "RESOURCE_EXHAUSTED":
        raise QuotaExceeded(
            f"Quota exceeded while trying to {action}: {message}",
            details=details,
            retry_after=parse_retry_after(response, error),
        )

    raise UpstreamRejected(
        f"Provider rejected {action}: {message}",
        details=details,
        upstream_status=response.status_code,
    )


class VeoClient:
    """
    HTTP client for Veo long-running operations.

    Usage:
        client = VeoClient()
        operation = await client.predict_long_running(
            "veo-3.0-generate-001", {"prompt": "a cat on a skateboard"}, {}
        )
        snapshot = await client.get_operation(operation["name"])
        await client.close()
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or get_config()
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            # No read deadline: failures surface as transport or upstream errors
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(None, connect=30.0))
        return self._http_client

    async def close(self):
        """Close the HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None

    @property
    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.config.api.gemini_api_key}

    @property
    def trusted_hosts(self) -> set[str]:
        """Hosts the API key may be sent to."""
        return {httpx.URL(self.config.api.gemini_api_base).host, PROVIDER_HOST}

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            host = httpx.URL(path).host
            if host not in self.trusted_hosts:
                logger.warning(f"Refusing to call untrusted host: {host}")
                raise InvalidRequest(
                    "URL must point at the provider API",
                    details=f"Host {host!r} is not one of {sorted(self.trusted_hosts)}",
                )
            return path
        return f"{self.config.api.gemini_api_base.rstrip('/')}/{path.lstrip('/')}"

    async def predict_long_running(
        self,
        model_id: str,
        instance: dict[str, Any],
        parameters: dict[str, Any],
    ) -> dict[str, Any]:
        """Start a video generation job. Returns the operation JSON."""
        client = await self._get_client()
        payload: dict[str, Any] = {"instances": [instance]}
        if parameters:
            payload["parameters"] = parameters

        try:
            response = await client.post(
                self._url(f"models/{model_id}:predictLongRunning"),
                json=payload,
                headers=self._headers,
            )
        except httpx.RequestError as e:
            raise TransportError(f"Veo submit request failed: {type(e).__name__}", details=str(e))

        raise_for_upstream(response, "start generation")
        return self._json(response)

    async def get_operation(self, name: str) -> dict[str, Any]:
        """Fetch the current snapshot of an operation."""
        client = await self._get_client()
        try:
            response = await client.get(self._url(name), headers=self._headers)
        except httpx.RequestError as e:
            raise TransportError(f"Veo poll request failed: {type(e).__name__}", details=str(e))

        raise_for_upstream(response, "poll operation")
        return self._json(response)

    async def open_download(self, uri: str) -> httpx.Response:
        """
        Open a streaming GET for a generated file.

        The caller owns the returned response and must close it. Status is
        not checked here.
        """
        client = await self._get_client()
        request = client.build_request(
            "GET",
            self._url(uri),
            headers={**self._headers, "Accept": "*/*"},
        )
        try:
            return await client.send(request, stream=True, follow_redirects=True)
        except httpx.RequestError as e:
            raise TransportError(f"Veo download request failed: {type(e).__name__}", details=str(e))

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except (ValueError, json.JSONDecodeError):
            raise UpstreamRejected(
                "Provider returned a non-JSON response",
                details=response.text[:500],
                upstream_status=response.status_code,
            )
        if not isinstance(data, dict):
            raise UpstreamRejected("Provider returned an unexpected payload", details=str(data)[:500])
        return data
