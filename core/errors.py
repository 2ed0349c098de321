"""
Error taxonomy shared by the proxy services and the studio client.

Every boundary failure is a StudioError subclass carrying a stable `code`
and the HTTP status the proxy routes answer with. The studio client rebuilds
the same classes from error payloads via `error_from_payload`.
"""

from typing import Any, Optional


class StudioError(Exception):
    """Base class for all classified studio failures."""

    code = "studio_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        """JSON body returned by the proxy routes."""
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidRequest(StudioError):
    """Caller-side precondition violation (missing prompt, missing image)."""

    code = "invalid_request"
    status_code = 400


class Unauthenticated(StudioError):
    """Missing or invalid bearer credential."""

    code = "unauthenticated"
    status_code = 401


class UpstreamRejected(StudioError):
    """The provider declined the request."""

    code = "upstream_rejected"
    status_code = 502

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        upstream_status: Optional[int] = None,
    ):
        self.upstream_status = upstream_status
        super().__init__(message, details)


QUOTA_SOLUTIONS = [
    "Wait for quota reset",
    "Upgrade your plan",
    "Retry later",
]


class QuotaExceeded(UpstreamRejected):
    """Provider quota or rate limit hit."""

    code = "quota_exceeded"
    status_code = 429

    def __init__(
        self,
        message: str = "Quota exceeded",
        details: Optional[str] = None,
        retry_after: Optional[float] = None,
        solutions: Optional[list[str]] = None,
    ):
        self.retry_after = retry_after
        self.solutions = list(solutions) if solutions else list(QUOTA_SOLUTIONS)
        super().__init__(message, details, upstream_status=429)

    @property
    def remediation(self) -> str:
        """User-facing remediation text."""
        text = "; ".join(self.solutions)
        if self.retry_after is not None:
            text = f"Retry after {self.retry_after:.0f}s. {text}"
        return text

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["solutions"] = self.solutions
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after
        return payload


class TransportError(StudioError):
    """Network-level failure talking to an upstream."""

    code = "transport_error"
    status_code = 502


class UpstreamDownloadFailed(StudioError):
    """Asset fetch returned a non-success status."""

    code = "upstream_download_failed"
    status_code = 502

    def __init__(self, upstream_status: int, details: Optional[str] = None, reason: str = ""):
        self.upstream_status = upstream_status
        message = f"Upstream download failed: {upstream_status} {reason}".rstrip()
        super().__init__(message, details)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["upstream_status"] = self.upstream_status
        return payload


class NoAssetProduced(StudioError):
    """Upstream reported success but returned no usable payload."""

    code = "no_asset_produced"
    status_code = 502


class NoImageProduced(NoAssetProduced):
    """Image generation finished without an image part."""

    code = "no_image_produced"


class OperationFailed(StudioError):
    """The provider reports the generation job itself as failed. Terminal."""

    code = "operation_failed"
    status_code = 502


class TrimInProgress(StudioError):
    """A capture is already running for this asset."""

    code = "trim_in_progress"
    status_code = 409


class ConfigurationError(StudioError):
    """The server is missing credentials or settings it needs."""

    code = "configuration_error"
    status_code = 500


_ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        StudioError,
        InvalidRequest,
        Unauthenticated,
        UpstreamRejected,
        QuotaExceeded,
        TransportError,
        UpstreamDownloadFailed,
        NoAssetProduced,
        NoImageProduced,
        OperationFailed,
        TrimInProgress,
        ConfigurationError,
    )
}


def error_from_payload(status_code: int, payload: dict[str, Any]) -> StudioError:
    """Rebuild a classified error from a proxy-route error body."""
    message = str(payload.get("error") or f"HTTP {status_code}")
    details = payload.get("details")
    code = payload.get("code")
    cls = _ERRORS_BY_CODE.get(code)

    if cls is None:
        # Bodies without a code (older routes, gateways in between)
        if status_code == 429:
            cls = QuotaExceeded
        elif status_code == 401:
            cls = Unauthenticated
        elif status_code == 400:
            cls = InvalidRequest
        else:
            cls = UpstreamRejected

    if cls is QuotaExceeded:
        retry_after = payload.get("retry_after")
        return QuotaExceeded(
            message,
            details=details,
            retry_after=float(retry_after) if retry_after is not None else None,
            solutions=payload.get("solutions"),
        )
    if cls is UpstreamDownloadFailed:
        error = UpstreamDownloadFailed(int(payload.get("upstream_status") or status_code), details)
        error.message = message
        error.args = (message,)
        return error
    if cls is UpstreamRejected:
        return UpstreamRejected(message, details, upstream_status=status_code)
    return cls(message, details)
