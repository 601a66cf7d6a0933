"""Exception hierarchy for the exporter."""

from typing import Optional


# Status codes worth another attempt within the retry budget
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class ExporterError(Exception):
    """Base class for all exporter errors."""


class ConfigError(ExporterError):
    """Invalid or incomplete exporter configuration."""


class RendezvousError(ExporterError):
    """One-shot handoff written or read more than once."""


class UpstreamError(ExporterError):
    """Failure talking to the Cloudflare API."""

    retryable = False


class UpstreamTransportError(UpstreamError):
    """Network-level failure (connect, read, timeout)."""

    retryable = True


class UpstreamStatusError(UpstreamError):
    """Non-2xx HTTP response."""

    def __init__(self, status_code: int, url: str, body: Optional[str] = None):
        self.status_code = status_code
        self.url = url
        self.body = body
        message = f"HTTP {status_code} from {url}"
        if body:
            message += f": {body[:200]}"
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES


class UpstreamDecodeError(UpstreamError):
    """Malformed payload or an envelope reporting success=false."""


def is_retryable(error: BaseException) -> bool:
    """
    Classify an error as transient.

    Args:
        error: Exception raised by an upstream call

    Returns:
        bool: True if the retry handler should try again
    """
    return bool(getattr(error, "retryable", False))
