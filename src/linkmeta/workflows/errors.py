"""Exception hierarchy for link resolution and provider API calls."""

from __future__ import annotations

import asyncio
from typing import Optional

import aiohttp


class LinkMetadataError(Exception):
    """Base class for every error raised by linkmeta."""


class InvalidURLError(LinkMetadataError):
    """The submitted URL is malformed or uses an unsupported scheme."""


class BlockedURLError(LinkMetadataError):
    """The URL targets a host or address on the SSRF blocklist."""


class DNSResolutionError(LinkMetadataError):
    """The host could not be resolved to any address."""


class RedirectLimitError(LinkMetadataError):
    """The redirect chain exceeded the configured bound."""


class FetchStatusError(LinkMetadataError):
    def __init__(self, status: int, reason: str = "") -> None:
        self.status = status
        self.reason = reason
        super().__init__(f"unexpected status: {status} {reason}".strip())


class FetchError(LinkMetadataError):
    """Transport-level failure fetching a page."""


class EmbedValidationError(LinkMetadataError):
    """An embed URL failed the https/allowlist check."""


class APIError(LinkMetadataError):
    """Non-success response from a provider API.

    ``from_response`` returns the most specific subclass for the status code so
    callers can ``except NotFoundError`` / ``except RateLimitedError`` instead
    of inspecting messages.
    """

    def __init__(
        self,
        provider: str,
        status_code: int,
        message: str,
        retry_after: Optional[float] = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        self.message = message
        self.retry_after = retry_after
        super().__init__(str(self))

    def __str__(self) -> str:
        text = f"{self.provider} api error ({self.status_code}): {self.message}"
        if self.retry_after:
            text = f"{text} (retry after {self.retry_after:g}s)"
        return text

    @property
    def kind(self) -> str:
        return "generic"

    @classmethod
    def from_response(
        cls,
        provider: str,
        status_code: int,
        message: str,
        retry_after: Optional[float] = None,
    ) -> "APIError":
        if status_code == 404:
            return NotFoundError(provider, status_code, message, retry_after)
        if status_code == 429:
            return RateLimitedError(provider, status_code, message, retry_after)
        return APIError(provider, status_code, message, retry_after)


class NotFoundError(APIError):
    @property
    def kind(self) -> str:
        return "not_found"


class RateLimitedError(APIError):
    @property
    def kind(self) -> str:
        return "rate_limited"


class APIKeyMissingError(LinkMetadataError):
    def __init__(self, provider: str, env_var: str) -> None:
        self.provider = provider
        self.env_var = env_var
        super().__init__(f"{provider} api key is required (set {env_var})")


def classify_fetch_error(exc: Optional[BaseException]) -> str:
    """Return a short tag describing a primary-fetch failure."""

    if exc is None:
        return ""
    if isinstance(exc, (asyncio.TimeoutError, asyncio.CancelledError, aiohttp.ServerTimeoutError)):
        return "timeout"
    if isinstance(exc, InvalidURLError):
        return "invalid_url"
    if isinstance(exc, BlockedURLError):
        return "blocked"
    if isinstance(exc, FetchStatusError):
        return "http_status"
    if isinstance(exc, DNSResolutionError):
        return "dns"
    if isinstance(exc, RedirectLimitError):
        return "redirect"
    return "fetch_error"


__all__ = [
    "LinkMetadataError",
    "InvalidURLError",
    "BlockedURLError",
    "DNSResolutionError",
    "RedirectLimitError",
    "FetchStatusError",
    "FetchError",
    "EmbedValidationError",
    "APIError",
    "NotFoundError",
    "RateLimitedError",
    "APIKeyMissingError",
    "classify_fetch_error",
]
