"""High-level exports for the linkmeta workflows."""

from .resolver import (
    DEFAULT_POLICY,
    LinkMetadata,
    LinkResolver,
    ResolverPolicy,
    resolve,
    with_section_type,
)
from .safe_fetch import FetchConfig, FetchedPage, SafeFetcher
from .embed_utils import Embed, validate_embed_url
from .bandcamp_utils import BandcampSession
from .rate_limiter import SlidingWindowRateLimiter
from .errors import (
    APIError,
    APIKeyMissingError,
    BlockedURLError,
    LinkMetadataError,
    NotFoundError,
    RateLimitedError,
)

__all__ = [
    "DEFAULT_POLICY",
    "LinkMetadata",
    "LinkResolver",
    "ResolverPolicy",
    "resolve",
    "with_section_type",
    "FetchConfig",
    "FetchedPage",
    "SafeFetcher",
    "Embed",
    "validate_embed_url",
    "BandcampSession",
    "SlidingWindowRateLimiter",
    "APIError",
    "APIKeyMissingError",
    "BlockedURLError",
    "LinkMetadataError",
    "NotFoundError",
    "RateLimitedError",
]
