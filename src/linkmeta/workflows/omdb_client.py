"""OMDb ratings client (Rotten Tomatoes and Metacritic scores by IMDb id)."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import aiohttp

from .api_client import JSONAPIClient
from .errors import APIError, APIKeyMissingError, NotFoundError, RateLimitedError
from .linkmeta_config import (
    API_TIMEOUT_SECONDS,
    OMDB_API_KEY_ENV,
    OMDB_BASE_URL,
    OMDB_DAILY_LIMIT,
    OMDB_DAILY_WINDOW_SECONDS,
    OMDB_USER_AGENT,
)
from .linkmeta_utils import env_int
from .rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

IMDB_ID_RE = re.compile(r"^tt\d+$")

_RATE_LIMIT_MARKERS = ("request limit reached",)
_NOT_FOUND_MARKERS = ("movie not found", "series not found", "incorrect imdb id")


@dataclass
class OMDBRatings:
    rotten_tomatoes_score: Optional[int] = None
    metacritic_score: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def classify_omdb_error(status: int, message: str) -> APIError:
    """OMDb reports most failures in the body, so classify on message text too."""

    lowered = (message or "").lower()
    if status == 429 or any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return RateLimitedError("omdb", status, message)
    if status == 404 or any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return NotFoundError("omdb", status, message)
    return APIError("omdb", status, message)


def _bounded_score(raw: str) -> Optional[int]:
    try:
        score = int(raw.strip())
    except (AttributeError, ValueError):
        return None
    if 0 <= score <= 100:
        return score
    return None


def parse_percent(raw: str) -> Optional[int]:
    return _bounded_score((raw or "").strip().removesuffix("%"))


def parse_out_of_100(raw: str) -> Optional[int]:
    parts = (raw or "").strip().split("/", 1)
    if len(parts) != 2 or parts[1].strip() != "100":
        return None
    return _bounded_score(parts[0])


def parse_metascore(raw: str) -> Optional[int]:
    value = (raw or "").strip()
    if not value or value.upper() == "N/A":
        return None
    return _bounded_score(value)


def extract_ratings(payload: Dict[str, Any]) -> OMDBRatings:
    ratings = OMDBRatings()
    for entry in payload.get("Ratings") or []:
        if not isinstance(entry, dict):
            continue
        source = str(entry.get("Source") or "").strip().lower()
        value = str(entry.get("Value") or "")
        if source == "rotten tomatoes":
            score = parse_percent(value)
            if score is not None:
                ratings.rotten_tomatoes_score = score
        elif source == "metacritic":
            score = parse_out_of_100(value)
            if score is not None:
                ratings.metacritic_score = score
    if ratings.metacritic_score is None:
        ratings.metacritic_score = parse_metascore(str(payload.get("Metascore") or ""))
    return ratings


class OMDBClient(JSONAPIClient):
    """OMDb client with a non-blocking daily quota.

    Once the quota is spent, calls raise :class:`RateLimitedError` without
    touching the network so callers can skip rating enrichment.
    """

    provider = "omdb"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = OMDB_BASE_URL,
        limiter: Optional[SlidingWindowRateLimiter] = None,
        timeout: float = API_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        api_key = (api_key or "").strip()
        if not api_key:
            raise APIKeyMissingError(self.provider, OMDB_API_KEY_ENV)
        super().__init__(base_url, user_agent=OMDB_USER_AGENT, timeout=timeout, session=session)
        self.api_key = api_key
        self.limiter = limiter or SlidingWindowRateLimiter(
            env_int("LINKMETA_OMDB_DAILY_LIMIT", OMDB_DAILY_LIMIT),
            OMDB_DAILY_WINDOW_SECONDS,
        )

    @classmethod
    def from_env(cls, **kwargs: Any) -> "OMDBClient":
        return cls(os.getenv(OMDB_API_KEY_ENV, ""), **kwargs)

    async def _acquire(self) -> None:
        if not self.limiter.allow():
            logger.warning("omdb daily quota reached")
            raise RateLimitedError(self.provider, 429, "daily quota reached")

    def _build_error(self, status: int, message: str, retry_after: Optional[float]) -> APIError:
        err = classify_omdb_error(status, message)
        err.retry_after = retry_after
        return err

    async def get_ratings_by_imdb_id(self, imdb_id: str) -> Optional[OMDBRatings]:
        """Return scores for ``imdb_id``, or None when OMDb has neither score."""

        imdb_id = (imdb_id or "").strip().lower()
        if not IMDB_ID_RE.match(imdb_id):
            raise ValueError("valid imdb id is required")
        payload = await self._get_json("/", {"apikey": self.api_key, "i": imdb_id})
        if not isinstance(payload, dict):
            raise APIError(self.provider, 502, "unexpected omdb payload")
        if str(payload.get("Response") or "").strip().lower() != "true":
            message = str(payload.get("Error") or "").strip() or "unknown omdb error"
            raise classify_omdb_error(502, message)
        ratings = extract_ratings(payload)
        if ratings.rotten_tomatoes_score is None and ratings.metacritic_score is None:
            return None
        return ratings


__all__ = [
    "OMDBClient",
    "OMDBRatings",
    "IMDB_ID_RE",
    "classify_omdb_error",
    "extract_ratings",
    "parse_percent",
    "parse_out_of_100",
    "parse_metascore",
]
