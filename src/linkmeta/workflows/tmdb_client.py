"""TMDB (The Movie Database) v3 client."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from .api_client import JSONAPIClient
from .errors import APIKeyMissingError
from .linkmeta_config import (
    API_TIMEOUT_SECONDS,
    TMDB_API_KEY_ENV,
    TMDB_BASE_URL,
    TMDB_RATE_LIMIT,
    TMDB_RATE_WINDOW_SECONDS,
    TMDB_USER_AGENT,
)
from .linkmeta_utils import env_int
from .rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

DETAIL_APPENDS = "credits,videos,external_ids"


def _str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _float(value: Any) -> float:
    try:
        return float(value or 0.0)
    except (TypeError, ValueError):
        return 0.0


def _dicts(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


@dataclass
class SearchResult:
    """One hit from ``/search/movie``, ``/search/tv`` or ``/find``.

    ``title`` holds the movie title or the series name; ``release_date`` the
    release or first-air date.
    """

    id: int
    title: str
    release_date: str = ""
    overview: str = ""
    poster_path: str = ""
    backdrop_path: str = ""
    vote_average: float = 0.0
    popularity: float = 0.0

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SearchResult":
        return cls(
            id=_int(payload.get("id")),
            title=_str(payload.get("title")) or _str(payload.get("name")),
            release_date=_str(payload.get("release_date")) or _str(payload.get("first_air_date")),
            overview=_str(payload.get("overview")),
            poster_path=_str(payload.get("poster_path")),
            backdrop_path=_str(payload.get("backdrop_path")),
            vote_average=_float(payload.get("vote_average")),
            popularity=_float(payload.get("popularity")),
        )


@dataclass
class CastMember:
    name: str
    character: str = ""
    order: int = 0


@dataclass
class Video:
    key: str
    site: str = ""
    type: str = ""
    official: bool = False
    name: str = ""


@dataclass
class Season:
    season_number: int
    episode_count: int = 0
    air_date: str = ""
    name: str = ""
    overview: str = ""
    poster_path: str = ""


@dataclass
class TitleDetails:
    """Movie or TV detail record with credits, videos and external ids appended."""

    id: int
    media_type: str
    title: str = ""
    overview: str = ""
    poster_path: str = ""
    backdrop_path: str = ""
    runtime: int = 0
    genres: List[str] = field(default_factory=list)
    release_date: str = ""
    cast: List[CastMember] = field(default_factory=list)
    director: str = ""
    vote_average: float = 0.0
    videos: List[Video] = field(default_factory=list)
    seasons: List[Season] = field(default_factory=list)
    imdb_id: str = ""
    external_imdb_id: str = ""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], media_type: str) -> "TitleDetails":
        credits = payload.get("credits") if isinstance(payload.get("credits"), dict) else {}
        videos = payload.get("videos") if isinstance(payload.get("videos"), dict) else {}
        external_ids = payload.get("external_ids") if isinstance(payload.get("external_ids"), dict) else {}

        runtime = _int(payload.get("runtime"))
        if runtime <= 0 and media_type == "tv":
            runtime = next(
                (minutes for minutes in (_int(v) for v in payload.get("episode_run_time") or []) if minutes > 0),
                0,
            )

        return cls(
            id=_int(payload.get("id")),
            media_type=media_type,
            title=_str(payload.get("title")) or _str(payload.get("name")),
            overview=_str(payload.get("overview")),
            poster_path=_str(payload.get("poster_path")),
            backdrop_path=_str(payload.get("backdrop_path")),
            runtime=runtime,
            genres=[_str(g.get("name")) for g in _dicts(payload.get("genres")) if _str(g.get("name"))],
            release_date=_str(payload.get("release_date")) or _str(payload.get("first_air_date")),
            cast=[
                CastMember(name=_str(c.get("name")), character=_str(c.get("character")), order=_int(c.get("order")))
                for c in _dicts(credits.get("cast"))
            ],
            director=extract_director(_dicts(credits.get("crew"))),
            vote_average=_float(payload.get("vote_average")),
            videos=[
                Video(
                    key=_str(v.get("key")),
                    site=_str(v.get("site")),
                    type=_str(v.get("type")),
                    official=bool(v.get("official")),
                    name=_str(v.get("name")),
                )
                for v in _dicts(videos.get("results"))
            ],
            seasons=[
                Season(
                    season_number=_int(s.get("season_number")),
                    episode_count=_int(s.get("episode_count")),
                    air_date=_str(s.get("air_date")),
                    name=_str(s.get("name")),
                    overview=_str(s.get("overview")),
                    poster_path=_str(s.get("poster_path")),
                )
                for s in _dicts(payload.get("seasons"))
            ],
            imdb_id=_str(payload.get("imdb_id")),
            external_imdb_id=_str(external_ids.get("imdb_id")),
        )


@dataclass
class FindResult:
    movie_results: List[SearchResult] = field(default_factory=list)
    tv_results: List[SearchResult] = field(default_factory=list)


def extract_director(crew: List[Dict[str, Any]]) -> str:
    for member in crew:
        if _str(member.get("job")).lower() == "director" and _str(member.get("name")):
            return _str(member.get("name"))
    return ""


class TMDBClient(JSONAPIClient):
    """Rate-limited TMDB client; every call waits for a limiter slot first."""

    provider = "tmdb"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = TMDB_BASE_URL,
        limiter: Optional[SlidingWindowRateLimiter] = None,
        timeout: float = API_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        api_key = (api_key or "").strip()
        if not api_key:
            raise APIKeyMissingError(self.provider, TMDB_API_KEY_ENV)
        super().__init__(base_url, user_agent=TMDB_USER_AGENT, timeout=timeout, session=session)
        self.api_key = api_key
        self.limiter = limiter or SlidingWindowRateLimiter(
            env_int("LINKMETA_TMDB_RATE_LIMIT", TMDB_RATE_LIMIT),
            TMDB_RATE_WINDOW_SECONDS,
        )

    @classmethod
    def from_env(cls, **kwargs: Any) -> "TMDBClient":
        return cls(os.getenv(TMDB_API_KEY_ENV, ""), **kwargs)

    async def _acquire(self) -> None:
        await self.limiter.wait()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        query = dict(params or {})
        query["api_key"] = self.api_key
        payload = await self._get_json(path, query)
        return payload if isinstance(payload, dict) else {}

    async def search_movie(self, query: str) -> List[SearchResult]:
        query = (query or "").strip()
        if not query:
            raise ValueError("movie query is required")
        payload = await self._get("/search/movie", {"query": query})
        return [SearchResult.from_payload(item) for item in _dicts(payload.get("results"))]

    async def search_tv(self, query: str) -> List[SearchResult]:
        query = (query or "").strip()
        if not query:
            raise ValueError("tv query is required")
        payload = await self._get("/search/tv", {"query": query})
        return [SearchResult.from_payload(item) for item in _dicts(payload.get("results"))]

    async def get_movie_details(self, tmdb_id: int) -> TitleDetails:
        if tmdb_id <= 0:
            raise ValueError("tmdb movie id must be positive")
        payload = await self._get(f"/movie/{tmdb_id}", {"append_to_response": DETAIL_APPENDS})
        return TitleDetails.from_payload(payload, "movie")

    async def get_tv_details(self, tmdb_id: int) -> TitleDetails:
        if tmdb_id <= 0:
            raise ValueError("tmdb tv id must be positive")
        payload = await self._get(f"/tv/{tmdb_id}", {"append_to_response": DETAIL_APPENDS})
        return TitleDetails.from_payload(payload, "tv")

    async def find_by_imdb_id(self, imdb_id: str) -> FindResult:
        imdb_id = (imdb_id or "").strip()
        if not imdb_id:
            raise ValueError("imdb id is required")
        payload = await self._get(f"/find/{quote(imdb_id, safe='')}", {"external_source": "imdb_id"})
        return FindResult(
            movie_results=[SearchResult.from_payload(item) for item in _dicts(payload.get("movie_results"))],
            tv_results=[SearchResult.from_payload(item) for item in _dicts(payload.get("tv_results"))],
        )


__all__ = [
    "TMDBClient",
    "SearchResult",
    "TitleDetails",
    "CastMember",
    "Video",
    "Season",
    "FindResult",
    "extract_director",
]
