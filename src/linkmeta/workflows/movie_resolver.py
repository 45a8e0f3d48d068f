"""Resolve movie and TV links (IMDb, TMDB, Rotten Tomatoes, Letterboxd) into a MovieRecord.

IMDb and TMDB URLs carry a catalog id directly. Rotten Tomatoes and Letterboxd
URLs carry a slug, which becomes a TMDB search query disambiguated by
:func:`score_title_match`. Once a TMDB id is known the detail record is built
and then enriched with the IMDb id and OMDb rating scores, filling only empty
fields.
"""

from __future__ import annotations

import contextlib
import contextvars
import dataclasses
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from .errors import APIError, NotFoundError
from .linkmeta_config import (
    MOVIE_CAST_MAX,
    MOVIE_MATCH_SCORE_FLOOR,
    MOVIE_SECTION_TYPES,
    ROTTEN_TOMATOES_BASE_URL,
    TMDB_BACKDROP_SIZE,
    TMDB_IMAGE_BASE_URL,
    TMDB_POSTER_SIZE,
)
from .linkmeta_utils import host_matches, is_empty_value, split_url_path
from .omdb_client import IMDB_ID_RE, OMDBClient
from .tmdb_client import SearchResult, TitleDetails, TMDBClient, Video

logger = logging.getLogger(__name__)

LEADING_DIGITS_RE = re.compile(r"^(\d+)")
TRAILING_YEAR_RE = re.compile(r"[_-](19\d{2}|20\d{2})$")
SLUG_DELIMITERS_RE = re.compile(r"[_-]+")
RT_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")

RT_SCORE_PATTERNS = (
    re.compile(r"tomatometerscore\s*=\s*[\"'](\d{1,3})[\"']", re.IGNORECASE),
    re.compile(r"\"tomatometerScore\"\s*:\s*\{.*?\"score\"\s*:\s*(\d{1,3})", re.IGNORECASE | re.DOTALL),
    re.compile(r"\"criticsScore\"\s*:\s*(\d{1,3})", re.IGNORECASE),
)

# (official required, video type or "" for any)
TRAILER_MATCHERS = ((True, "trailer"), (False, "trailer"), (True, "teaser"), (False, ""))

_section_type: contextvars.ContextVar[str] = contextvars.ContextVar("linkmeta_section_type", default="")


@contextlib.contextmanager
def with_section_type(section_type: Optional[str]) -> Iterator[None]:
    """Scope the section-type hint for resolutions started inside the block."""

    token = _section_type.set((section_type or "").strip().lower())
    try:
        yield
    finally:
        _section_type.reset(token)


def current_section_type() -> str:
    return _section_type.get()


def should_extract_movie_metadata() -> bool:
    return current_section_type() in MOVIE_SECTION_TYPES


@dataclass
class MovieRecord:
    title: str = ""
    overview: str = ""
    poster: str = ""
    backdrop: str = ""
    runtime: int = 0
    genres: List[str] = field(default_factory=list)
    release_date: str = ""
    cast: List[Dict[str, str]] = field(default_factory=list)
    director: str = ""
    tmdb_rating: float = 0.0
    trailer_key: str = ""
    tmdb_id: int = 0
    tmdb_media_type: str = ""
    seasons: List[Dict[str, Any]] = field(default_factory=list)
    imdb_id: str = ""
    rotten_tomatoes_score: Optional[int] = None
    metacritic_score: Optional[int] = None
    rotten_tomatoes_url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for key, value in dataclasses.asdict(self).items():
            # A 0% score is still a score.
            if key.endswith("_score") and value is not None:
                payload[key] = value
            elif not is_empty_value(value):
                payload[key] = value
        return payload


# URL parsing

def parse_imdb_id(segments: Sequence[str]) -> Optional[str]:
    if len(segments) < 2 or segments[0].lower() != "title":
        return None
    imdb_id = segments[1].strip().lower()
    return imdb_id if IMDB_ID_RE.match(imdb_id) else None


def parse_tmdb_path(segments: Sequence[str]) -> Optional[Tuple[str, int]]:
    if len(segments) < 2:
        return None
    media_type = segments[0].strip().lower()
    if media_type not in ("movie", "tv"):
        return None
    match = LEADING_DIGITS_RE.match(segments[1].strip())
    if not match or int(match.group(1)) <= 0:
        return None
    return media_type, int(match.group(1))


def parse_letterboxd_slug(segments: Sequence[str]) -> Optional[str]:
    if len(segments) < 2 or segments[0].lower() != "film":
        return None
    return segments[1].strip() or None


def parse_rotten_tomatoes_path(segments: Sequence[str]) -> Optional[Tuple[str, str]]:
    if len(segments) < 2:
        return None
    media_type = {"m": "movie", "tv": "tv"}.get(segments[0].strip().lower())
    slug = segments[1].strip()
    if not media_type or not slug:
        return None
    return media_type, slug


def slug_words(slug: str) -> str:
    """``blade-runner-2049`` -> ``"blade runner 2049"`` with no year handling."""

    slug = (slug or "").strip().lower().strip("/")
    return " ".join(SLUG_DELIMITERS_RE.sub(" ", slug).split())


def slug_to_title(slug: str) -> Tuple[str, int]:
    """``it_2017`` -> ``("it", 2017)``; ``the-matrix`` -> ``("the matrix", 0)``."""

    slug = (slug or "").strip().lower().strip("/")
    if not slug:
        return "", 0
    year = 0
    match = TRAILING_YEAR_RE.search(slug)
    if match:
        year = int(match.group(1))
        slug = slug[: match.start()]
    return slug_words(slug), year


# Matching

def normalize_match_value(value: str) -> str:
    chars = []
    for ch in value or "":
        if ch.isalpha():
            chars.append(ch.lower())
        elif ch.isdigit():
            chars.append(ch)
        else:
            chars.append(" ")
    return " ".join("".join(chars).split())


def year_from_date(value: str) -> int:
    head = (value or "").strip().split("-")[0]
    if len(head) != 4 or not head.isdigit():
        return 0
    return int(head)


def score_title_match(query: str, candidate: str, expected_year: int = 0, candidate_year: int = 0) -> int:
    q = normalize_match_value(query)
    c = normalize_match_value(candidate)
    if not q or not c:
        return 0

    score = 0
    if q == c:
        score += 100
    if c.startswith(q) or q.startswith(c):
        score += 20
    if q in c or c in q:
        score += 15

    query_tokens = q.split()
    if query_tokens:
        candidate_tokens = set(c.split())
        matches = sum(1 for token in query_tokens if token in candidate_tokens)
        score += matches * 60 // len(query_tokens)

    if expected_year > 0 and candidate_year > 0:
        score += 15 if expected_year == candidate_year else -10
    return score


def select_best_result(
    query: str,
    year: int,
    results: Sequence[SearchResult],
    full_query: str = "",
) -> Optional[SearchResult]:
    """Highest score at or above the floor; ties go to popularity, then vote average.

    ``full_query`` is the slug title with its trailing number kept. When given,
    each candidate is also scored against it (without a year) and keeps the
    higher score, so titles such as "Blade Runner 2049" still match exactly.
    """

    best: Optional[SearchResult] = None
    best_key: Tuple[int, float, float] = (0, -1.0, -1.0)
    for result in results:
        if result.id <= 0:
            continue
        score = score_title_match(query, result.title, year, year_from_date(result.release_date))
        if full_query and full_query != query:
            score = max(score, score_title_match(full_query, result.title))
        if score < MOVIE_MATCH_SCORE_FLOOR:
            continue
        key = (score, result.popularity, result.vote_average)
        if best is None or key > best_key:
            best, best_key = result, key
    return best


# Record building

def tmdb_image_url(path: str, size: str) -> str:
    path = (path or "").strip()
    if not path:
        return ""
    if path.startswith(("https://", "http://")):
        return path
    if not path.startswith("/"):
        path = "/" + path
    return f"{TMDB_IMAGE_BASE_URL}/{size}{path}"


def select_trailer_key(videos: Sequence[Video]) -> str:
    for official_required, kind in TRAILER_MATCHERS:
        for video in videos:
            if video.site.strip().lower() != "youtube":
                continue
            if kind and video.type.strip().lower() != kind:
                continue
            if official_required and not video.official:
                continue
            if video.key.strip():
                return video.key.strip()
    return ""


def movie_from_details(details: TitleDetails) -> MovieRecord:
    cast = sorted((member for member in details.cast if member.name), key=lambda member: member.order)
    seasons = sorted(details.seasons, key=lambda season: season.season_number)
    return MovieRecord(
        title=details.title,
        overview=details.overview,
        poster=tmdb_image_url(details.poster_path, TMDB_POSTER_SIZE),
        backdrop=tmdb_image_url(details.backdrop_path, TMDB_BACKDROP_SIZE),
        runtime=details.runtime,
        genres=list(details.genres),
        release_date=details.release_date,
        cast=[{"name": member.name, "character": member.character} for member in cast[:MOVIE_CAST_MAX]],
        director=details.director,
        tmdb_rating=details.vote_average,
        trailer_key=select_trailer_key(details.videos),
        tmdb_id=details.id,
        tmdb_media_type=details.media_type,
        seasons=[
            {
                key: value
                for key, value in {
                    "season_number": season.season_number,
                    "episode_count": season.episode_count,
                    "air_date": season.air_date,
                    "name": season.name,
                    "overview": season.overview,
                    "poster": tmdb_image_url(season.poster_path, TMDB_POSTER_SIZE),
                }.items()
                if key == "season_number" or not is_empty_value(value)
            }
            for season in seasons
        ],
    )


def normalize_rotten_tomatoes_slug(raw: str) -> str:
    slug = (raw or "").strip().lower().strip("/")
    if not slug:
        return ""
    if slug.startswith(("m/", "tv/")):
        slug = slug.split("/", 1)[1]
    slug = RT_SLUG_STRIP_RE.sub("_", slug.replace("-", "_"))
    return "_".join(part for part in slug.split("_") if part)


def build_rotten_tomatoes_url(media_type: str, slug: str) -> str:
    if not slug:
        return ""
    section = "tv" if media_type.strip().lower() in ("tv", "series") else "m"
    return f"{ROTTEN_TOMATOES_BASE_URL}/{section}/{slug}"


def set_external_links(movie: MovieRecord, media_type: str, imdb_id: str, rotten_tomatoes_slug: str = "") -> None:
    imdb_id = (imdb_id or "").strip().lower()
    if IMDB_ID_RE.match(imdb_id):
        movie.imdb_id = imdb_id
    slug = normalize_rotten_tomatoes_slug(rotten_tomatoes_slug) or normalize_rotten_tomatoes_slug(movie.title)
    if slug:
        movie.rotten_tomatoes_url = build_rotten_tomatoes_url(media_type, slug)


def extract_rotten_tomatoes_score(body: bytes) -> Optional[int]:
    """Tomatometer score scraped from a Rotten Tomatoes page, if present."""

    if not body:
        return None
    text = body.decode("utf-8", "ignore")
    for pattern in RT_SCORE_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        score = int(match.group(1))
        if 0 <= score <= 100:
            return score
    return None


def enrich_with_page_score(movie: Optional[MovieRecord], page_url: str, body: bytes) -> None:
    if movie is None or movie.rotten_tomatoes_score is not None or not body:
        return
    if not host_matches(urlparse(page_url).hostname or "", "rottentomatoes.com"):
        return
    score = extract_rotten_tomatoes_score(body)
    if score is not None:
        movie.rotten_tomatoes_score = score


class MovieResolver:
    """Turn a movie/TV URL into a :class:`MovieRecord` using TMDB and (optionally) OMDb."""

    def __init__(self, tmdb: TMDBClient, omdb: Optional[OMDBClient] = None) -> None:
        self.tmdb = tmdb
        self.omdb = omdb

    async def resolve(self, raw_url: str) -> Optional[MovieRecord]:
        try:
            parsed = urlparse(raw_url or "")
            host = parsed.hostname or ""
        except ValueError:
            return None
        segments = split_url_path(parsed.path)

        if host_matches(host, "imdb.com"):
            imdb_id = parse_imdb_id(segments)
            return await self._from_imdb(imdb_id) if imdb_id else None
        if host_matches(host, "themoviedb.org"):
            parsed_path = parse_tmdb_path(segments)
            return await self.from_tmdb(*parsed_path) if parsed_path else None
        if host_matches(host, "letterboxd.com"):
            slug = parse_letterboxd_slug(segments)
            return await self._from_slug("movie", slug) if slug else None
        if host_matches(host, "rottentomatoes.com"):
            rt_path = parse_rotten_tomatoes_path(segments)
            if not rt_path:
                return None
            media_type, slug = rt_path
            return await self._from_slug(media_type, slug, rotten_tomatoes_slug=slug)
        return None

    async def _from_imdb(self, imdb_id: str) -> Optional[MovieRecord]:
        found = await self.tmdb.find_by_imdb_id(imdb_id)
        for media_type, results in (("movie", found.movie_results), ("tv", found.tv_results)):
            for result in results:
                if result.id > 0:
                    return await self.from_tmdb(media_type, result.id)
        return None

    async def _from_slug(
        self,
        media_type: str,
        slug: str,
        *,
        rotten_tomatoes_slug: str = "",
    ) -> Optional[MovieRecord]:
        query, year = slug_to_title(slug)
        if not query:
            return None
        if media_type == "tv":
            results = await self.tmdb.search_tv(query)
        else:
            results = await self.tmdb.search_movie(query)
        match = select_best_result(query, year, results, full_query=slug_words(slug) if year else "")
        if match is None:
            logger.debug("No %s candidate above score floor for slug %r", media_type, slug)
            return None
        movie = await self.from_tmdb(media_type, match.id, verify_imdb_id=True)
        if movie is not None and rotten_tomatoes_slug:
            set_external_links(movie, media_type, movie.imdb_id, rotten_tomatoes_slug)
        return movie

    async def from_tmdb(self, media_type: str, tmdb_id: int, *, verify_imdb_id: bool = False) -> Optional[MovieRecord]:
        media_type = "tv" if media_type in ("tv", "series") else media_type
        if media_type == "movie":
            details = await self.tmdb.get_movie_details(tmdb_id)
            candidates = (details.imdb_id, details.external_imdb_id)
        elif media_type == "tv":
            details = await self.tmdb.get_tv_details(tmdb_id)
            candidates = (details.external_imdb_id,)
        else:
            return None
        movie = movie_from_details(details)
        imdb_id = await self._resolve_imdb_id(media_type, details.id, candidates, verify_imdb_id)
        set_external_links(movie, media_type, imdb_id)
        await self.enrich_with_omdb(movie, imdb_id)
        return movie

    async def _resolve_imdb_id(
        self,
        media_type: str,
        tmdb_id: int,
        candidates: Sequence[str],
        verify: bool,
    ) -> str:
        seen = set()
        for candidate in candidates:
            normalized = (candidate or "").strip().lower()
            if not IMDB_ID_RE.match(normalized) or normalized in seen:
                continue
            seen.add(normalized)
            if not verify or await self._imdb_id_matches(media_type, tmdb_id, normalized):
                return normalized
        return ""

    async def _imdb_id_matches(self, media_type: str, tmdb_id: int, imdb_id: str) -> bool:
        try:
            found = await self.tmdb.find_by_imdb_id(imdb_id)
        except APIError as exc:
            logger.warning("tmdb imdb verification failed imdb_id=%s tmdb_id=%s: %s", imdb_id, tmdb_id, exc)
            return False
        results = found.movie_results if media_type == "movie" else found.tv_results
        if any(result.id == tmdb_id for result in results):
            return True
        logger.debug("tmdb imdb verification mismatch imdb_id=%s tmdb_id=%s", imdb_id, tmdb_id)
        return False

    async def enrich_with_omdb(self, movie: MovieRecord, imdb_id: str) -> None:
        """Fill missing rating scores from OMDb; every failure just skips enrichment."""

        imdb_id = (imdb_id or "").strip().lower()
        if self.omdb is None or not IMDB_ID_RE.match(imdb_id):
            return
        try:
            ratings = await self.omdb.get_ratings_by_imdb_id(imdb_id)
        except NotFoundError:
            return
        except APIError as exc:
            logger.debug("omdb enrichment skipped imdb_id=%s: %s", imdb_id, exc)
            return
        if ratings is None:
            return
        if movie.rotten_tomatoes_score is None:
            movie.rotten_tomatoes_score = ratings.rotten_tomatoes_score
        if movie.metacritic_score is None:
            movie.metacritic_score = ratings.metacritic_score


__all__ = [
    "MovieRecord",
    "MovieResolver",
    "with_section_type",
    "current_section_type",
    "should_extract_movie_metadata",
    "parse_imdb_id",
    "parse_tmdb_path",
    "parse_letterboxd_slug",
    "parse_rotten_tomatoes_path",
    "slug_to_title",
    "slug_words",
    "normalize_match_value",
    "year_from_date",
    "score_title_match",
    "select_best_result",
    "tmdb_image_url",
    "select_trailer_key",
    "movie_from_details",
    "normalize_rotten_tomatoes_slug",
    "build_rotten_tomatoes_url",
    "set_external_links",
    "extract_rotten_tomatoes_score",
    "enrich_with_page_score",
]
