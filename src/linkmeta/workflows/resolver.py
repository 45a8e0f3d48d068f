"""Resolve one user-submitted URL into a preview metadata map.

The page is fetched once through :class:`SafeFetcher`; meta tags, the embed
chain, the recipe tiers and the movie/book resolvers are layered on top.
Only URL validation and the primary fetch can fail a resolution. Every
enrichment step is best-effort and degrades to "not present".
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import aiohttp
from dotenv import load_dotenv

from ..core.keys import (
    K_ARTIST,
    K_AUTHOR,
    K_BOOK_DATA,
    K_DESCRIPTION,
    K_IMAGE,
    K_MOVIE,
    K_PROVIDER,
    K_RECIPE,
    K_RELEASE_DATE,
    K_SITE_NAME,
    K_TITLE,
    K_TYPE,
)
from .bandcamp_utils import BandcampSession, default_session, fetch_bandcamp_page, is_bandcamp_host
from .book_resolver import BookRecord, BookResolver, should_extract_book_metadata
from .embed_extractors import EmbedChain, default_chain
from .embed_utils import Embed, apply_embed_metadata
from .errors import APIKeyMissingError, FetchStatusError, LinkMetadataError
from .html_meta import extract_html_meta, parse_html, preview_fields
from .linkmeta_config import (
    API_TIMEOUT_SECONDS,
    FETCH_TIMEOUT_SECONDS,
    MAX_BODY_BYTES,
    MAX_FETCH_RETRIES,
    MAX_REDIRECTS,
    OMDB_DAILY_LIMIT,
    OMDB_DAILY_WINDOW_SECONDS,
    TMDB_RATE_LIMIT,
    TMDB_RATE_WINDOW_SECONDS,
)
from .linkmeta_utils import detect_provider, env_float, env_int, url_host
from .movie_resolver import (
    MovieRecord,
    MovieResolver,
    enrich_with_page_score,
    should_extract_movie_metadata,
    with_section_type,
)
from .omdb_client import OMDBClient
from .openlibrary_client import OpenLibraryClient
from .rate_limiter import SlidingWindowRateLimiter
from .recipe_extractor import RecipeRecord, parse_recipe_if_present
from .safe_fetch import FetchConfig, FetchedPage, SafeFetcher, looks_like_image_url
from .tmdb_client import TMDBClient

load_dotenv(override=True)

logger = logging.getLogger(__name__)


# Central policy object; env overrides are read once at import.
@dataclass(frozen=True, slots=True)
class ResolverPolicy:
    fetch_timeout: float = FETCH_TIMEOUT_SECONDS
    max_body_bytes: int = MAX_BODY_BYTES
    max_redirects: int = MAX_REDIRECTS
    max_retries: int = MAX_FETCH_RETRIES
    api_timeout: float = API_TIMEOUT_SECONDS
    tmdb_rate_limit: int = TMDB_RATE_LIMIT
    omdb_daily_limit: int = OMDB_DAILY_LIMIT
    extract_embeds: bool = True
    extract_recipes: bool = True
    extract_books: bool = True

    def fetch_config(self) -> FetchConfig:
        return FetchConfig(
            timeout=self.fetch_timeout,
            max_body_bytes=self.max_body_bytes,
            max_redirects=self.max_redirects,
            max_retries=self.max_retries,
        )


def _policy_from_env() -> ResolverPolicy:
    return ResolverPolicy(
        fetch_timeout=env_float("LINKMETA_FETCH_TIMEOUT", FETCH_TIMEOUT_SECONDS),
        max_body_bytes=env_int("LINKMETA_MAX_BODY_BYTES", MAX_BODY_BYTES),
        tmdb_rate_limit=env_int("LINKMETA_TMDB_RATE_LIMIT", TMDB_RATE_LIMIT),
        omdb_daily_limit=env_int("LINKMETA_OMDB_DAILY_LIMIT", OMDB_DAILY_LIMIT),
    )


def _sanity_check_policy(policy: ResolverPolicy) -> None:
    if policy.fetch_timeout <= 0:
        raise ValueError("LINKMETA_FETCH_TIMEOUT must be positive")
    if policy.max_body_bytes <= 0:
        raise ValueError("LINKMETA_MAX_BODY_BYTES must be positive")


DEFAULT_POLICY = _policy_from_env()
_sanity_check_policy(DEFAULT_POLICY)

# Quotas outlive individual resolvers so repeated module-level resolve() calls share them.
_TMDB_LIMITER = SlidingWindowRateLimiter(DEFAULT_POLICY.tmdb_rate_limit, TMDB_RATE_WINDOW_SECONDS)
_OMDB_LIMITER = SlidingWindowRateLimiter(DEFAULT_POLICY.omdb_daily_limit, OMDB_DAILY_WINDOW_SECONDS)


@dataclass(frozen=True)
class LinkMetadata:
    """Resolved preview for one URL."""

    title: str = ""
    description: str = ""
    image: str = ""
    provider: str = ""
    content_type: str = ""
    site_name: str = ""
    author: str = ""
    artist: str = ""
    release_date: str = ""
    embed: Optional[Embed] = None
    movie: Optional[MovieRecord] = None
    book: Optional[BookRecord] = None
    recipe: Optional[RecipeRecord] = None

    @classmethod
    def from_fields(cls, fields: Mapping[str, str], **records: Any) -> "LinkMetadata":
        return cls(
            title=fields.get(K_TITLE, ""),
            description=fields.get(K_DESCRIPTION, ""),
            image=fields.get(K_IMAGE, ""),
            provider=fields.get(K_PROVIDER, ""),
            content_type=fields.get(K_TYPE, ""),
            site_name=fields.get(K_SITE_NAME, ""),
            author=fields.get(K_AUTHOR, ""),
            artist=fields.get(K_ARTIST, ""),
            release_date=fields.get(K_RELEASE_DATE, ""),
            **records,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        scalars = (
            (K_TITLE, self.title),
            (K_DESCRIPTION, self.description),
            (K_IMAGE, self.image),
            (K_SITE_NAME, self.site_name),
            (K_AUTHOR, self.author),
            (K_ARTIST, self.artist),
            (K_TYPE, self.content_type),
            (K_RELEASE_DATE, self.release_date),
        )
        for key, value in scalars:
            if value:
                payload[key] = value
        if self.recipe is not None:
            payload[K_RECIPE] = self.recipe.to_dict()
        apply_embed_metadata(payload, self.embed)
        if self.movie is not None:
            payload[K_MOVIE] = self.movie.to_dict()
        if self.book is not None:
            payload[K_BOOK_DATA] = self.book.to_dict()
        if self.provider:
            payload[K_PROVIDER] = self.provider
        return payload


class LinkResolver:
    """Owns the fetcher, provider clients and embed chain for a series of resolutions.

    Every collaborator can be injected. TMDB and OMDb clients are otherwise
    built from the environment on first use; a missing key just disables
    that enrichment.
    """

    def __init__(
        self,
        *,
        policy: Optional[ResolverPolicy] = None,
        fetcher: Optional[SafeFetcher] = None,
        tmdb: Optional[TMDBClient] = None,
        omdb: Optional[OMDBClient] = None,
        openlibrary: Optional[OpenLibraryClient] = None,
        embed_chain: Optional[EmbedChain] = None,
        bandcamp_session: Optional[BandcampSession] = None,
    ) -> None:
        self.policy = policy or DEFAULT_POLICY
        self.fetcher = fetcher or SafeFetcher(self.policy.fetch_config())
        self.bandcamp_session = bandcamp_session or default_session()
        self.embed_chain = embed_chain or default_chain(bandcamp_session=self.bandcamp_session)
        self.openlibrary = openlibrary or OpenLibraryClient(timeout=self.policy.api_timeout)
        self._owns_openlibrary = openlibrary is None
        self._tmdb = tmdb
        self._omdb = omdb
        self._tmdb_loaded = tmdb is not None
        self._omdb_loaded = omdb is not None
        self._owned_env_clients: List[Any] = []

    async def __aenter__(self) -> "LinkResolver":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        clients = list(self._owned_env_clients)
        if self._owns_openlibrary:
            clients.append(self.openlibrary)
        for client in clients:
            await client.aclose()
        self._owned_env_clients.clear()

    def _tmdb_client(self) -> Optional[TMDBClient]:
        if not self._tmdb_loaded:
            self._tmdb_loaded = True
            try:
                self._tmdb = TMDBClient.from_env(limiter=_TMDB_LIMITER, timeout=self.policy.api_timeout)
            except APIKeyMissingError as exc:
                logger.debug("movie metadata disabled: %s", exc)
            else:
                self._owned_env_clients.append(self._tmdb)
        return self._tmdb

    def _omdb_client(self) -> Optional[OMDBClient]:
        if not self._omdb_loaded:
            self._omdb_loaded = True
            try:
                self._omdb = OMDBClient.from_env(limiter=_OMDB_LIMITER, timeout=self.policy.api_timeout)
            except APIKeyMissingError as exc:
                logger.debug("rating enrichment disabled: %s", exc)
            else:
                self._owned_env_clients.append(self._omdb)
        return self._omdb

    async def _resolve_movie(self, url: str) -> Optional[MovieRecord]:
        if not should_extract_movie_metadata():
            return None
        tmdb = self._tmdb_client()
        if tmdb is None:
            return None
        resolver = MovieResolver(tmdb, self._omdb_client())
        try:
            return await asyncio.wait_for(resolver.resolve(url), timeout=self.policy.fetch_timeout)
        except (LinkMetadataError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("movie metadata lookup failed url=%s error=%s", url, exc)
            return None

    async def _resolve_book(self, url: str) -> Optional[BookRecord]:
        if not self.policy.extract_books or not should_extract_book_metadata(url):
            return None
        resolver = BookResolver(self.openlibrary, title_fetcher=self.fetcher.fetch_page_title)
        try:
            return await resolver.resolve(url)
        except (LinkMetadataError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("book metadata extraction failed url=%s error=%s", url, exc)
            return None

    async def resolve_metadata(self, url: str) -> LinkMetadata:
        """Resolve ``url``; raises only for invalid/blocked URLs or a failed primary fetch."""

        await self.fetcher.validate_url(url)
        host = url_host(url)
        if is_bandcamp_host(host):
            fields, embed = await fetch_bandcamp_page(url, self.bandcamp_session)
            return LinkMetadata.from_fields(fields, embed=embed)

        provider = detect_provider(host)
        book = await self._resolve_book(url)
        movie: Optional[MovieRecord] = None
        movie_loaded = False

        async def movie_once() -> Optional[MovieRecord]:
            nonlocal movie, movie_loaded
            if not movie_loaded:
                movie_loaded = True
                movie = await self._resolve_movie(url)
            return movie

        try:
            page = await self.fetcher.fetch(url)
        except (LinkMetadataError, asyncio.TimeoutError) as exc:
            fallback = await self._fallback(url, provider, book, movie_once)
            if fallback is not None:
                logger.info("primary fetch failed, returning resolved data url=%s error=%s", url, exc)
                return fallback
            raise
        if not page.ok:
            fallback = await self._fallback(url, provider, book, movie_once)
            if fallback is not None:
                return fallback
            raise FetchStatusError(page.status, "unexpected status")

        return await self._from_page(url, host, provider, page, book, await movie_once())

    async def _fallback(
        self,
        url: str,
        provider: str,
        book: Optional[BookRecord],
        movie_once: Callable[[], Awaitable[Optional[MovieRecord]]],
    ) -> Optional[LinkMetadata]:
        provider = provider or url_host(url)
        if book is not None:
            return LinkMetadata(provider=provider, book=book)
        movie = await movie_once()
        if movie is not None:
            return LinkMetadata(provider=provider, movie=movie)
        return None

    async def _from_page(
        self,
        url: str,
        host: str,
        provider: str,
        page: FetchedPage,
        book: Optional[BookRecord],
        movie: Optional[MovieRecord],
    ) -> LinkMetadata:
        fields: Dict[str, str] = {}
        recipe: Optional[RecipeRecord] = None
        embed: Optional[Embed] = None

        # SVGs are included; consumers render images through <img>.
        if page.is_image:
            fields[K_IMAGE] = url
            fields[K_TYPE] = "image"

        if page.is_html:
            soup = parse_html(page.body)
            meta_tags, title = extract_html_meta(soup)
            fields.update(preview_fields(meta_tags, title, page.final_url))
            if not provider and fields.get(K_SITE_NAME):
                provider = fields[K_SITE_NAME]
            if self.policy.extract_recipes:
                recipe = parse_recipe_if_present(soup, host, page.final_url)
            if self.policy.extract_embeds:
                embed = await self.embed_chain.extract(url, page.body, meta_tags)

        if movie is not None:
            enrich_with_page_score(movie, url, page.body)

        if K_IMAGE not in fields and not page.is_html and looks_like_image_url(url):
            fields[K_IMAGE] = url
            fields[K_TYPE] = "image"

        fields[K_PROVIDER] = provider or host
        return LinkMetadata.from_fields(fields, embed=embed, movie=movie, book=book, recipe=recipe)

    async def resolve(self, url: str, section_type: Optional[str] = None) -> Dict[str, Any]:
        if section_type is None:
            return (await self.resolve_metadata(url)).to_dict()
        with with_section_type(section_type):
            return (await self.resolve_metadata(url)).to_dict()


async def resolve(url: str, section_type: Optional[str] = None) -> Dict[str, Any]:
    """Resolve ``url`` with a short-lived :class:`LinkResolver`."""

    async with LinkResolver() as resolver:
        return await resolver.resolve(url, section_type)


__all__ = [
    "DEFAULT_POLICY",
    "LinkMetadata",
    "LinkResolver",
    "ResolverPolicy",
    "resolve",
    "with_section_type",
]
