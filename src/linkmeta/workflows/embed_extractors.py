"""Provider embed extractors (YouTube, Spotify, SoundCloud) and the ordered chain."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import parse_qs, quote, urlparse

import aiohttp

from .bandcamp_utils import BandcampExtractor, BandcampSession
from .embed_utils import (
    KIND_IFRAME,
    KIND_OEMBED,
    Embed,
    EmbedExtractor,
    HTMLEmbedExtractor,
    positive_int,
    validate_embed_url,
)
from .errors import EmbedValidationError, FetchStatusError, LinkMetadataError
from .html_meta import extract_iframe_src
from .linkmeta_config import (
    ACCEPT_JSON,
    HDR_ACCEPT,
    HDR_USER_AGENT,
    OEMBED_TIMEOUT_SECONDS,
    OEMBED_USER_AGENT,
    SOUNDCLOUD_OEMBED_ENDPOINT,
    SPOTIFY_CONTENT_TYPES,
    SPOTIFY_EMBED_BASE,
    SPOTIFY_OEMBED_ENDPOINT,
    YOUTUBE_EMBED_BASE,
)
from .linkmeta_utils import first_non_empty, host_matches, split_url_path, url_host

logger = logging.getLogger(__name__)

_YOUTUBE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_YOUTUBE_PATH_PREFIXES = ("embed", "shorts", "v")

SPOTIFY_HOST = "open.spotify.com"
SPOTIFY_SHORT_HOST = "spotify.link"
SPOTIFY_HEIGHTS = {"track": 152, "show": 232, "episode": 232}
SPOTIFY_DEFAULT_HEIGHT = 380

SOUNDCLOUD_PLAYER_HOST = "w.soundcloud.com"
_SOUNDCLOUD_PLAYER_META = ("twitter:player", "og:video:secure_url", "og:video:url", "og:video")


class OEmbedClient:
    """Minimal oEmbed fetcher; ``_request`` is the network seam."""

    def __init__(
        self,
        *,
        timeout: float = OEMBED_TIMEOUT_SECONDS,
        user_agent: str = OEMBED_USER_AGENT,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent

    async def _request(self, endpoint: str, params: Dict[str, str]) -> Tuple[int, bytes]:
        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            headers={HDR_USER_AGENT: self.user_agent, HDR_ACCEPT: ACCEPT_JSON},
        ) as session:
            async with session.get(endpoint, params=params) as resp:
                return resp.status, await resp.read()

    async def fetch(self, endpoint: str, content_url: str) -> Dict[str, Any]:
        status, body = await self._request(endpoint, {"format": "json", "url": content_url})
        if status < 200 or status >= 300:
            raise FetchStatusError(status, "oembed")
        try:
            payload = json.loads(body.decode("utf-8", "ignore"))
        except ValueError as exc:
            raise LinkMetadataError(f"decode oembed response: {exc}") from exc
        if not isinstance(payload, dict):
            raise LinkMetadataError("unexpected oembed payload")
        return payload

    async def embed(self, endpoint: str, content_url: str, provider: str) -> Embed:
        payload = await self.fetch(endpoint, content_url)
        src = extract_iframe_src(str(payload.get("html") or ""))
        if not src:
            raise LinkMetadataError(f"{provider} oembed missing iframe src")
        return Embed(
            kind=KIND_OEMBED,
            provider=provider,
            embed_url=src,
            width=positive_int(payload.get("width")),
            height=positive_int(payload.get("height")),
        )


def parse_youtube_id(raw_url: str) -> str:
    try:
        parsed = urlparse((raw_url or "").strip())
    except ValueError:
        return ""
    host = url_host(raw_url)
    segments = split_url_path(parsed.path)
    video_id = ""
    if host_matches(host, "youtu.be"):
        video_id = segments[0] if segments else ""
    elif host_matches(host, "youtube.com") and segments:
        if segments[0] == "watch":
            video_id = (parse_qs(parsed.query).get("v") or [""])[0]
        elif segments[0] in _YOUTUBE_PATH_PREFIXES and len(segments) > 1:
            video_id = segments[1]
    video_id = video_id.strip()
    return video_id if _YOUTUBE_ID_RE.match(video_id) else ""


def parse_spotify_path(raw_url: str) -> Tuple[str, str]:
    """Return ``(content_type, id)`` for an ``open.spotify.com`` URL, or empty strings."""

    if url_host(raw_url) != SPOTIFY_HOST:
        return "", ""
    segments = split_url_path(urlparse(raw_url.strip()).path)
    index = 0
    if segments and segments[0].lower().startswith("intl-") and len(segments) > 1:
        index += 1
    if len(segments) > index + 2 and segments[index].lower() == "embed":
        index += 1
    if len(segments) < index + 2:
        return "", ""
    content_type = segments[index].lower()
    content_id = segments[index + 1].strip()
    if content_type not in SPOTIFY_CONTENT_TYPES or not content_id:
        return "", ""
    return content_type, content_id


class YouTubeExtractor(EmbedExtractor):
    provider = "youtube"

    def can_extract(self, url: str) -> bool:
        return host_matches(url_host(url), "youtube.com", "youtu.be")

    async def extract(self, url: str) -> Optional[Embed]:
        video_id = parse_youtube_id(url)
        if not video_id:
            return None
        return Embed(kind=KIND_IFRAME, provider=self.provider, embed_url=YOUTUBE_EMBED_BASE + video_id)


class SpotifyExtractor(EmbedExtractor):
    """Builds the player URL from the path; short links go through oEmbed."""

    provider = "spotify"

    def __init__(self, oembed: Optional[OEmbedClient] = None) -> None:
        self.oembed = oembed or OEmbedClient()

    def can_extract(self, url: str) -> bool:
        host = url_host(url)
        return host == SPOTIFY_HOST or host_matches(host, SPOTIFY_SHORT_HOST)

    async def extract(self, url: str) -> Optional[Embed]:
        content_type, content_id = parse_spotify_path(url)
        if content_type:
            return Embed(
                kind=KIND_IFRAME,
                provider=self.provider,
                embed_url=f"{SPOTIFY_EMBED_BASE}/{content_type}/{quote(content_id, safe='')}",
                height=SPOTIFY_HEIGHTS.get(content_type, SPOTIFY_DEFAULT_HEIGHT),
            )
        return await self.oembed.embed(SPOTIFY_OEMBED_ENDPOINT, url, self.provider)


class SoundCloudExtractor(HTMLEmbedExtractor):
    provider = "soundcloud"

    def __init__(self, oembed: Optional[OEmbedClient] = None) -> None:
        self.oembed = oembed or OEmbedClient()

    def can_extract(self, url: str) -> bool:
        return host_matches(url_host(url), "soundcloud.com")

    async def extract_from_html(
        self,
        url: str,
        body: Union[bytes, str, None],
        meta_tags: Optional[Dict[str, str]],
    ) -> Optional[Embed]:
        meta_tags = meta_tags or {}
        for key in _SOUNDCLOUD_PLAYER_META:
            candidate = (meta_tags.get(key) or "").strip()
            if candidate and url_host(candidate) == SOUNDCLOUD_PLAYER_HOST:
                return Embed(
                    kind=KIND_IFRAME,
                    provider=self.provider,
                    embed_url=candidate,
                    height=positive_int(
                        first_non_empty(meta_tags.get("twitter:player:height"), meta_tags.get("og:video:height"))
                    ),
                )
        return None

    async def extract(self, url: str) -> Optional[Embed]:
        return await self.oembed.embed(SOUNDCLOUD_OEMBED_ENDPOINT, url, self.provider)


class EmbedChain:
    """Ordered provider list; the first validated embed wins."""

    def __init__(self, extractors: Iterable[EmbedExtractor]) -> None:
        self.extractors: List[EmbedExtractor] = list(extractors)

    async def _try_html(
        self,
        extractor: EmbedExtractor,
        url: str,
        body: Union[bytes, str, None],
        meta_tags: Optional[Dict[str, str]],
    ) -> Optional[Embed]:
        if not isinstance(extractor, HTMLEmbedExtractor) or (not body and not meta_tags):
            return None
        try:
            return await extractor.extract_from_html(url, body, meta_tags)
        except LinkMetadataError as exc:
            logger.debug("%s html embed unavailable for %s: %s", extractor.provider, url, exc)
            return None

    async def extract(
        self,
        url: str,
        body: Union[bytes, str, None] = None,
        meta_tags: Optional[Dict[str, str]] = None,
    ) -> Optional[Embed]:
        for extractor in self.extractors:
            if not extractor.can_extract(url):
                continue
            embed = await self._try_html(extractor, url, body, meta_tags)
            if embed is None:
                try:
                    embed = await extractor.extract(url)
                except (LinkMetadataError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
                    logger.debug("%s embed extraction failed for %s: %s", extractor.provider, url, exc)
                    continue
            if embed is None:
                continue
            try:
                validate_embed_url(embed.embed_url)
            except EmbedValidationError as exc:
                logger.warning("%s embed rejected for %s: %s", extractor.provider, url, exc)
                continue
            return embed
        return None


def default_chain(
    *,
    oembed: Optional[OEmbedClient] = None,
    bandcamp_session: Optional[BandcampSession] = None,
) -> EmbedChain:
    oembed = oembed or OEmbedClient()
    return EmbedChain(
        [
            YouTubeExtractor(),
            SpotifyExtractor(oembed),
            SoundCloudExtractor(oembed),
            BandcampExtractor(bandcamp_session),
        ]
    )


__all__ = [
    "OEmbedClient",
    "YouTubeExtractor",
    "SpotifyExtractor",
    "SoundCloudExtractor",
    "EmbedChain",
    "default_chain",
    "parse_youtube_id",
    "parse_spotify_path",
]
