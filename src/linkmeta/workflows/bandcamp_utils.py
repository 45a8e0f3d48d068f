"""Bandcamp pages: shared blocking session, embed extraction and page metadata.

Bandcamp is fetched with a process-wide ``requests.Session`` rather than the
aiohttp fetcher. The blocking call runs on a worker thread raced against a
timeout; a timed-out thread is left to finish on its own.
"""

from __future__ import annotations

import asyncio
import html
import json
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import urljoin, urlparse

import requests

from ..core.keys import K_ARTIST, K_IMAGE, K_PROVIDER, K_RELEASE_DATE, K_SITE_NAME, K_TITLE
from .embed_utils import KIND_IFRAME, Embed, HTMLEmbedExtractor, apply_embed_metadata, validate_embed_url
from .errors import BlockedURLError, FetchError, FetchStatusError, LinkMetadataError, RedirectLimitError
from .html_meta import extract_html_meta, extract_json_ld_scripts, find_attribute, preview_fields
from .linkmeta_config import (
    ACCEPT_HTML,
    BANDCAMP_ALBUM_HEIGHT,
    BANDCAMP_TRACK_HEIGHT,
    DEFAULT_USER_AGENT,
    FETCH_TIMEOUT_SECONDS,
    HDR_ACCEPT,
    HDR_USER_AGENT,
    MAX_BODY_BYTES,
    MAX_REDIRECTS,
    REDIRECT_STATUS_CODES,
)
from .linkmeta_utils import host_matches, url_host

logger = logging.getLogger(__name__)

BANDCAMP_EMBED_BASE = "https://bandcamp.com/EmbeddedPlayer"
PAGE_PROPERTIES_META = "bc-page-properties"
PAGE_PROPERTIES_ATTR = "data-bc-page-properties"

_ITEM_TYPES = {"a": "album", "album": "album", "t": "track", "track": "track"}


def is_bandcamp_host(host: str) -> bool:
    return host_matches(host, "bandcamp.com")


class BandcampSession:
    """Owner of the shared Bandcamp ``requests.Session``.

    The session is created on first use under a lock. ``close()`` shuts it
    down for good; ``reset()`` drops it so the next fetch starts fresh.
    """

    def __init__(
        self,
        *,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        max_body_bytes: int = MAX_BODY_BYTES,
        max_redirects: int = MAX_REDIRECTS,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.timeout = timeout
        self.max_body_bytes = max_body_bytes
        self.max_redirects = max_redirects
        self.user_agent = user_agent
        self._lock = threading.Lock()
        self._session: Optional[requests.Session] = None
        self._closed = False

    def _get_session(self) -> requests.Session:
        with self._lock:
            if self._closed:
                raise FetchError("bandcamp session is closed")
            if self._session is None:
                session = requests.Session()
                session.headers.update({HDR_USER_AGENT: self.user_agent, HDR_ACCEPT: ACCEPT_HTML})
                self._session = session
            return self._session

    def close(self) -> None:
        with self._lock:
            if self._session is not None:
                self._session.close()
            self._session = None
            self._closed = True

    def reset(self) -> None:
        with self._lock:
            if self._session is not None:
                self._session.close()
            self._session = None
            self._closed = False

    def _read_capped(self, resp: requests.Response) -> bytes:
        chunks: List[bytes] = []
        size = 0
        for chunk in resp.iter_content(chunk_size=64 * 1024):
            remaining = self.max_body_bytes - size
            if len(chunk) >= remaining:
                chunks.append(chunk[:remaining])
                break
            chunks.append(chunk)
            size += len(chunk)
        return b"".join(chunks)

    def _fetch_blocking(self, url: str) -> Tuple[int, bytes]:
        session = self._get_session()
        current = url
        for _ in range(self.max_redirects + 1):
            with session.get(current, timeout=self.timeout, stream=True, allow_redirects=False) as resp:
                location = resp.headers.get("Location") or ""
                if resp.status_code in REDIRECT_STATUS_CODES and location:
                    target = urljoin(current, location)
                    if not is_bandcamp_host(url_host(target)):
                        raise BlockedURLError(f"bandcamp redirect left bandcamp.com: {target}")
                    current = target
                    continue
                return resp.status_code, self._read_capped(resp)
        raise RedirectLimitError(f"too many redirects (>{self.max_redirects})")

    async def fetch_html(self, url: str) -> bytes:
        """GET a Bandcamp page; raises for non-Bandcamp hosts and statuses outside 200-399."""

        if not is_bandcamp_host(url_host(url)):
            raise BlockedURLError(f"not a bandcamp url: {url}")
        try:
            status, body = await asyncio.wait_for(
                asyncio.to_thread(self._fetch_blocking, url),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise FetchError(f"bandcamp fetch: {exc}") from exc
        if status < 200 or status >= 400:
            raise FetchStatusError(status, "bandcamp status")
        logger.debug("Fetched bandcamp page %s bytes=%d", url, len(body))
        return body


_default_session = BandcampSession()


def default_session() -> BandcampSession:
    return _default_session


def _id_string(value: Any) -> str:
    if isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        return str(int(value))
    if isinstance(value, str):
        return value.strip()
    return ""


def _json_ld_type(node: Dict[str, Any]) -> str:
    raw = node.get("@type")
    if isinstance(raw, list):
        raw = next((item for item in raw if isinstance(item, str) and item.strip()), "")
    return raw.strip() if isinstance(raw, str) else ""


def find_item_id(node: Any) -> str:
    """Search ``additionalProperty`` entries (recursively) for ``name == "item_id"``."""

    if isinstance(node, list):
        for item in node:
            found = find_item_id(item)
            if found:
                return found
        return ""
    if isinstance(node, dict):
        if str(node.get("name") or "").strip() == "item_id":
            return _id_string(node.get("value"))
        return find_item_id(node.get("additionalProperty"))
    return ""


def json_ld_item(node: Dict[str, Any]) -> Tuple[str, str]:
    kind = _json_ld_type(node)
    if kind == "MusicAlbum":
        return "album", find_item_id(node.get("albumRelease")) or find_item_id(node.get("additionalProperty"))
    if kind == "MusicRecording":
        return "track", find_item_id(node.get("additionalProperty")) or find_item_id(node.get("inAlbum"))
    return "", ""


def json_ld_metadata(node: Dict[str, Any]) -> Dict[str, str]:
    metadata = {K_SITE_NAME: "Bandcamp"}
    name = node.get("name")
    if isinstance(name, str) and name.strip():
        metadata[K_TITLE] = name.strip()
    artist = node.get("byArtist")
    if isinstance(artist, dict) and isinstance(artist.get("name"), str) and artist["name"].strip():
        metadata[K_ARTIST] = artist["name"].strip()
    image = node.get("image")
    if isinstance(image, list):
        image = next((item for item in image if isinstance(item, str) and item.strip()), "")
    if isinstance(image, str) and image.strip():
        metadata[K_IMAGE] = image.strip()
    published = node.get("datePublished")
    if isinstance(published, str) and published.strip():
        metadata[K_RELEASE_DATE] = published.strip()
    return metadata


def parse_json_ld(body: Union[bytes, str, None]) -> Tuple[str, str, Dict[str, str]]:
    """First JSON-LD node that yields both an item type and an item id."""

    for script in extract_json_ld_scripts(body):
        try:
            payload = json.loads(script)
        except ValueError:
            continue
        nodes = payload if isinstance(payload, list) else [payload]
        for node in nodes:
            if not isinstance(node, dict):
                continue
            kind, item_id = json_ld_item(node)
            if kind and item_id:
                return kind, item_id, json_ld_metadata(node)
    return "", "", {}


def parse_page_properties(raw: str) -> Tuple[str, str]:
    """Decode ``bc-page-properties`` JSON (HTML-escaped) into ``(type, id)``."""

    raw = (raw or "").strip()
    if not raw:
        return "", ""
    try:
        payload = json.loads(html.unescape(raw))
    except ValueError:
        return "", ""
    if not isinstance(payload, dict):
        return "", ""
    kind = _ITEM_TYPES.get(str(payload.get("item_type") or "").strip().lower(), "")
    return kind, _id_string(payload.get("item_id"))


def parse_content(
    url: str,
    body: Union[bytes, str, None],
    meta_tags: Optional[Dict[str, str]] = None,
) -> Tuple[str, str, Dict[str, str]]:
    """Return ``(item_type, item_id, json_ld_metadata)`` for a Bandcamp page."""

    path = urlparse(url).path
    kind = ""
    if "/album/" in path:
        kind = "album"
    elif "/track/" in path:
        kind = "track"
    item_id = ""

    ld_kind, ld_id, ld_meta = parse_json_ld(body)
    if ld_kind and ld_id:
        kind, item_id = ld_kind, ld_id

    meta_kind, meta_id = parse_page_properties((meta_tags or {}).get(PAGE_PROPERTIES_META, ""))
    kind = kind or meta_kind
    item_id = item_id or meta_id

    if not item_id and body:
        attr_kind, attr_id = parse_page_properties(find_attribute(body, PAGE_PROPERTIES_ATTR))
        kind = kind or attr_kind
        item_id = attr_id

    if not item_id:
        raise LinkMetadataError("bandcamp item id not found")
    if not kind:
        raise LinkMetadataError("bandcamp item type not found")
    return kind, item_id, ld_meta


def build_embed_url(kind: str, item_id: str) -> str:
    tracklist = "true" if kind == "album" else "false"
    return (
        f"{BANDCAMP_EMBED_BASE}/{kind}={item_id}/size=large/bgcol=ffffff/linkcol=0687f5/"
        f"tracklist={tracklist}/artwork=small/transparent=true/"
    )


class BandcampExtractor(HTMLEmbedExtractor):
    provider = "bandcamp"

    def __init__(self, session: Optional[BandcampSession] = None) -> None:
        self.session = session or default_session()

    def can_extract(self, url: str) -> bool:
        return is_bandcamp_host(url_host(url))

    async def extract_from_html(
        self,
        url: str,
        body: Union[bytes, str, None],
        meta_tags: Optional[Dict[str, str]],
    ) -> Optional[Embed]:
        kind, item_id, _ = parse_content(url, body, meta_tags)
        embed_url = validate_embed_url(build_embed_url(kind, item_id))
        height = BANDCAMP_ALBUM_HEIGHT if kind == "album" else BANDCAMP_TRACK_HEIGHT
        return Embed(kind=KIND_IFRAME, provider=self.provider, embed_url=embed_url, height=height)

    async def extract(self, url: str) -> Optional[Embed]:
        body = await self.session.fetch_html(url)
        meta_tags, _ = extract_html_meta(body)
        return await self.extract_from_html(url, body, meta_tags)


async def fetch_bandcamp_page(
    url: str,
    session: Optional[BandcampSession] = None,
) -> Tuple[Dict[str, str], Optional[Embed]]:
    """Preview fields plus the player embed (when the page exposes an item id)."""

    extractor = BandcampExtractor(session)
    body = await extractor.session.fetch_html(url)
    meta_tags, title = extract_html_meta(body)
    metadata = dict(preview_fields(meta_tags, title, url))
    try:
        kind, item_id, ld_meta = parse_content(url, body, meta_tags)
    except LinkMetadataError as exc:
        logger.debug("bandcamp embed not found for %s: %s", url, exc)
        kind, item_id, ld_meta = "", "", {}
    for key, value in ld_meta.items():
        metadata.setdefault(key, value)
    metadata[K_PROVIDER] = "bandcamp"
    embed: Optional[Embed] = None
    if kind and item_id:
        try:
            embed = await extractor.extract_from_html(url, body, meta_tags)
        except LinkMetadataError as exc:
            logger.warning("bandcamp embed rejected for %s: %s", url, exc)
    return metadata, embed


async def fetch_bandcamp_metadata(url: str, session: Optional[BandcampSession] = None) -> Dict[str, Any]:
    """Metadata map for a Bandcamp page fetched through the shared session."""

    fields, embed = await fetch_bandcamp_page(url, session)
    return apply_embed_metadata(dict(fields), embed)


__all__ = [
    "BandcampSession",
    "BandcampExtractor",
    "default_session",
    "is_bandcamp_host",
    "find_item_id",
    "json_ld_item",
    "json_ld_metadata",
    "parse_json_ld",
    "parse_page_properties",
    "parse_content",
    "build_embed_url",
    "fetch_bandcamp_page",
    "fetch_bandcamp_metadata",
]
