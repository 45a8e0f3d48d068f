"""Open Library client: search, works, editions, ISBN lookups and cover URLs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlparse

import aiohttp

from .api_client import JSONAPIClient
from .linkmeta_config import (
    API_TIMEOUT_SECONDS,
    OPENLIBRARY_BASE_URL,
    OPENLIBRARY_COVER_BASE_URL,
    OPENLIBRARY_USER_AGENT,
)

logger = logging.getLogger(__name__)

COVER_SIZES = ("S", "M", "L")


def _strings(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _ints(value: Any) -> List[int]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, int) and not isinstance(item, bool)]


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def parse_description(value: Any) -> str:
    """Work descriptions are either a plain string or ``{"type": ..., "value": ...}``."""

    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict) and isinstance(value.get("value"), str):
        return value["value"].strip()
    return ""


@dataclass
class SearchDoc:
    title: str
    author_name: List[str] = field(default_factory=list)
    first_publish_year: int = 0
    cover_i: int = 0
    key: str = ""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SearchDoc":
        return cls(
            title=str(payload.get("title") or "").strip(),
            author_name=_strings(payload.get("author_name")),
            first_publish_year=_int(payload.get("first_publish_year")),
            cover_i=_int(payload.get("cover_i")),
            key=str(payload.get("key") or "").strip(),
        )


@dataclass
class Work:
    title: str = ""
    description: str = ""
    subjects: List[str] = field(default_factory=list)
    covers: List[int] = field(default_factory=list)
    author_keys: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Work":
        author_keys: List[str] = []
        for entry in payload.get("authors") or []:
            if not isinstance(entry, dict):
                continue
            author = entry.get("author")
            if isinstance(author, dict) and isinstance(author.get("key"), str):
                author_keys.append(author["key"].strip())
        return cls(
            title=str(payload.get("title") or "").strip(),
            description=parse_description(payload.get("description")),
            subjects=_strings(payload.get("subjects")),
            covers=_ints(payload.get("covers")),
            author_keys=author_keys,
        )


@dataclass
class Edition:
    title: str = ""
    publishers: List[str] = field(default_factory=list)
    publish_date: str = ""
    number_of_pages: int = 0
    isbn_13: List[str] = field(default_factory=list)
    isbn_10: List[str] = field(default_factory=list)
    covers: List[int] = field(default_factory=list)
    works: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Edition":
        works = [
            entry["key"].strip()
            for entry in payload.get("works") or []
            if isinstance(entry, dict) and isinstance(entry.get("key"), str)
        ]
        return cls(
            title=str(payload.get("title") or "").strip(),
            publishers=_strings(payload.get("publishers")),
            publish_date=str(payload.get("publish_date") or "").strip(),
            number_of_pages=_int(payload.get("number_of_pages")),
            isbn_13=_strings(payload.get("isbn_13")),
            isbn_10=_strings(payload.get("isbn_10")),
            covers=_ints(payload.get("covers")),
            works=works,
        )


def normalize_key(raw_key: str, resource: str) -> str:
    """Accept ``https://openlibrary.org/works/OL1W``, ``/works/OL1W`` or ``OL1W``; return ``OL1W``."""

    key = (raw_key or "").strip()
    if not key:
        raise ValueError(f"{resource} key is required")
    if key.startswith(("http://", "https://")):
        key = urlparse(key).path
    key = key.strip().removesuffix(".json").lstrip("/")
    prefix = resource + "/"
    if key.startswith(prefix):
        key = key[len(prefix):]
    elif "/" in key:
        raise ValueError(f"{resource} key must use /{resource}/<id> format")
    key = key.strip()
    if not key or "/" in key:
        raise ValueError(f"invalid {resource} key")
    return key


def cover_url(cover_id: int, size: str = "M") -> str:
    if not cover_id or cover_id <= 0:
        return ""
    size = (size or "").strip().upper()
    if size not in COVER_SIZES:
        size = "M"
    return f"{OPENLIBRARY_COVER_BASE_URL}/{cover_id}-{size}.jpg"


class OpenLibraryClient(JSONAPIClient):
    """Keyless Open Library client."""

    provider = "openlibrary"

    def __init__(
        self,
        *,
        base_url: str = OPENLIBRARY_BASE_URL,
        timeout: float = API_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(base_url, user_agent=OPENLIBRARY_USER_AGENT, timeout=timeout, session=session)

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = await self._get_json(path, params)
        return payload if isinstance(payload, dict) else {}

    async def search_books(self, query: str) -> List[SearchDoc]:
        query = (query or "").strip()
        if not query:
            raise ValueError("search query is required")
        payload = await self._get("/search.json", {"q": query})
        return [SearchDoc.from_payload(doc) for doc in payload.get("docs") or [] if isinstance(doc, dict)]

    async def get_work(self, work_key: str) -> Work:
        key = normalize_key(work_key, "works")
        return Work.from_payload(await self._get(f"/works/{quote(key, safe='')}.json"))

    async def get_edition(self, edition_key: str) -> Edition:
        key = normalize_key(edition_key, "books")
        return Edition.from_payload(await self._get(f"/books/{quote(key, safe='')}.json"))

    async def get_by_isbn(self, isbn: str) -> Edition:
        isbn = (isbn or "").strip()
        if not isbn:
            raise ValueError("isbn is required")
        return Edition.from_payload(await self._get(f"/isbn/{quote(isbn, safe='')}.json"))

    @staticmethod
    def cover_url(cover_id: int, size: str = "M") -> str:
        return cover_url(cover_id, size)


__all__ = [
    "OpenLibraryClient",
    "SearchDoc",
    "Work",
    "Edition",
    "normalize_key",
    "cover_url",
    "parse_description",
]
