"""Resolve book links (Goodreads, Amazon, Open Library, ISBN-bearing URLs) via Open Library."""

from __future__ import annotations

import dataclasses
import html
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse

from .errors import LinkMetadataError, NotFoundError
from .linkmeta_config import AMAZON_SEARCH_PREFIX, BOOK_TITLE_SUFFIXES
from .linkmeta_utils import (
    clean_string_list,
    fill_empty_fields,
    first_non_empty,
    host_matches,
    is_empty_value,
    split_url_path,
)
from .openlibrary_client import Edition, OpenLibraryClient, SearchDoc, Work, normalize_key

logger = logging.getLogger(__name__)

TitleFetcher = Callable[[str], Awaitable[str]]

GOODREADS_ID_RE = re.compile(r"^(\d+)")
OPENLIBRARY_WORK_RE = re.compile(r"(?i)^ol[0-9a-z]+w$")
OPENLIBRARY_EDITION_RE = re.compile(r"(?i)^ol[0-9a-z]+m$")
ISBN_TOKEN_RE = re.compile(r"(?i)(97[89][0-9-]{10,16}|[0-9][0-9-]{8,14}[0-9x])")
ASIN_RE = re.compile(r"^[A-Za-z0-9]+$")


@dataclass
class BookRecord:
    title: str = ""
    authors: List[str] = field(default_factory=list)
    description: str = ""
    cover_url: str = ""
    page_count: int = 0
    genres: List[str] = field(default_factory=list)
    publish_date: str = ""
    isbn: str = ""
    open_library_key: str = ""
    goodreads_url: str = ""

    def merge(self, enrichment: Optional["BookRecord"]) -> "BookRecord":
        """Return a copy with empty fields filled from ``enrichment``."""

        merged = dataclasses.replace(self, authors=list(self.authors), genres=list(self.genres))
        return fill_empty_fields(merged, enrichment)

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in dataclasses.asdict(self).items() if not is_empty_value(value)}


# ISBN handling

def normalize_isbn(raw: str) -> str:
    """Keep digits and ``X`` (uppercased); drop hyphens, spaces and anything else."""

    out = []
    for ch in raw or "":
        if ch.isdigit() and ch.isascii():
            out.append(ch)
        elif ch in "xX":
            out.append("X")
    return "".join(out)


def is_valid_isbn10(isbn: str) -> bool:
    if len(isbn) != 10:
        return False
    total = 0
    for i, ch in enumerate(isbn):
        if i == 9 and ch == "X":
            value = 10
        elif "0" <= ch <= "9":
            value = ord(ch) - ord("0")
        else:
            return False
        total += value * (10 - i)
    return total % 11 == 0


def is_valid_isbn13(isbn: str) -> bool:
    if len(isbn) != 13 or not all("0" <= ch <= "9" for ch in isbn):
        return False
    total = sum((ord(ch) - ord("0")) * (1 if i % 2 == 0 else 3) for i, ch in enumerate(isbn))
    return total % 10 == 0


def is_valid_isbn(isbn: str) -> bool:
    return is_valid_isbn10(isbn) or is_valid_isbn13(isbn)


def extract_isbn_from_segments(segments: List[str]) -> Optional[str]:
    for segment in segments:
        for match in ISBN_TOKEN_RE.finditer(segment.strip()):
            isbn = normalize_isbn(match.group(0))
            if is_valid_isbn(isbn):
                return isbn
    return None


# URL identifier parsing

def parse_goodreads_book_id(segments: List[str]) -> Optional[str]:
    if len(segments) < 3 or segments[0].lower() != "book" or segments[1].lower() != "show":
        return None
    match = GOODREADS_ID_RE.match(segments[2].strip())
    return match.group(1) if match else None


def parse_amazon_asin(segments: List[str]) -> Optional[str]:
    """ASIN from ``.../dp/<asin>`` or ``.../gp/product/<asin>``."""

    for i, segment in enumerate(segments[:-1]):
        lowered = segment.lower()
        if lowered == "dp":
            candidate = segments[i + 1]
        elif lowered == "gp" and i + 2 < len(segments) and segments[i + 1].lower() == "product":
            candidate = segments[i + 2]
        else:
            continue
        candidate = candidate.strip().removesuffix(".html").rstrip("/")
        if candidate and ASIN_RE.match(candidate):
            return candidate
    return None


def parse_openlibrary_work_key(segments: List[str]) -> Optional[str]:
    if len(segments) < 2 or segments[0].lower() != "works":
        return None
    raw_id = segments[1].strip().removesuffix(".json")
    return f"/works/{raw_id}" if OPENLIBRARY_WORK_RE.match(raw_id) else None


def parse_openlibrary_edition_key(segments: List[str]) -> Optional[str]:
    if len(segments) < 2 or segments[0].lower() != "books":
        return None
    raw_id = segments[1].strip().removesuffix(".json")
    return f"/books/{raw_id}" if OPENLIBRARY_EDITION_RE.match(raw_id) else None


def normalize_openlibrary_key(raw_key: str, resource: str) -> str:
    try:
        return f"/{resource}/{normalize_key(raw_key, resource)}"
    except ValueError:
        return (raw_key or "").strip().removesuffix(".json")


def normalize_book_page_title(raw: str) -> str:
    """Strip store suffixes and a trailing ``by <author>`` from a page title."""

    title = html.unescape(raw or "").strip()
    if not title:
        return ""
    for suffix in BOOK_TITLE_SUFFIXES:
        idx = title.lower().find(suffix.lower())
        if idx > 0:
            title = title[:idx].strip()
    idx = title.lower().find(" by ")
    if idx > 0:
        title = title[:idx].strip()
    return title.strip()


def should_extract_book_metadata(raw_url: str) -> bool:
    """Cheap URL-only check; no network."""

    try:
        parsed = urlparse(raw_url or "")
        host = parsed.hostname or ""
    except ValueError:
        return False
    segments = split_url_path(parsed.path)
    if host_matches(host, "goodreads.com"):
        return parse_goodreads_book_id(segments) is not None
    if host_matches(host, "amazon.com"):
        return parse_amazon_asin(segments) is not None or extract_isbn_from_segments(segments) is not None
    if host_matches(host, "openlibrary.org"):
        return (
            parse_openlibrary_work_key(segments) is not None
            or parse_openlibrary_edition_key(segments) is not None
            or extract_isbn_from_segments(segments) is not None
        )
    return extract_isbn_from_segments(segments) is not None


# Payload -> record

def book_from_search_doc(doc: SearchDoc) -> BookRecord:
    return BookRecord(
        title=doc.title,
        authors=clean_string_list(doc.author_name),
        cover_url=OpenLibraryClient.cover_url(doc.cover_i, "L"),
        open_library_key=normalize_openlibrary_key(doc.key, "works") if doc.key else "",
        publish_date=str(doc.first_publish_year) if doc.first_publish_year > 0 else "",
    )


def _first_cover(covers: List[int]) -> int:
    return next((cover for cover in covers if cover > 0), 0)


def book_from_work(work: Work) -> BookRecord:
    return BookRecord(
        title=work.title,
        description=work.description,
        genres=clean_string_list(work.subjects),
        cover_url=OpenLibraryClient.cover_url(_first_cover(work.covers), "L"),
    )


def book_from_edition(edition: Edition) -> BookRecord:
    return BookRecord(
        title=edition.title,
        page_count=max(edition.number_of_pages, 0),
        publish_date=edition.publish_date,
        cover_url=OpenLibraryClient.cover_url(_first_cover(edition.covers), "L"),
        isbn=first_non_empty(*(edition.isbn_13 + edition.isbn_10)),
    )


class BookResolver:
    """Map a URL to a :class:`BookRecord`.

    Each lookup returns None for "no match"; ``NotFoundError`` from Open Library
    is a miss, other API errors propagate to the caller.
    """

    def __init__(self, client: OpenLibraryClient, *, title_fetcher: TitleFetcher) -> None:
        self.client = client
        self.title_fetcher = title_fetcher

    async def resolve(self, raw_url: str) -> Optional[BookRecord]:
        try:
            parsed = urlparse(raw_url or "")
            host = parsed.hostname or ""
        except ValueError:
            return None
        segments = split_url_path(parsed.path)

        if host_matches(host, "goodreads.com"):
            goodreads_id = parse_goodreads_book_id(segments)
            return await self._from_goodreads(raw_url, goodreads_id) if goodreads_id else None
        if host_matches(host, "amazon.com"):
            asin = parse_amazon_asin(segments)
            if asin:
                return await self._from_amazon(raw_url, asin)
        elif host_matches(host, "openlibrary.org"):
            work_key = parse_openlibrary_work_key(segments)
            if work_key:
                return await self._from_work(work_key)
            edition_key = parse_openlibrary_edition_key(segments)
            if edition_key:
                return await self._from_edition(edition_key)
        isbn = extract_isbn_from_segments(segments)
        return await self._from_isbn(isbn) if isbn else None

    async def _from_goodreads(self, raw_url: str, goodreads_id: str) -> Optional[BookRecord]:
        title = normalize_book_page_title(await self.title_fetcher(raw_url))
        if not title:
            logger.debug("goodreads %s: page has no usable title", goodreads_id)
            return None
        record = await self.search(title)
        if record is None:
            return None
        record.goodreads_url = raw_url.strip()
        return record

    async def _from_amazon(self, raw_url: str, asin: str) -> Optional[BookRecord]:
        first_error: Optional[LinkMetadataError] = None
        steps = (
            lambda: self._from_isbn(asin),
            lambda: self.search(f"{AMAZON_SEARCH_PREFIX}{asin}"),
            lambda: self._search_page_title(raw_url),
        )
        for step in steps:
            try:
                record = await step()
            except LinkMetadataError as exc:
                logger.debug("amazon %s lookup step failed: %s", asin, exc)
                first_error = first_error or exc
                continue
            if record is not None:
                return record
        if first_error is not None:
            raise first_error
        return None

    async def _search_page_title(self, raw_url: str) -> Optional[BookRecord]:
        title = normalize_book_page_title(await self.title_fetcher(raw_url))
        if not title:
            return None
        return await self.search(title)

    async def search(self, query: str) -> Optional[BookRecord]:
        """Search Open Library, take the first doc and enrich it from its work."""

        query = query.strip()
        if not query:
            return None
        docs = await self.client.search_books(query)
        if not docs:
            return None
        doc = docs[0]
        record = book_from_search_doc(doc)
        if not doc.key:
            return record
        try:
            work = await self.client.get_work(doc.key)
        except NotFoundError:
            return record
        except ValueError:
            return record
        record = record.merge(book_from_work(work))
        if not record.open_library_key:
            record.open_library_key = normalize_openlibrary_key(doc.key, "works")
        return record

    async def _from_work(self, work_key: str) -> Optional[BookRecord]:
        try:
            work = await self.client.get_work(work_key)
        except NotFoundError:
            return None
        record = book_from_work(work)
        record.open_library_key = normalize_openlibrary_key(work_key, "works")
        return record

    async def _from_edition(self, edition_key: str) -> Optional[BookRecord]:
        try:
            edition = await self.client.get_edition(edition_key)
        except NotFoundError:
            return None
        record = book_from_edition(edition)
        record.open_library_key = normalize_openlibrary_key(edition_key, "books")
        return record

    async def _from_isbn(self, identifier: str) -> Optional[BookRecord]:
        identifier = identifier.strip()
        if not identifier:
            return None
        try:
            edition = await self.client.get_by_isbn(identifier)
        except NotFoundError:
            return None
        record = book_from_edition(edition)
        if not record.isbn:
            record.isbn = identifier
        return record


__all__ = [
    "BookRecord",
    "BookResolver",
    "TitleFetcher",
    "normalize_isbn",
    "is_valid_isbn10",
    "is_valid_isbn13",
    "is_valid_isbn",
    "extract_isbn_from_segments",
    "parse_goodreads_book_id",
    "parse_amazon_asin",
    "parse_openlibrary_work_key",
    "parse_openlibrary_edition_key",
    "normalize_openlibrary_key",
    "normalize_book_page_title",
    "should_extract_book_metadata",
    "book_from_search_doc",
    "book_from_work",
    "book_from_edition",
]
