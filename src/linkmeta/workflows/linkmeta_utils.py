"""Shared helper functions used by the linkmeta workflows."""

from __future__ import annotations

import dataclasses
import os
from typing import Any, Iterable, List, Optional
from urllib.parse import unquote, urljoin, urlparse

from .linkmeta_config import INTERNAL_UPLOADS_PATH


def env_int(name: str, default: int = 0) -> int:
    try:
        raw = os.getenv(name, "")
        return int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def env_float(name: str, default: float = 0.0) -> float:
    try:
        raw = os.getenv(name, "")
        return float(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def idna_normalize(host: str) -> str:
    """Return a lowercase, IDNA-normalized host name."""

    h = (host or "").strip().rstrip(".").lower()
    if not h:
        return ""
    try:
        h = h.encode("idna").decode("ascii")
    except UnicodeError:
        pass
    return h


def host_matches(host: str, *domains: str) -> bool:
    """Return True when host equals one of the domains or is a subdomain of one."""

    normalized = idna_normalize(host)
    if not normalized:
        return False
    for domain in domains:
        token = (domain or "").strip().lower()
        if not token:
            continue
        if normalized == token or normalized.endswith(f".{token}"):
            return True
    return False


def url_host(raw_url: str) -> str:
    try:
        return idna_normalize(urlparse((raw_url or "").strip()).hostname or "")
    except ValueError:
        return ""


def extract_domain(raw_url: str) -> str:
    """Return the lowercased hostname for a URL string, or ``""``."""

    if not (raw_url or "").strip():
        return ""
    return url_host(raw_url)


def split_url_path(path: str) -> List[str]:
    """Split a URL path into unescaped, non-empty segments."""

    segments: List[str] = []
    for segment in (path or "").strip("/").split("/"):
        segment = segment.strip()
        if not segment:
            continue
        segments.append(unquote(segment))
    return segments


def first_non_empty(*values: Optional[str]) -> str:
    for value in values:
        if value and value.strip():
            return value.strip()
    return ""


def unique_strings(values: Iterable[str]) -> List[str]:
    """Trim values and drop blanks and exact duplicates, keeping order."""

    seen = set()
    unique: List[str] = []
    for value in values:
        clean = (value or "").strip()
        if not clean or clean in seen:
            continue
        seen.add(clean)
        unique.append(clean)
    return unique


def clean_string_list(values: Optional[Iterable[str]]) -> List[str]:
    """Like :func:`unique_strings` but case-insensitive on duplicates."""

    seen = set()
    cleaned: List[str] = []
    for value in values or ():
        trimmed = (value or "").strip()
        if not trimmed or trimmed.lower() in seen:
            continue
        seen.add(trimmed.lower())
        cleaned.append(trimmed)
    return cleaned


def split_lines(value: str) -> List[str]:
    """Split on CR/LF, returning trimmed non-empty lines."""

    return [line.strip() for line in (value or "").splitlines() if line.strip()]


def resolve_url(base: str, ref: str) -> str:
    """Resolve ``ref`` against ``base``; absolute refs are returned unchanged."""

    ref = (ref or "").strip()
    if not ref:
        return ""
    try:
        if urlparse(ref).scheme:
            return ref
        return urljoin(base, ref)
    except ValueError:
        return ref


def is_internal_upload_url(raw_url: str) -> bool:
    """Report whether a URL (relative or absolute) points at the internal uploads endpoint."""

    trimmed = (raw_url or "").strip()
    if not trimmed:
        return False
    prefix = INTERNAL_UPLOADS_PATH + "/"
    if trimmed == INTERNAL_UPLOADS_PATH or trimmed.startswith(prefix):
        return True
    try:
        path = urlparse(trimmed).path.strip()
    except ValueError:
        return False
    return path == INTERNAL_UPLOADS_PATH or path.startswith(prefix)


def detect_provider(host: str) -> str:
    """Map well-known media hosts to a short provider name."""

    host = (host or "").lower()
    if "spotify.com" in host:
        return "spotify"
    if "youtube.com" in host or "youtu.be" in host:
        return "youtube"
    if "imdb.com" in host:
        return "imdb"
    if "soundcloud.com" in host:
        return "soundcloud"
    if "bandcamp.com" in host:
        return "bandcamp"
    if "vimeo.com" in host:
        return "vimeo"
    return ""


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value) == 0
    if isinstance(value, (int, float)):
        return value == 0
    return False


def fill_empty_fields(target: Any, source: Any) -> Any:
    """Copy each dataclass field of ``source`` into ``target`` only where ``target`` is empty."""

    if target is None or source is None:
        return target
    for item in dataclasses.fields(target):
        if not is_empty_value(getattr(target, item.name)):
            continue
        value = getattr(source, item.name, None)
        if not is_empty_value(value):
            setattr(target, item.name, value)
    return target


def sanity_check() -> None:
    assert idna_normalize("ExAmple.COM.") == "example.com"
    assert host_matches("www.imdb.com", "imdb.com")
    assert not host_matches("notimdb.com", "imdb.com")
    assert split_url_path("/title//tt0111161/") == ["title", "tt0111161"]
    assert is_internal_upload_url("/api/v1/uploads/a.png")
    assert not is_internal_upload_url("https://example.com/api/v1/uploadsx")
    assert detect_provider("open.spotify.com") == "spotify"


sanity_check()

__all__ = [
    "env_int",
    "env_float",
    "idna_normalize",
    "host_matches",
    "url_host",
    "extract_domain",
    "split_url_path",
    "first_non_empty",
    "unique_strings",
    "clean_string_list",
    "split_lines",
    "resolve_url",
    "is_internal_upload_url",
    "detect_provider",
    "is_empty_value",
    "fill_empty_fields",
    "sanity_check",
]
