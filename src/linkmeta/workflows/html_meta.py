"""HTML helpers: meta-tag map, title, JSON-LD blocks, iframe sources (BeautifulSoup + lxml)."""

from __future__ import annotations

import warnings
from typing import Dict, List, Optional, Tuple, Union

from bs4 import BeautifulSoup, Tag, XMLParsedAsHTMLWarning  # type: ignore

from ..core.keys import (
    K_ARTIST,
    K_AUTHOR,
    K_DESCRIPTION,
    K_IMAGE,
    K_SITE_NAME,
    K_TITLE,
    K_TYPE,
)
from .linkmeta_utils import first_non_empty, resolve_url

warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

HTMLInput = Union[bytes, str, BeautifulSoup]

_SKIP_TEXT_TAGS = {"script", "style", "noscript"}


def parse_html(body: HTMLInput) -> BeautifulSoup:
    if isinstance(body, BeautifulSoup):
        return body
    return BeautifulSoup(body or b"", "lxml")


def extract_html_meta(body: HTMLInput) -> Tuple[Dict[str, str], str]:
    """Return ``(meta_tags, title)``.

    Keys come from ``property`` or ``name`` (lowercased); the first tag with a
    non-empty content wins. ``title`` is the trimmed ``<title>`` text.
    """

    meta_tags: Dict[str, str] = {}
    if not body:
        return meta_tags, ""
    soup = parse_html(body)
    for tag in soup.find_all("meta"):
        key = ""
        for attr in ("property", "name"):
            value = tag.get(attr)
            if value:
                key = str(value).strip().lower()
        content = str(tag.get("content") or "").strip()
        if key and content and key not in meta_tags:
            meta_tags[key] = content
    title = ""
    if soup.title is not None and soup.title.string:
        title = soup.title.string.strip()
    return meta_tags, title


def preview_fields(meta_tags: Dict[str, str], title: str, base_url: str) -> Dict[str, str]:
    """Collapse Open Graph / Twitter / generic tags into preview fields."""

    fields = {
        K_TITLE: first_non_empty(meta_tags.get("og:title"), meta_tags.get("twitter:title"), title),
        K_DESCRIPTION: first_non_empty(
            meta_tags.get("og:description"),
            meta_tags.get("twitter:description"),
            meta_tags.get("description"),
        ),
        K_IMAGE: first_non_empty(
            meta_tags.get("og:image:secure_url"),
            meta_tags.get("og:image"),
            meta_tags.get("twitter:image"),
            meta_tags.get("twitter:image:src"),
        ),
        K_SITE_NAME: first_non_empty(meta_tags.get("og:site_name"), meta_tags.get("application-name")),
        K_AUTHOR: first_non_empty(meta_tags.get("author"), meta_tags.get("twitter:creator")),
        K_ARTIST: first_non_empty(
            meta_tags.get("music:artist"),
            meta_tags.get("music:musician"),
            meta_tags.get("spotify:artist"),
        ),
        K_TYPE: (meta_tags.get("og:type") or "").strip(),
    }
    if fields[K_IMAGE]:
        fields[K_IMAGE] = resolve_url(base_url, fields[K_IMAGE])
    return {key: value for key, value in fields.items() if value}


def extract_json_ld_scripts(body: HTMLInput) -> List[str]:
    """Raw text of every ``<script type="...ld+json">`` block, in document order."""

    if not body:
        return []
    scripts: List[str] = []
    for tag in parse_html(body).find_all("script"):
        script_type = str(tag.get("type") or "").strip().lower()
        if "ld+json" not in script_type:
            continue
        scripts.append(tag.string or tag.get_text() or "")
    return scripts


def find_attribute(body: HTMLInput, name: str) -> str:
    """Value of the first element carrying attribute ``name``."""

    if not body:
        return ""
    tag = parse_html(body).find(attrs={name: True})
    if tag is None:
        return ""
    return str(tag.get(name) or "").strip()


def extract_iframe_src(snippet: str) -> str:
    """``src`` of the first ``<iframe>`` in an HTML snippet, or ``""``."""

    if not (snippet or "").strip():
        return ""
    iframe = BeautifulSoup(snippet, "lxml").find("iframe")
    if iframe is None:
        return ""
    return str(iframe.get("src") or "").strip()


def node_text(node: Optional[Tag]) -> str:
    """Whitespace-joined text of ``node`` ignoring script/style/noscript content."""

    if node is None:
        return ""
    parts: List[str] = []
    for text in node.find_all(string=True):
        parent = text.parent
        if parent is not None and parent.name in _SKIP_TEXT_TAGS:
            continue
        parts.append(str(text))
    return " ".join(parts).strip()


__all__ = [
    "parse_html",
    "extract_html_meta",
    "preview_fields",
    "extract_json_ld_scripts",
    "find_attribute",
    "extract_iframe_src",
    "node_text",
]
