"""Embed record, embed URL allowlist check and flattening into the metadata map."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import urlparse

from ..core.keys import K_EMBED, K_EMBED_HEIGHT, K_EMBED_PROVIDER, K_EMBED_URL, K_EMBED_WIDTH
from .errors import EmbedValidationError
from .linkmeta_config import EMBED_ALLOWED_HOSTS

KIND_IFRAME = "iframe"
KIND_OEMBED = "oembed"


@dataclass(frozen=True)
class Embed:
    kind: str
    provider: str
    embed_url: str
    width: Optional[int] = None
    height: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.kind,
            "provider": self.provider,
            "embed_url": self.embed_url,
        }
        if self.width:
            payload["width"] = self.width
        if self.height:
            payload["height"] = self.height
        return payload


class EmbedExtractor:
    """One provider in the embed chain."""

    provider = ""

    def can_extract(self, url: str) -> bool:
        raise NotImplementedError

    async def extract(self, url: str) -> Optional[Embed]:
        raise NotImplementedError


class HTMLEmbedExtractor(EmbedExtractor):
    """Provider that can build an embed from a page that was already fetched.

    ``extract_from_html`` returning None (or raising) sends the chain on to
    the network-backed :meth:`extract`.
    """

    async def extract_from_html(
        self,
        url: str,
        body: Union[bytes, str, None],
        meta_tags: Optional[Dict[str, str]],
    ) -> Optional[Embed]:
        raise NotImplementedError


def validate_embed_url(embed_url: str) -> str:
    """Raise :class:`EmbedValidationError` unless ``embed_url`` is https on an allowed host."""

    if not (embed_url or "").strip():
        raise EmbedValidationError("embed url is required")
    try:
        parsed = urlparse(embed_url.strip())
        host = (parsed.hostname or "").strip().lower()
    except ValueError as exc:
        raise EmbedValidationError(f"parse embed url: {exc}") from exc
    if parsed.scheme != "https":
        raise EmbedValidationError("embed url must use https")
    if not host:
        raise EmbedValidationError("embed url missing host")
    if host not in EMBED_ALLOWED_HOSTS:
        raise EmbedValidationError(f"embed domain not allowed: {host}")
    return embed_url.strip()


def positive_int(value: Any) -> Optional[int]:
    """oEmbed sizes arrive as ints, numeric strings or ``"100%"``; keep positive integers only."""

    if isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def apply_embed_metadata(metadata: Optional[Dict[str, Any]], embed: Optional[Embed]) -> Dict[str, Any]:
    """Store the embed plus flat ``embed_*`` keys on ``metadata``."""

    if metadata is None:
        metadata = {}
    if embed is None:
        return metadata
    metadata[K_EMBED] = embed.to_dict()
    metadata[K_EMBED_URL] = embed.embed_url
    metadata[K_EMBED_PROVIDER] = embed.provider
    if embed.height:
        metadata[K_EMBED_HEIGHT] = embed.height
    if embed.width:
        metadata[K_EMBED_WIDTH] = embed.width
    return metadata


__all__ = [
    "Embed",
    "EmbedExtractor",
    "HTMLEmbedExtractor",
    "KIND_IFRAME",
    "KIND_OEMBED",
    "validate_embed_url",
    "positive_int",
    "apply_embed_metadata",
]
