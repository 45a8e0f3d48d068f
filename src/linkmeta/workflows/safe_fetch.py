"""SSRF-guarded page fetcher built on aiohttp.

Every URL, including each redirect target, is validated before a request is
made: scheme, blocked hostnames, literal IPs and every DNS answer are checked.
Redirects are followed manually so the validation runs per hop.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, urljoin, urlparse

import aiohttp

from .errors import (
    BlockedURLError,
    DNSResolutionError,
    FetchError,
    FetchStatusError,
    InvalidURLError,
    RedirectLimitError,
)
from .html_meta import extract_html_meta
from .linkmeta_config import (
    ACCEPT_HTML,
    BLOCKED_HOST_SUFFIXES,
    BLOCKED_HOSTNAMES,
    BROWSER_ACCEPT_LANGUAGE,
    BROWSER_USER_AGENT,
    DEFAULT_USER_AGENT,
    FETCH_TIMEOUT_SECONDS,
    HDR_ACCEPT,
    HDR_ACCEPT_LANGUAGE,
    HDR_USER_AGENT,
    IMAGE_EXTENSIONS,
    IMAGE_QUERY_KEYS,
    MAX_BODY_BYTES,
    MAX_FETCH_RETRIES,
    MAX_REDIRECTS,
    REDIRECT_STATUS_CODES,
    RETRY_BACKOFF_BASE,
    RETRY_BACKOFF_MAX,
    RETRY_STATUS_CODES,
)
from .linkmeta_utils import env_float, env_int, first_non_empty, host_matches, unique_strings

logger = logging.getLogger(__name__)

HostResolver = Callable[[str], Awaitable[Sequence[str]]]

_READ_CHUNK_BYTES = 64 * 1024


@dataclass
class FetchConfig:
    """Limits and headers for the primary page fetch."""

    timeout: float = field(default_factory=lambda: env_float("LINKMETA_FETCH_TIMEOUT", FETCH_TIMEOUT_SECONDS))
    max_body_bytes: int = field(default_factory=lambda: env_int("LINKMETA_MAX_BODY_BYTES", MAX_BODY_BYTES))
    max_redirects: int = MAX_REDIRECTS
    max_retries: int = MAX_FETCH_RETRIES
    backoff_initial: float = RETRY_BACKOFF_BASE
    backoff_max: float = RETRY_BACKOFF_MAX
    user_agent: str = DEFAULT_USER_AGENT
    accept: str = ACCEPT_HTML


@dataclass
class FetchedPage:
    """Result of a successful (validated) fetch. ``body`` is capped, never rejected."""

    url: str
    final_url: str
    status: int
    content_type: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = field(default=b"", repr=False, compare=False)
    truncated: bool = False
    redirects: int = 0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400

    @property
    def is_html(self) -> bool:
        return "text/html" in self.content_type.lower()

    @property
    def is_image(self) -> bool:
        return self.content_type.lower().startswith("image/")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "final_url": self.final_url,
            "status": self.status,
            "content_type": self.content_type,
            "body_bytes": len(self.body),
            "truncated": self.truncated,
            "redirects": self.redirects,
        }


def is_blocked_hostname(host: str) -> bool:
    host = (host or "").strip().rstrip(".").lower()
    if host in BLOCKED_HOSTNAMES:
        return True
    return host.endswith(BLOCKED_HOST_SUFFIXES)


def is_blocked_ip(value: str) -> bool:
    """True for loopback, link-local, private or unspecified addresses (and unparsable input)."""

    try:
        ip = ipaddress.ip_address((value or "").strip())
    except ValueError:
        return True
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    if ip.is_loopback or ip.is_link_local or ip.is_private or ip.is_unspecified:
        return True
    if ip.is_multicast:
        # Only the link-local multicast scopes (224.0.0.0/24, ff02::/16).
        if isinstance(ip, ipaddress.IPv4Address):
            return ip in ipaddress.ip_network("224.0.0.0/24")
        return ip in ipaddress.ip_network("ff02::/16")
    return False


def _literal_ip(host: str) -> Optional[str]:
    try:
        return str(ipaddress.ip_address(host.strip("[]")))
    except ValueError:
        return None


async def system_resolve(host: str) -> Sequence[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return unique_strings(str(info[4][0]) for info in infos)


def _has_image_extension(value: str) -> bool:
    lower = (value or "").lower()
    if not lower:
        return False
    for ext in IMAGE_EXTENSIONS:
        needle = "." + ext
        idx = lower.rfind(needle)
        if idx == -1:
            continue
        end = idx + len(needle)
        if end == len(lower) or lower[end] in "?#&":
            return True
    return False


def looks_like_image_url(raw_url: str) -> bool:
    """Guess from the URL alone whether it serves an image."""

    try:
        parsed = urlparse(raw_url or "")
    except ValueError:
        return False
    if _has_image_extension(parsed.path):
        return True
    if not parsed.query:
        return False
    pairs = parse_qsl(parsed.query, keep_blank_values=True)
    first_values: Dict[str, str] = {}
    for key, value in pairs:
        first_values.setdefault(key, value)
    image_tokens = set(IMAGE_EXTENSIONS) | {"image"}
    for key in IMAGE_QUERY_KEYS:
        if first_values.get(key, "").lower() in image_tokens:
            return True
    return any(_has_image_extension(value) for _, value in pairs)


def request_headers(raw_url: str, config: Optional[FetchConfig] = None) -> Dict[str, str]:
    cfg = config or FetchConfig()
    headers = {HDR_USER_AGENT: cfg.user_agent, HDR_ACCEPT: cfg.accept}
    host = urlparse(raw_url).hostname or ""
    if host_matches(host, "imdb.com"):
        headers[HDR_USER_AGENT] = BROWSER_USER_AGENT
        headers[HDR_ACCEPT_LANGUAGE] = BROWSER_ACCEPT_LANGUAGE
    return headers


class SafeFetcher:
    """Fetch one page with SSRF validation on the initial URL and every redirect hop."""

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        *,
        resolver: Optional[HostResolver] = None,
    ) -> None:
        self.config = config or FetchConfig()
        self._resolver = resolver or system_resolve

    async def validate_url(self, raw_url: str) -> str:
        """Raise unless ``raw_url`` is an http(s) URL whose host is publicly routable."""

        try:
            parsed = urlparse((raw_url or "").strip())
        except ValueError as exc:
            raise InvalidURLError(f"parse url: {exc}") from exc
        if not parsed.scheme:
            raise InvalidURLError("missing url scheme")
        if not parsed.netloc:
            raise InvalidURLError("missing url host")
        if parsed.scheme.lower() not in {"http", "https"}:
            raise InvalidURLError(f"unsupported url scheme: {parsed.scheme}")
        try:
            host = (parsed.hostname or "").rstrip(".").lower()
        except ValueError as exc:
            raise InvalidURLError(f"parse url: {exc}") from exc
        if not host:
            raise InvalidURLError("missing url host")
        if is_blocked_hostname(host):
            raise BlockedURLError(f"blocked host: {host}")

        literal = _literal_ip(host)
        if literal is not None:
            if is_blocked_ip(literal):
                raise BlockedURLError(f"blocked ip: {literal}")
            return raw_url

        try:
            addresses = list(await self._resolver(host))
        except (OSError, UnicodeError) as exc:
            raise DNSResolutionError(f"resolve host {host}: {exc}") from exc
        if not addresses:
            raise DNSResolutionError(f"resolve host {host}: no addresses")
        for address in addresses:
            if is_blocked_ip(address):
                raise BlockedURLError(f"blocked ip: {address}")
        return raw_url

    async def fetch(self, raw_url: str) -> FetchedPage:
        """Validate and GET ``raw_url``, bounded by ``config.timeout`` overall."""

        try:
            return await asyncio.wait_for(self._fetch(raw_url), timeout=self.config.timeout)
        except asyncio.TimeoutError:
            logger.warning("Fetch timed out after %.1fs: %s", self.config.timeout, raw_url)
            raise

    async def _fetch(self, raw_url: str) -> FetchedPage:
        await self.validate_url(raw_url)
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)
        started = time.perf_counter()
        current = raw_url
        redirects = 0
        async with aiohttp.ClientSession(timeout=timeout) as session:
            while True:
                status, headers, body, truncated = await self._fetch_with_retries(session, current)
                location = headers.get("Location") or headers.get("location") or ""
                if status in REDIRECT_STATUS_CODES and location:
                    if redirects >= self.config.max_redirects:
                        raise RedirectLimitError(f"too many redirects (>{self.config.max_redirects})")
                    target = urljoin(current, location)
                    await self.validate_url(target)
                    logger.debug("Following redirect %s -> %s", current, target)
                    current = target
                    redirects += 1
                    continue
                break
        content_type = headers.get("Content-Type") or headers.get("content-type") or ""
        logger.debug(
            "Fetched %s status=%s bytes=%d duration_ms=%d",
            current,
            status,
            len(body),
            int((time.perf_counter() - started) * 1000),
        )
        return FetchedPage(
            url=raw_url,
            final_url=current,
            status=status,
            content_type=content_type,
            headers=headers,
            body=body,
            truncated=truncated,
            redirects=redirects,
        )

    async def _fetch_with_retries(
        self,
        session: aiohttp.ClientSession,
        url: str,
    ) -> Tuple[int, Dict[str, str], bytes, bool]:
        delay = self.config.backoff_initial
        for attempt in range(self.config.max_retries + 1):
            last_attempt = attempt == self.config.max_retries
            try:
                result = await self._fetch_once(session, url)
            except asyncio.TimeoutError:
                if last_attempt:
                    raise
                logger.debug("Fetch attempt %d timed out: %s", attempt + 1, url)
            except aiohttp.ClientError as exc:
                raise FetchError(f"fetch url: {exc}") from exc
            else:
                if result[0] not in RETRY_STATUS_CODES or last_attempt:
                    return result
                logger.debug("Fetch attempt %d got retryable status %s: %s", attempt + 1, result[0], url)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.config.backoff_max)
        raise RuntimeError("unexpected retry state")

    async def _fetch_once(
        self,
        session: aiohttp.ClientSession,
        url: str,
    ) -> Tuple[int, Dict[str, str], bytes, bool]:
        async with session.get(
            url,
            headers=request_headers(url, self.config),
            allow_redirects=False,
        ) as resp:
            headers = {key: value for key, value in resp.headers.items()}
            if resp.status in REDIRECT_STATUS_CODES:
                return resp.status, headers, b"", False
            chunks = []
            size = 0
            truncated = False
            async for chunk in resp.content.iter_chunked(_READ_CHUNK_BYTES):
                remaining = self.config.max_body_bytes - size
                if len(chunk) >= remaining:
                    chunks.append(chunk[:remaining])
                    size += remaining
                    truncated = len(chunk) > remaining
                    break
                chunks.append(chunk)
                size += len(chunk)
            return resp.status, headers, b"".join(chunks), truncated

    async def fetch_page_title(self, raw_url: str) -> str:
        """Fetch a page and return og:title, twitter:title or ``<title>``."""

        page = await self.fetch(raw_url)
        if not page.ok:
            raise FetchStatusError(page.status)
        meta_tags, title = extract_html_meta(page.body)
        return first_non_empty(meta_tags.get("og:title"), meta_tags.get("twitter:title"), title)


__all__ = [
    "FetchConfig",
    "FetchedPage",
    "SafeFetcher",
    "HostResolver",
    "is_blocked_hostname",
    "is_blocked_ip",
    "looks_like_image_url",
    "request_headers",
    "system_resolve",
]
