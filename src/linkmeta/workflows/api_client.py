"""Shared aiohttp plumbing for the JSON provider APIs (TMDB, OMDb, Open Library)."""

from __future__ import annotations

import asyncio
import email.utils
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import aiohttp

from .errors import APIError
from .linkmeta_config import (
    ACCEPT_JSON,
    API_ERROR_BODY_MAX_BYTES,
    API_TIMEOUT_SECONDS,
    HDR_ACCEPT,
    HDR_RETRY_AFTER,
    HDR_USER_AGENT,
)

logger = logging.getLogger(__name__)

_SENSITIVE_PARAMS = {"api_key", "apikey", "token", "access_token"}


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given as delta-seconds or an HTTP date."""

    stripped = (value or "").strip()
    if not stripped:
        return None
    try:
        seconds = float(stripped)
    except ValueError:
        seconds = None
    if seconds is not None:
        return max(seconds, 0.0)
    try:
        when = email.utils.parsedate_to_datetime(stripped)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def redact_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        key: ("***" if key.lower() in _SENSITIVE_PARAMS else value)
        for key, value in (params or {}).items()
    }


class JSONAPIClient:
    """GET-only JSON client with typed errors.

    Subclasses set ``provider`` and may override :meth:`_acquire` to apply a
    rate limit before each call. ``_request`` is the single network seam.
    """

    provider = "api"

    def __init__(
        self,
        base_url: str,
        *,
        user_agent: str,
        timeout: float = API_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={HDR_USER_AGENT: self.user_agent, HDR_ACCEPT: ACCEPT_JSON},
            )
            self._owns_session = True
        return self._session

    async def aclose(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _acquire(self) -> None:
        return None

    async def _request(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Dict[str, str], bytes]:
        session = await self._get_session()
        async with session.get(url, params=params) as resp:
            body = await resp.read()
            return resp.status, {key: value for key, value in resp.headers.items()}, body

    def _error_message(self, status: int, body: bytes) -> str:
        snippet = (body or b"")[:API_ERROR_BODY_MAX_BYTES]
        try:
            payload = json.loads(snippet.decode("utf-8", "ignore"))
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            for key in ("status_message", "message", "Error", "error"):
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        text = snippet.decode("utf-8", "ignore").strip()
        return text or f"http status {status}"

    def _build_error(self, status: int, message: str, retry_after: Optional[float]) -> APIError:
        return APIError.from_response(self.provider, status, message, retry_after)

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``base_url + path`` and decode JSON, raising the APIError family on failure."""

        await self._acquire()
        url = f"{self.base_url}{path}"
        started = time.perf_counter()
        try:
            status, headers, body = await self._request(url, params)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("%s request failed path=%s error=%s", self.provider, path, exc)
            raise APIError(self.provider, 0, f"request failed: {str(exc) or type(exc).__name__}") from exc
        duration_ms = int((time.perf_counter() - started) * 1000)

        if not 200 <= status < 300:
            retry_after = parse_retry_after(headers.get(HDR_RETRY_AFTER) or headers.get(HDR_RETRY_AFTER.lower()))
            logger.warning(
                "%s request failed path=%s status=%s duration_ms=%d",
                self.provider,
                path,
                status,
                duration_ms,
            )
            raise self._build_error(status, self._error_message(status, body), retry_after)

        logger.debug(
            "%s request ok path=%s params=%s status=%s duration_ms=%d",
            self.provider,
            path,
            redact_params(params),
            status,
            duration_ms,
        )
        try:
            return json.loads(body.decode("utf-8", "ignore") or "null")
        except ValueError as exc:
            raise APIError(self.provider, status, f"decode response: {exc}") from exc


__all__ = ["JSONAPIClient", "parse_retry_after", "redact_params"]
