from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, FeatureNotFound  # type: ignore

from .linkmeta_config import (
    MAX_BODY_BYTES,
    OMDB_API_KEY_ENV,
    OMDB_DAILY_LIMIT,
    TMDB_API_KEY_ENV,
    TMDB_RATE_LIMIT,
)
from .linkmeta_utils import env_int


_SECRET_TOKENS = ("key", "token", "secret", "password", "pass")

# (env var, default) pairs where a non-positive value turns the limit off.
_LIMIT_ENV = (
    ("LINKMETA_TMDB_RATE_LIMIT", TMDB_RATE_LIMIT),
    ("LINKMETA_OMDB_DAILY_LIMIT", OMDB_DAILY_LIMIT),
)


def _is_secret_name(name: str) -> bool:
    lowered = (name or "").lower()
    return any(token in lowered for token in _SECRET_TOKENS)


def redact_value(value: str, keep: int = 4) -> str:
    raw = (value or "").strip()
    if not raw:
        return ""
    if len(raw) <= keep * 2:
        return "*" * len(raw)
    return f"{raw[:keep]}...{raw[-keep:]}"


def _redacted_env_value(name: str, value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return redact_value(value) if _is_secret_name(name) else value


def _check_lxml_available() -> bool:
    try:
        BeautifulSoup("<p></p>", "lxml")
    except FeatureNotFound:
        return False
    return True


def _parses_as(raw: str, kind: type) -> bool:
    try:
        kind(raw)
    except ValueError:
        return False
    return True


def collect_environment_warnings() -> List[Dict[str, str]]:
    """Flag env overrides that are set but unusable or that switch a safeguard off."""

    warnings: List[Dict[str, str]] = []
    timeout_raw = os.getenv("LINKMETA_FETCH_TIMEOUT", "").strip()
    if timeout_raw and (not _parses_as(timeout_raw, float) or float(timeout_raw) <= 0):
        warnings.append(
            {
                "code": "invalid_fetch_timeout",
                "message": f"LINKMETA_FETCH_TIMEOUT={timeout_raw!r} is not a positive number.",
                "remedy": "Unset it or use seconds, e.g. 5.",
            }
        )
    body_raw = os.getenv("LINKMETA_MAX_BODY_BYTES", "").strip()
    if body_raw and (not _parses_as(body_raw, int) or int(body_raw) <= 0):
        warnings.append(
            {
                "code": "invalid_max_body_bytes",
                "message": f"LINKMETA_MAX_BODY_BYTES={body_raw!r} is not a positive integer.",
                "remedy": f"Unset it or use a byte count such as {MAX_BODY_BYTES}.",
            }
        )
    for name, default in _LIMIT_ENV:
        if os.getenv(name, "").strip() and env_int(name, default) <= 0:
            warnings.append(
                {
                    "code": "rate_limit_disabled",
                    "message": f"{name} is <= 0; requests to the provider are not rate limited.",
                    "remedy": f"Unset {name} to use the default of {default}.",
                }
            )
    return warnings


def build_doctor_report() -> Dict[str, Any]:
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
        "environment_warnings": collect_environment_warnings(),
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
        value: Optional[str] = None,
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        if value is not None:
            entry["value"] = _redacted_env_value(name, value)
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    lxml_ok = _check_lxml_available()
    add_check(
        "lxml",
        lxml_ok,
        detail="HTML parser available" if lxml_ok else "BeautifulSoup cannot load the lxml parser",
        remedy="pip install lxml",
        level="warn",
    )

    tmdb_key = os.getenv(TMDB_API_KEY_ENV) or None
    add_check(
        TMDB_API_KEY_ENV,
        bool(tmdb_key),
        detail="Movie metadata enabled" if tmdb_key else "Movie metadata disabled",
        remedy=f"Set {TMDB_API_KEY_ENV} (or add it to .env) to resolve movie and TV links.",
        level="info",
        value=tmdb_key,
    )

    omdb_key = os.getenv(OMDB_API_KEY_ENV) or None
    add_check(
        OMDB_API_KEY_ENV,
        bool(omdb_key),
        detail="Rotten Tomatoes / Metacritic scores enabled" if omdb_key else "Rating enrichment disabled",
        remedy=f"Set {OMDB_API_KEY_ENV} to add rating scores to movie metadata.",
        level="info",
        value=omdb_key,
    )

    if report["environment_warnings"]:
        report["ok"] = False
    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("linkmeta doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("Values are redacted where applicable.")
    lines.append("")
    for check in report.get("checks", []):
        label = f"{check.get('name', 'check')}: {check.get('status', 'unknown')}"
        if check.get("value"):
            label = f"{label} ({check['value']})"
        lines.append(f"- [{check.get('level', 'info')}] {label}")
        if check.get("detail"):
            lines.append(f"  detail: {check['detail']}")
        if check.get("remedy"):
            lines.append(f"  remedy: {check['remedy']}")
    warnings = report.get("environment_warnings") or []
    if warnings:
        lines.append("")
        lines.append("Environment warnings:")
        for warning in warnings:
            lines.append(f"- {warning.get('code', 'warning')}: {warning.get('message', '')}")
            if warning.get("remedy"):
                lines.append(f"  remedy: {warning['remedy']}")
    return "\n".join(lines).rstrip() + "\n"


__all__ = ["build_doctor_report", "collect_environment_warnings", "format_doctor_report", "redact_value"]
