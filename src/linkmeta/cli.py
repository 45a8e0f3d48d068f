from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, Optional

import typer

from .core.keys import K_EMBED_URL, K_PROVIDER, K_TITLE, K_TYPE
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.errors import LinkMetadataError, classify_fetch_error
from .workflows.resolver import LinkResolver
from .workflows.safe_fetch import SafeFetcher

app = typer.Typer(add_help_option=False, no_args_is_help=False)

EXIT_REJECTED = 2
EXIT_FETCH_FAILED = 3
_REJECTED_KINDS = {"invalid_url", "blocked", "dns"}


def _minimal_help() -> str:
    return """linkmeta (link preview CLI)

Usage:
  linkmeta resolve <url> [--section-type <TYPE>] [--json] [--verbose]
  linkmeta check-url <url>
  linkmeta doctor

Common options:
  --section-type  Section hint; movie or series enables movie metadata.
  --json          Print the metadata map as JSON only.
  --verbose       Log debug output to stderr.

Discoverability:
  --find <query>  Search commands, flags and env vars.
  --doctor        Run environment diagnostics and exit.
"""


_FIND_INDEX = [
    ("command", "resolve", "Resolve a URL into preview metadata."),
    ("command", "check-url", "Run only the SSRF validation for a URL."),
    ("command", "doctor", "Print environment and dependency diagnostics."),
    ("flag", "--section-type", "Section hint (movie/series enables movie metadata)."),
    ("flag", "--json", "Print the metadata map as JSON only."),
    ("flag", "--verbose", "Log debug output to stderr."),
    ("flag", "--find", "Search commands, flags and env vars."),
    ("flag", "--doctor", "Run environment diagnostics and exit."),
    ("env", "TMDB_API_KEY", "Enable movie and TV metadata."),
    ("env", "OMDB_API_KEY", "Enable Rotten Tomatoes / Metacritic scores."),
    ("env", "LINKMETA_FETCH_TIMEOUT", "Primary fetch timeout in seconds."),
    ("env", "LINKMETA_MAX_BODY_BYTES", "Maximum response bytes read per page."),
    ("env", "LINKMETA_TMDB_RATE_LIMIT", "TMDB requests per 10 seconds."),
    ("env", "LINKMETA_OMDB_DAILY_LIMIT", "OMDb requests per 24 hours."),
    ("env", "LINKMETA_LOG_LEVEL", "Log level when --verbose is not given."),
]


def _run_find(query: str) -> str:
    needle = (query or "").strip().lower()
    if not needle:
        return ""
    lines = []
    for category, name, desc in _FIND_INDEX:
        if needle in f"{category} {name} {desc}".lower():
            lines.append(f"{category} {name} - {desc}")
    return "\n".join(lines)


def _configure_logging(verbose: bool) -> None:
    level_name = "DEBUG" if verbose else (os.getenv("LINKMETA_LOG_LEVEL") or "WARNING").upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.WARNING), format="%(message)s", stream=sys.stderr)


def _exit_code_for(exc: BaseException) -> int:
    return EXIT_REJECTED if classify_fetch_error(exc) in _REJECTED_KINDS else EXIT_FETCH_FAILED


def _summary(metadata: Dict[str, Any]) -> str:
    lines = [f"provider: {metadata.get(K_PROVIDER, '')}"]
    for key in (K_TITLE, K_TYPE, K_EMBED_URL):
        if metadata.get(key):
            lines.append(f"{key}: {metadata[key]}")
    for key in ("movie", "book_data", "recipe"):
        record = metadata.get(key)
        if record:
            name = record.get("title") or record.get("name") or ""
            lines.append(f"{key}: {name}")
    return "\n".join(lines)


async def _resolve(url: str, section_type: Optional[str]) -> Dict[str, Any]:
    async with LinkResolver() as resolver:
        return await resolver.resolve(url, section_type)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    find: Optional[str] = typer.Option(None, "--find", is_eager=True, help="Search commands, flags and env vars."),
    doctor: bool = typer.Option(False, "--doctor", is_eager=True, help="Run environment diagnostics and exit."),
) -> None:
    if find is not None:
        output = _run_find(find)
        if output:
            typer.echo(output)
        raise typer.Exit(code=0)
    if doctor:
        report = build_doctor_report()
        typer.echo(format_doctor_report(report))
        raise typer.Exit(code=0 if report.get("ok", True) else 2)
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)


@app.command("doctor", add_help_option=True)
def doctor_cmd() -> None:
    """Print environment and dependency diagnostics."""
    report = build_doctor_report()
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("resolve", add_help_option=True)
def resolve_cmd(
    url: str = typer.Argument(..., help="URL to resolve."),
    section_type: Optional[str] = typer.Option(None, "--section-type", help="Section hint, e.g. movie or series."),
    json_out: bool = typer.Option(False, "--json", help="Print the metadata map as JSON only."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr."),
) -> None:
    _configure_logging(verbose)
    try:
        metadata = asyncio.run(_resolve(url, section_type))
    except (LinkMetadataError, asyncio.TimeoutError) as exc:
        if not json_out:
            typer.echo(f"error ({classify_fetch_error(exc)}): {exc}", err=True)
        raise typer.Exit(code=_exit_code_for(exc))
    if json_out:
        sys.stdout.write(json.dumps(metadata, ensure_ascii=False) + "\n")
    else:
        typer.echo(_summary(metadata))
    raise typer.Exit(code=0)


@app.command("check-url", add_help_option=True)
def check_url(url: str = typer.Argument(..., help="URL to validate.")) -> None:
    """Run the SSRF validation only (no request is made to the URL)."""
    try:
        asyncio.run(SafeFetcher().validate_url(url))
    except LinkMetadataError as exc:
        typer.echo(f"rejected ({classify_fetch_error(exc)}): {exc}")
        raise typer.Exit(code=EXIT_REJECTED)
    typer.echo(f"allowed: {url}")
    raise typer.Exit(code=0)
