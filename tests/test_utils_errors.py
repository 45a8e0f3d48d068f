import asyncio
from dataclasses import dataclass, field
from typing import List

import pytest

from linkmeta.workflows import linkmeta_utils
from linkmeta.workflows.errors import (
    APIError,
    BlockedURLError,
    FetchError,
    FetchStatusError,
    InvalidURLError,
    NotFoundError,
    RateLimitedError,
    RedirectLimitError,
    classify_fetch_error,
)


def test_classify_fetch_error():
    assert classify_fetch_error(None) == ""
    assert classify_fetch_error(asyncio.TimeoutError()) == "timeout"
    assert classify_fetch_error(InvalidURLError("x")) == "invalid_url"
    assert classify_fetch_error(BlockedURLError("x")) == "blocked"
    assert classify_fetch_error(FetchStatusError(500)) == "http_status"
    assert classify_fetch_error(RedirectLimitError("x")) == "redirect"
    assert classify_fetch_error(FetchError("x")) == "fetch_error"


def test_api_error_from_response_picks_subclass():
    assert isinstance(APIError.from_response("tmdb", 404, "missing"), NotFoundError)
    limited = APIError.from_response("tmdb", 429, "slow", retry_after=2)
    assert isinstance(limited, RateLimitedError)
    assert str(limited) == "tmdb api error (429): slow (retry after 2s)"
    assert APIError.from_response("tmdb", 500, "boom").kind == "generic"
    assert str(FetchStatusError(503, "unexpected status")) == "unexpected status: 503 unexpected status"


@pytest.mark.parametrize(
    "host, domains, expected",
    [
        ("www.imdb.com", ("imdb.com",), True),
        ("IMDB.COM.", ("imdb.com",), True),
        ("notimdb.com", ("imdb.com",), False),
        ("imdb.com.evil.net", ("imdb.com",), False),
        ("m.youtube.com", ("youtu.be", "youtube.com"), True),
        ("", ("imdb.com",), False),
    ],
)
def test_host_matches(host, domains, expected):
    assert linkmeta_utils.host_matches(host, *domains) is expected


def test_is_internal_upload_url():
    assert linkmeta_utils.is_internal_upload_url("/api/v1/uploads")
    assert linkmeta_utils.is_internal_upload_url("https://app.example.com/api/v1/uploads/x.png")
    assert not linkmeta_utils.is_internal_upload_url("/api/v1/uploadsx")
    assert not linkmeta_utils.is_internal_upload_url("")


def test_detect_provider():
    assert linkmeta_utils.detect_provider("open.spotify.com") == "spotify"
    assert linkmeta_utils.detect_provider("youtu.be") == "youtube"
    assert linkmeta_utils.detect_provider("vimeo.com") == "vimeo"
    assert linkmeta_utils.detect_provider("example.com") == ""


@dataclass
class _Record:
    title: str = ""
    count: int = 0
    tags: List[str] = field(default_factory=list)
    flag: bool = False


def test_fill_empty_fields_treats_zero_as_empty():
    target = _Record(title="kept")
    linkmeta_utils.fill_empty_fields(target, _Record(title="other", count=3, tags=["a"], flag=True))
    assert target == _Record(title="kept", count=3, tags=["a"], flag=False)
    assert linkmeta_utils.fill_empty_fields(None, target) is None


def test_env_helpers_fall_back_on_bad_values(monkeypatch):
    monkeypatch.setenv("LINKMETA_TEST_INT", "nope")
    monkeypatch.setenv("LINKMETA_TEST_FLOAT", " 1.5 ")
    assert linkmeta_utils.env_int("LINKMETA_TEST_INT", 7) == 7
    assert linkmeta_utils.env_float("LINKMETA_TEST_FLOAT", 0.0) == 1.5
    assert linkmeta_utils.env_int("LINKMETA_TEST_UNSET", 4) == 4


def test_split_and_unique_helpers():
    assert linkmeta_utils.split_url_path("/film/%C3%A9t%C3%A9//") == ["film", "été"]
    assert linkmeta_utils.split_lines(" a \r\n\r\nb\n") == ["a", "b"]
    assert linkmeta_utils.unique_strings([" a", "a", "", "B"]) == ["a", "B"]
    assert linkmeta_utils.clean_string_list(["Ann", "ann", " Bo "]) == ["Ann", "Bo"]
    assert linkmeta_utils.resolve_url("https://x.com/a/b", "../c.png") == "https://x.com/c.png"
    assert linkmeta_utils.resolve_url("https://x.com/a", "https://y.com/d.png") == "https://y.com/d.png"


@pytest.mark.parametrize(
    "raw_url, expected",
    [
        ("https://WWW.Example.COM:8443/path?q=1", "www.example.com"),
        ("http://bücher.example/", "xn--bcher-kva.example"),
        ("https://example.com./", "example.com"),
        ("/api/v1/uploads/x.png", ""),
        ("   ", ""),
        ("http://[::1", ""),
    ],
)
def test_extract_domain(raw_url, expected):
    assert linkmeta_utils.extract_domain(raw_url) == expected
