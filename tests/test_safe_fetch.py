import asyncio

import pytest

from linkmeta.workflows.errors import (
    BlockedURLError,
    DNSResolutionError,
    InvalidURLError,
    RedirectLimitError,
    classify_fetch_error,
)
from linkmeta.workflows.safe_fetch import (
    FetchConfig,
    SafeFetcher,
    is_blocked_ip,
    looks_like_image_url,
    request_headers,
)


def _resolver(*addresses):
    async def resolve(host):
        return list(addresses)

    return resolve


def _fetcher(*addresses, **config):
    return SafeFetcher(FetchConfig(backoff_initial=0, backoff_max=0, **config), resolver=_resolver(*addresses))


@pytest.mark.parametrize(
    "url",
    [
        "http://localhost/",
        "http://api.localhost:8080/x",
        "http://127.0.0.1/",
        "http://10.1.2.3/",
        "http://192.168.0.10/",
        "http://172.16.5.4/",
        "http://169.254.169.254/latest/meta-data",
        "http://0.0.0.0/",
        "http://[::1]/",
        "http://[fe80::1]/",
        "http://[::ffff:127.0.0.1]/",
    ],
)
def test_validate_url_rejects_internal_targets(url):
    fetcher = _fetcher("93.184.216.34")
    with pytest.raises(BlockedURLError):
        asyncio.run(fetcher.validate_url(url))


@pytest.mark.parametrize("url", ["ftp://example.com/file", "example.com/path", "http:///nohost", ""])
def test_validate_url_rejects_malformed(url):
    with pytest.raises(InvalidURLError):
        asyncio.run(_fetcher("93.184.216.34").validate_url(url))


def test_validate_url_rejects_hostname_resolving_to_private_ip():
    fetcher = _fetcher("93.184.216.34", "10.0.0.5")
    with pytest.raises(BlockedURLError):
        asyncio.run(fetcher.validate_url("https://sneaky.example.com/"))


def test_validate_url_accepts_public_host():
    fetcher = _fetcher("93.184.216.34")
    assert asyncio.run(fetcher.validate_url("https://example.com/a")) == "https://example.com/a"


def test_validate_url_dns_failure():
    async def failing(host):
        raise OSError("no such host")

    fetcher = SafeFetcher(resolver=failing)
    with pytest.raises(DNSResolutionError) as excinfo:
        asyncio.run(fetcher.validate_url("https://missing.example.com/"))
    assert classify_fetch_error(excinfo.value) == "dns"


def test_is_blocked_ip_allows_public_and_rejects_garbage():
    assert not is_blocked_ip("8.8.8.8")
    assert not is_blocked_ip("2606:4700:4700::1111")
    assert is_blocked_ip("not-an-ip")
    assert is_blocked_ip("224.0.0.1")


def test_redirect_chain_longer_than_limit_is_rejected(monkeypatch):
    calls = []

    async def fake_fetch_once(self, session, url):
        calls.append(url)
        return 302, {"Location": f"/hop{len(calls)}"}, b"", False

    monkeypatch.setattr(SafeFetcher, "_fetch_once", fake_fetch_once, raising=False)
    fetcher = _fetcher("93.184.216.34")
    with pytest.raises(RedirectLimitError):
        asyncio.run(fetcher.fetch("https://example.com/start"))
    # initial request plus five followed hops
    assert len(calls) == 6


def test_redirect_to_private_address_is_blocked(monkeypatch):
    async def fake_fetch_once(self, session, url):
        return 301, {"Location": "http://127.0.0.1/admin"}, b"", False

    monkeypatch.setattr(SafeFetcher, "_fetch_once", fake_fetch_once, raising=False)
    with pytest.raises(BlockedURLError):
        asyncio.run(_fetcher("93.184.216.34").fetch("https://example.com/"))


def test_redirects_are_followed_and_recorded(monkeypatch):
    async def fake_fetch_once(self, session, url):
        if url.endswith("/old"):
            return 301, {"Location": "https://example.com/new"}, b"", False
        return 200, {"Content-Type": "text/html; charset=utf-8"}, b"<html></html>", False

    monkeypatch.setattr(SafeFetcher, "_fetch_once", fake_fetch_once, raising=False)
    page = asyncio.run(_fetcher("93.184.216.34").fetch("https://example.com/old"))
    assert page.final_url == "https://example.com/new"
    assert page.redirects == 1
    assert page.ok and page.is_html


def test_retryable_status_is_retried(monkeypatch):
    statuses = [503, 200]
    seen = []

    async def fake_fetch_once(self, session, url):
        status = statuses.pop(0)
        seen.append(status)
        return status, {"Content-Type": "image/png"}, b"\x89PNG", False

    monkeypatch.setattr(SafeFetcher, "_fetch_once", fake_fetch_once, raising=False)
    page = asyncio.run(_fetcher("93.184.216.34").fetch("https://example.com/pic"))
    assert seen == [503, 200]
    assert page.status == 200
    assert page.is_image


def test_retries_stop_at_max_and_return_last_status(monkeypatch):
    async def fake_fetch_once(self, session, url):
        return 502, {}, b"", False

    monkeypatch.setattr(SafeFetcher, "_fetch_once", fake_fetch_once, raising=False)
    page = asyncio.run(_fetcher("93.184.216.34", max_retries=1).fetch("https://example.com/"))
    assert page.status == 502
    assert not page.ok


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://cdn.example.com/a/b/photo.JPG", True),
        ("https://cdn.example.com/a.webp?w=100", True),
        ("https://img.example.com/render?format=png", True),
        ("https://img.example.com/render?src=/x/cover.jpeg&w=2", True),
        ("https://example.com/article.html", False),
        ("https://example.com/photo.jpgx", False),
    ],
)
def test_looks_like_image_url(url, expected):
    assert looks_like_image_url(url) is expected


def test_imdb_requests_use_browser_headers():
    headers = request_headers("https://www.imdb.com/title/tt0111161/")
    assert "Mozilla" in headers["User-Agent"]
    assert headers["Accept-Language"].startswith("en-US")
    assert "Accept-Language" not in request_headers("https://example.com/")
