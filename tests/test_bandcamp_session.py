import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from linkmeta.workflows import bandcamp_utils
from linkmeta.workflows.bandcamp_utils import BandcampSession
from linkmeta.workflows.errors import BlockedURLError, FetchError


class FakeResponse:
    def __init__(self, status_code, body=b"", location=""):
        self.status_code = status_code
        self.headers = {"Location": location} if location else {}
        self._body = body

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start:start + chunk_size]


class FakeRequestsSession:
    created = []

    def __init__(self):
        # widen the window for concurrent first use
        time.sleep(0.02)
        self.headers = {}
        self.closed = False
        self.responses = []
        self.requested = []
        FakeRequestsSession.created.append(self)

    def get(self, url, **kwargs):
        self.requested.append(url)
        return self.responses.pop(0)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_requests(monkeypatch):
    FakeRequestsSession.created = []
    monkeypatch.setattr(bandcamp_utils.requests, "Session", FakeRequestsSession)
    return FakeRequestsSession


def test_concurrent_first_use_builds_one_session(fake_requests):
    owner = BandcampSession()
    with ThreadPoolExecutor(max_workers=8) as pool:
        sessions = list(pool.map(lambda _: owner._get_session(), range(16)))
    assert len(fake_requests.created) == 1
    assert all(session is sessions[0] for session in sessions)
    assert sessions[0].headers["User-Agent"] == "LinkmetaMetadataFetcher/1.0"


def test_close_then_reset(fake_requests):
    owner = BandcampSession()
    first = owner._get_session()
    owner.close()
    assert first.closed

    with pytest.raises(FetchError):
        asyncio.run(owner.fetch_html("https://artist.bandcamp.com/track/song"))
    assert len(fake_requests.created) == 1

    owner.reset()
    second = owner._get_session()
    assert second is not first
    assert len(fake_requests.created) == 2


def test_reset_replaces_live_session(fake_requests):
    owner = BandcampSession()
    first = owner._get_session()
    owner.reset()
    assert first.closed
    assert owner._get_session() is not first


def test_slow_fetch_times_out_without_waiting_for_thread():
    owner = BandcampSession(timeout=0.05)
    release = threading.Event()

    def slow_fetch(url):
        release.wait(2.0)
        return 200, b"<html></html>"

    owner._fetch_blocking = slow_fetch

    async def run():
        start = time.monotonic()
        try:
            with pytest.raises(asyncio.TimeoutError):
                await owner.fetch_html("https://artist.bandcamp.com/album/record")
            return time.monotonic() - start
        finally:
            release.set()

    assert asyncio.run(run()) < 1.0


def test_redirects_stay_on_bandcamp(fake_requests):
    owner = BandcampSession()
    session = owner._get_session()
    session.responses = [
        FakeResponse(301, location="/track/song-2"),
        FakeResponse(200, b"<html>ok</html>"),
    ]
    body = asyncio.run(owner.fetch_html("https://artist.bandcamp.com/track/song"))
    assert body == b"<html>ok</html>"
    assert session.requested == [
        "https://artist.bandcamp.com/track/song",
        "https://artist.bandcamp.com/track/song-2",
    ]

    session.responses = [FakeResponse(302, location="http://169.254.169.254/latest/meta-data")]
    with pytest.raises(BlockedURLError):
        asyncio.run(owner.fetch_html("https://artist.bandcamp.com/track/song"))


def test_body_is_truncated_to_cap(fake_requests):
    owner = BandcampSession(max_body_bytes=10)
    owner._get_session().responses = [FakeResponse(200, b"x" * 64)]
    assert asyncio.run(owner.fetch_html("https://bandcamp.com/")) == b"x" * 10
