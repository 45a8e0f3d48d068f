import asyncio
import json

import pytest

from linkmeta.workflows import LinkMetadata, LinkResolver, ResolverPolicy
from linkmeta.workflows.embed_extractors import EmbedChain, YouTubeExtractor
from linkmeta.workflows.errors import BlockedURLError, FetchError, FetchStatusError, NotFoundError
from linkmeta.workflows.openlibrary_client import Edition
from linkmeta.workflows.safe_fetch import FetchedPage, SafeFetcher
from linkmeta.workflows.tmdb_client import FindResult, SearchResult, TitleDetails


@pytest.fixture(autouse=True)
def _no_provider_keys(monkeypatch):
    monkeypatch.delenv("TMDB_API_KEY", raising=False)
    monkeypatch.delenv("OMDB_API_KEY", raising=False)


class FakeFetcher:
    def __init__(self, page=None, error=None, title=""):
        self.page = page
        self.error = error
        self.title = title
        self.fetched = []

    async def validate_url(self, url):
        return url

    async def fetch(self, url):
        self.fetched.append(url)
        if self.error is not None:
            raise self.error
        return self.page

    async def fetch_page_title(self, url):
        return self.title


class FakeOpenLibrary:
    def __init__(self, editions=None):
        self.editions = editions or {}

    async def get_by_isbn(self, isbn):
        if isbn not in self.editions:
            raise NotFoundError("openlibrary", 404, "not found")
        return self.editions[isbn]

    async def search_books(self, query):
        return []

    async def aclose(self):
        return None


class FakeTMDB:
    def __init__(self):
        self.matrix = TitleDetails(id=603, media_type="movie", title="The Matrix", imdb_id="tt0133093")

    async def search_movie(self, query):
        return [SearchResult(id=603, title="The Matrix", release_date="1999-03-30")]

    async def get_movie_details(self, tmdb_id):
        return self.matrix

    async def find_by_imdb_id(self, imdb_id):
        return FindResult(movie_results=[SearchResult(id=603, title="The Matrix")])


class FakeBandcampSession:
    def __init__(self, body):
        self.body = body

    async def fetch_html(self, url):
        return self.body


def _page(url, body=b"", content_type="text/html; charset=utf-8", status=200, final_url=None):
    return FetchedPage(
        url=url,
        final_url=final_url or url,
        status=status,
        content_type=content_type,
        body=body,
    )


def _resolver(fetcher, **kwargs):
    kwargs.setdefault("embed_chain", EmbedChain([]))
    kwargs.setdefault("openlibrary", FakeOpenLibrary())
    return LinkResolver(fetcher=fetcher, **kwargs)


ARTICLE_HTML = b"""<html><head>
<title>Fallback title</title>
<meta property="og:title" content="Big News">
<meta name="description" content="Something happened.">
<meta property="og:image" content="/img/lead.png">
<meta property="og:site_name" content="Example Daily">
<meta property="og:type" content="article">
<meta name="author" content="Jo Writer">
</head><body></body></html>"""


def test_html_page_yields_preview_fields():
    url = "https://example.com/a?id=1"
    page = _page(url, ARTICLE_HTML, final_url="https://example.com/articles/1")
    result = asyncio.run(_resolver(FakeFetcher(page)).resolve(url))
    assert result == {
        "title": "Big News",
        "description": "Something happened.",
        "image": "https://example.com/img/lead.png",
        "site_name": "Example Daily",
        "author": "Jo Writer",
        "type": "article",
        "provider": "Example Daily",
    }


def test_image_content_type():
    url = "https://cdn.example.com/render/42"
    result = asyncio.run(_resolver(FakeFetcher(_page(url, b"\x89PNG", "image/png"))).resolve(url))
    assert result == {"image": url, "type": "image", "provider": "cdn.example.com"}


def test_image_like_url_without_image_content_type():
    url = "https://cdn.example.com/photos/cat.jpg"
    result = asyncio.run(_resolver(FakeFetcher(_page(url, b"...", "application/octet-stream"))).resolve(url))
    assert result["image"] == url
    assert result["type"] == "image"


def test_known_provider_and_embed():
    url = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
    page = _page(url, b"<html><head><title>Video</title></head></html>")
    resolver = _resolver(FakeFetcher(page), embed_chain=EmbedChain([YouTubeExtractor()]))
    result = asyncio.run(resolver.resolve(url))
    assert result["provider"] == "youtube"
    assert result["embed_url"] == "https://www.youtube-nocookie.com/embed/dQw4w9WgXcQ"
    assert result["embed_provider"] == "youtube"
    assert result["embed"] == {
        "type": "iframe",
        "provider": "youtube",
        "embed_url": "https://www.youtube-nocookie.com/embed/dQw4w9WgXcQ",
    }


def test_embeds_can_be_disabled_by_policy():
    url = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
    page = _page(url, b"<html></html>")
    resolver = _resolver(
        FakeFetcher(page),
        embed_chain=EmbedChain([YouTubeExtractor()]),
        policy=ResolverPolicy(extract_embeds=False),
    )
    assert "embed_url" not in asyncio.run(resolver.resolve(url))


def test_recipe_page():
    recipe = {"@type": "Recipe", "name": "Toast", "recipeIngredient": ["bread"], "image": "/t.jpg"}
    body = f'<html><head><script type="application/ld+json">{json.dumps(recipe)}</script></head></html>'
    url = "https://food.example.com/toast"
    result = asyncio.run(_resolver(FakeFetcher(_page(url, body.encode()))).resolve(url))
    assert result["recipe"] == {"name": "Toast", "image": "https://food.example.com/t.jpg", "ingredients": ["bread"]}


def test_book_returned_when_primary_fetch_fails():
    edition = Edition(title="Dune", number_of_pages=412)
    resolver = _resolver(
        FakeFetcher(error=FetchError("fetch url: connection reset")),
        openlibrary=FakeOpenLibrary({"0441013597": edition}),
    )
    result = asyncio.run(resolver.resolve("https://www.amazon.com/Dune/dp/0441013597"))
    assert result == {
        "book_data": {"title": "Dune", "page_count": 412, "isbn": "0441013597"},
        "provider": "www.amazon.com",
    }


def test_book_added_to_successful_page():
    edition = Edition(title="Dune")
    url = "https://www.amazon.com/dp/0441013597"
    resolver = _resolver(
        FakeFetcher(_page(url, b"<html><head><title>Amazon page</title></head></html>")),
        openlibrary=FakeOpenLibrary({"0441013597": edition}),
    )
    result = asyncio.run(resolver.resolve(url))
    assert result["title"] == "Amazon page"
    assert result["book_data"]["title"] == "Dune"


def test_fetch_failure_without_fallback_is_raised():
    resolver = _resolver(FakeFetcher(error=FetchError("boom")))
    with pytest.raises(FetchError):
        asyncio.run(resolver.resolve("https://example.com/"))


def test_error_status_without_fallback_raises():
    url = "https://example.com/missing"
    resolver = _resolver(FakeFetcher(_page(url, b"not found", status=404)))
    with pytest.raises(FetchStatusError) as excinfo:
        asyncio.run(resolver.resolve(url))
    assert excinfo.value.status == 404


def test_movie_only_metadata_when_fetch_fails_in_movie_section():
    resolver = _resolver(FakeFetcher(error=FetchStatusError(403)), tmdb=FakeTMDB())
    url = "https://www.rottentomatoes.com/m/the_matrix"
    result = asyncio.run(resolver.resolve(url, section_type="movie"))
    assert set(result) == {"movie", "provider"}
    assert result["movie"]["tmdb_id"] == 603
    assert result["movie"]["imdb_id"] == "tt0133093"
    assert result["provider"] == "www.rottentomatoes.com"


def test_movie_metadata_only_in_movie_sections():
    url = "https://www.rottentomatoes.com/m/the_matrix"
    body = b'<html><head><title>The Matrix</title></head><body><score-board tomatometerscore="83"></score-board></body></html>'
    resolver = _resolver(FakeFetcher(_page(url, body)), tmdb=FakeTMDB())

    plain = asyncio.run(resolver.resolve(url))
    assert "movie" not in plain

    movie = asyncio.run(resolver.resolve(url, section_type="series"))["movie"]
    assert movie["rotten_tomatoes_score"] == 83
    assert movie["rotten_tomatoes_url"] == "https://www.rottentomatoes.com/m/the_matrix"


def test_bandcamp_urls_use_bandcamp_session():
    body = (
        b'<html><head><meta property="og:title" content="Song">'
        b'<meta name="bc-page-properties" content="{&quot;item_type&quot;:&quot;t&quot;,&quot;item_id&quot;:77}">'
        b"</head></html>"
    )
    fetcher = FakeFetcher(error=AssertionError("primary fetch must not run"))
    resolver = _resolver(fetcher, bandcamp_session=FakeBandcampSession(body))
    result = asyncio.run(resolver.resolve("https://artist.bandcamp.com/track/song"))
    assert fetcher.fetched == []
    assert result["title"] == "Song"
    assert result["provider"] == "bandcamp"
    assert result["embed_height"] == 120
    assert "track=77" in result["embed_url"]


def test_blocked_url_is_rejected_before_any_lookup():
    async def public(host):
        return ["93.184.216.34"]

    resolver = _resolver(SafeFetcher(resolver=public))
    with pytest.raises(BlockedURLError):
        asyncio.run(resolver.resolve("http://127.0.0.1/dp/0441013597"))


def test_link_metadata_to_dict_omits_empty_values():
    assert LinkMetadata(provider="example.com").to_dict() == {"provider": "example.com"}
    assert LinkMetadata(title="T", release_date="2024").to_dict() == {"title": "T", "release_date": "2024"}


def test_resolver_closes_owned_clients():
    async def run():
        async with LinkResolver(fetcher=FakeFetcher(), embed_chain=EmbedChain([])) as resolver:
            assert resolver._tmdb_client() is None
            assert resolver._omdb_client() is None
        return resolver

    resolver = asyncio.run(run())
    assert resolver.openlibrary._session is None


class BrokenTMDB(FakeTMDB):
    async def find_by_imdb_id(self, imdb_id):
        return FindResult(movie_results=[SearchResult(id=0, title="Ghost")])

    async def search_movie(self, query):
        return [SearchResult(id=603, title=query)]

    async def get_movie_details(self, tmdb_id):
        raise ValueError("tmdb movie id must be positive")


def test_malformed_tmdb_data_keeps_page_metadata():
    body = b"<html><head><title>Ghost (1990)</title></head></html>"
    imdb_url = "https://www.imdb.com/title/tt0099653/"
    resolver = _resolver(FakeFetcher(_page(imdb_url, body)), tmdb=BrokenTMDB())
    result = asyncio.run(resolver.resolve(imdb_url, section_type="movie"))
    assert result["title"] == "Ghost (1990)"
    assert "movie" not in result

    lb_url = "https://letterboxd.com/film/ghost/"
    resolver = _resolver(FakeFetcher(_page(lb_url, body)), tmdb=BrokenTMDB())
    result = asyncio.run(resolver.resolve(lb_url, section_type="movie"))
    assert result["title"] == "Ghost (1990)"
    assert "movie" not in result
