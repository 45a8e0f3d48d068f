"""linkmeta defaults (timeouts, headers, endpoints, host tables, quotas).

Centralizes static defaults so the fetch and resolver modules have no
embedded magic strings. These are baseline constants used to construct a
FetchConfig or ResolverPolicy; callers can inject their own to override them.
"""

from __future__ import annotations

# Primary fetch
FETCH_TIMEOUT_SECONDS = 5.0
MAX_BODY_BYTES = 2 << 20  # 2 MiB
MAX_REDIRECTS = 5
MAX_FETCH_RETRIES = 2
RETRY_BACKOFF_BASE = 0.075
RETRY_BACKOFF_MAX = 0.3
RETRY_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})

# Headers
HDR_ACCEPT = "Accept"
HDR_ACCEPT_LANGUAGE = "Accept-Language"
HDR_USER_AGENT = "User-Agent"
HDR_RETRY_AFTER = "Retry-After"
ACCEPT_HTML = "text/html,application/xhtml+xml"
ACCEPT_JSON = "application/json"
DEFAULT_USER_AGENT = "LinkmetaMetadataFetcher/1.0"
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)
BROWSER_ACCEPT_LANGUAGE = "en-US,en;q=0.9"

# SSRF blocklist
BLOCKED_HOSTNAMES = frozenset({"localhost", "metadata.google.internal"})
BLOCKED_HOST_SUFFIXES = (".localhost",)

# Image sniffing for non-HTML responses
IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "bmp", "svg", "avif", "tif", "tiff")
IMAGE_QUERY_KEYS = ("format", "fm", "ext", "type")

# Embeds
EMBED_ALLOWED_HOSTS = frozenset(
    {
        "www.youtube-nocookie.com",
        "open.spotify.com",
        "w.soundcloud.com",
        "bandcamp.com",
    }
)
YOUTUBE_EMBED_BASE = "https://www.youtube-nocookie.com/embed/"
SPOTIFY_EMBED_BASE = "https://open.spotify.com/embed"
SPOTIFY_OEMBED_ENDPOINT = "https://open.spotify.com/oembed"
SOUNDCLOUD_OEMBED_ENDPOINT = "https://soundcloud.com/oembed"
OEMBED_TIMEOUT_SECONDS = 5.0
OEMBED_USER_AGENT = "LinkmetaEmbed/1.0"
SPOTIFY_CONTENT_TYPES = frozenset({"track", "album", "playlist", "artist", "show", "episode"})
BANDCAMP_ALBUM_HEIGHT = 470
BANDCAMP_TRACK_HEIGHT = 120

# Provider APIs
API_TIMEOUT_SECONDS = 10.0
API_ERROR_BODY_MAX_BYTES = 4096

TMDB_API_KEY_ENV = "TMDB_API_KEY"
TMDB_BASE_URL = "https://api.themoviedb.org/3"
TMDB_USER_AGENT = "LinkmetaTMDBClient/1.0"
TMDB_RATE_LIMIT = 40
TMDB_RATE_WINDOW_SECONDS = 10.0
TMDB_IMAGE_BASE_URL = "https://image.tmdb.org/t/p"
TMDB_POSTER_SIZE = "w500"
TMDB_BACKDROP_SIZE = "w1280"

OMDB_API_KEY_ENV = "OMDB_API_KEY"
OMDB_BASE_URL = "https://www.omdbapi.com"
OMDB_USER_AGENT = "LinkmetaOMDBClient/1.0"
OMDB_DAILY_LIMIT = 1000
OMDB_DAILY_WINDOW_SECONDS = 24 * 60 * 60.0

OPENLIBRARY_BASE_URL = "https://openlibrary.org"
OPENLIBRARY_COVER_BASE_URL = "https://covers.openlibrary.org/b/id"
OPENLIBRARY_USER_AGENT = "LinkmetaOpenLibraryClient/1.0"

# Movie resolution
MOVIE_CAST_MAX = 5
MOVIE_MATCH_SCORE_FLOOR = 40
MOVIE_SECTION_TYPES = frozenset({"movie", "series"})
ROTTEN_TOMATOES_BASE_URL = "https://www.rottentomatoes.com"

# Book resolution
BOOK_TITLE_SUFFIXES = (
    "| Goodreads",
    "- Goodreads",
    "| Amazon",
    ": Amazon.com",
    ": Amazon.com: Books",
)
AMAZON_SEARCH_PREFIX = "id_amazon:"

# Recipe extraction
KNOWN_RECIPE_HOSTS = (
    "allrecipes.com",
    "epicurious.com",
    "foodnetwork.com",
    "bonappetit.com",
    "seriouseats.com",
    "simplyrecipes.com",
    "tasty.co",
)
RECIPE_INGREDIENT_NEEDLES = ("ingredient", "ingredients")
RECIPE_INSTRUCTION_NEEDLES = ("instruction", "instructions", "direction", "directions", "method", "steps")
SCHEMA_ORG_PREFIXES = ("http://schema.org/", "https://schema.org/", "https://schema.org", "schema:")

# Misc
INTERNAL_UPLOADS_PATH = "/api/v1/uploads"
