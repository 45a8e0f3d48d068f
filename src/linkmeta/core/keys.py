"""Shared metadata-map keys to avoid magic strings across linkmeta modules."""

from __future__ import annotations

# Generic preview keys
K_TITLE = "title"
K_DESCRIPTION = "description"
K_IMAGE = "image"
K_TYPE = "type"
K_PROVIDER = "provider"
K_SITE_NAME = "site_name"
K_AUTHOR = "author"
K_ARTIST = "artist"

# Embed keys
K_EMBED = "embed"
K_EMBED_URL = "embed_url"
K_EMBED_PROVIDER = "embed_provider"
K_EMBED_WIDTH = "embed_width"
K_EMBED_HEIGHT = "embed_height"

# Structured records
K_MOVIE = "movie"
K_BOOK_DATA = "book_data"
K_RECIPE = "recipe"
K_RELEASE_DATE = "release_date"
