"""YouTube Data API v3 ingestion – recent uploads per channel."""

from __future__ import annotations

import html
import logging
import os
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as dateutil_parser

from ingest.errors import ConfigurationError, FetchError, ParseError
from ingest.http import fetch
from ingest.rss import EXCERPT_MAX
from storage.models import FeedItem, Source, utcnow

log = logging.getLogger(__name__)

_YT_SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
_YT_VIDEO_URL = "https://www.youtube.com/watch?v="
_THUMBNAIL_ORDER = ("maxres", "standard", "high", "medium", "default")
MAX_RESULTS = 10


def get_api_key() -> str | None:
    return os.getenv("YOUTUBE_API_KEY") or None


def resolve_channel_id(handle: str, api_key: str) -> str | None:
    """Look up a channel id from a handle via a channel-type search.

    Best effort: any failure returns None.
    """
    query = handle.strip().lstrip("@")
    if not query:
        return None
    params = {
        "key": api_key,
        "part": "snippet",
        "type": "channel",
        "q": query,
        "maxResults": 1,
    }
    try:
        data = fetch(_YT_SEARCH_URL, params=params).json()
    except (FetchError, ValueError) as exc:
        log.warning("Could not resolve YouTube handle %r: %s", handle, exc)
        return None
    items = data.get("items") or []
    if not items:
        return None
    channel_id = (items[0].get("id") or {}).get("channelId")
    if isinstance(channel_id, str) and channel_id:
        return channel_id
    return None


def fetch_uploads(channel_id: str, api_key: str, max_results: int = MAX_RESULTS) -> dict[str, Any]:
    """Return the raw search payload for a channel's most recent uploads."""
    params = {
        "key": api_key,
        "channelId": channel_id,
        "part": "snippet",
        "order": "date",
        "maxResults": max_results,
    }
    resp = fetch(_YT_SEARCH_URL, params=params)
    try:
        return resp.json()
    except ValueError as exc:
        raise FetchError(_YT_SEARCH_URL, reason=f"invalid JSON: {exc}") from exc


def _best_thumbnail(thumbnails: dict[str, Any]) -> str | None:
    for key in _THUMBNAIL_ORDER:
        url = (thumbnails.get(key) or {}).get("url")
        if url:
            return url
    return None


def _published(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        value = dateutil_parser.isoparse(raw)
    except (ValueError, OverflowError) as exc:
        raise ParseError(f"bad publishedAt {raw!r}") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _yt_item_to_feed_item(raw: dict[str, Any], source: Source, now: datetime) -> FeedItem:
    """Convert a YouTube search-result item to a FeedItem."""
    video_id = (raw.get("id") or {}).get("videoId")
    if not video_id:
        raise ParseError("search result without videoId")
    snippet = raw.get("snippet") or {}
    # The search API returns HTML-escaped snippet text.
    description = html.unescape((snippet.get("description") or "").strip())
    published = _published(snippet.get("publishedAt"))

    return FeedItem(
        source_id=source.id,
        external_id=f"yt:{video_id}",
        title=html.unescape((snippet.get("title") or "").strip()) or "(untitled)",
        url=f"{_YT_VIDEO_URL}{video_id}",
        published_at=published or now,
        dated=published is not None,
        author=snippet.get("channelTitle") or None,
        excerpt=description[:EXCERPT_MAX] or None,
        media_url=_best_thumbnail(snippet.get("thumbnails") or {}),
        program="general",
        type="highlight",
        level="general",
        source_name=source.name,
    )


def parse_search_results(
    payload: dict[str, Any], source: Source, now: datetime | None = None
) -> list[FeedItem]:
    """Normalise a search payload.  Bad entries are logged and dropped."""
    now = now or utcnow()
    items: list[FeedItem] = []
    for raw in payload.get("items") or []:
        try:
            items.append(_yt_item_to_feed_item(raw, source, now))
        except ParseError as exc:
            log.debug("Source %d: skipping YouTube entry – %s", source.id, exc)
        except (AttributeError, TypeError) as exc:
            log.warning("Source %d: skipping malformed YouTube entry – %s", source.id, exc)
    return items


def ingest_channel(source: Source, api_key: str | None, on_resolved=None) -> list[FeedItem]:
    """Fetch recent uploads for one YouTube source.

    Raises ConfigurationError when the API key or channel id is missing and
    FetchError on a non-2xx API response.  *on_resolved* is called with the
    channel id when it was resolved from the handle.
    """
    if not api_key:
        raise ConfigurationError("no_api_key")

    if not source.channel_id and source.channel_handle:
        resolved = resolve_channel_id(source.channel_handle, api_key)
        if resolved:
            source.channel_id = resolved
            if on_resolved is not None:
                try:
                    on_resolved(resolved)
                except Exception:
                    log.exception("Source %d: could not persist channel_id", source.id)

    if not source.channel_id:
        raise ConfigurationError("no_channel_id")

    payload = fetch_uploads(source.channel_id, api_key)
    items = parse_search_results(payload, source)
    log.info("YouTube source %d (%s) → %d items", source.id, source.channel_id, len(items))
    return items
