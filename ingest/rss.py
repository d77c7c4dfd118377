"""RSS 2.0 / Atom ingestion – fetch, detect family, parse, normalise."""

from __future__ import annotations

import calendar
import html
import logging
import re
from datetime import datetime, timezone
from typing import Any

import feedparser
from dateutil import parser as dateutil_parser

from ingest.errors import ConfigurationError, ParseError
from ingest.http import fetch
from storage.models import FeedItem, Source, utcnow

log = logging.getLogger(__name__)

EXCERPT_MAX = 400

_PROLOG_RE = re.compile(
    r"^(?:\s+|<\?.*?\?>|<!--.*?-->|<!DOCTYPE[^>]*>)*", re.DOTALL | re.IGNORECASE
)
_ROOT_RE = re.compile(r"<([A-Za-z_][\w.:-]*)")
_CHANNEL_RE = re.compile(r"<channel[\s>]", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


# ── Text helpers ─────────────────────────────────────────────────────


def strip_html(text: str | None) -> str:
    """Drop tags, unescape entities, collapse whitespace."""
    if not text:
        return ""
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    return _WS_RE.sub(" ", text).strip()


def make_excerpt(text: str | None, limit: int = EXCERPT_MAX) -> str | None:
    plain = strip_html(text)
    return plain[:limit] if plain else None


def detect_family(text: str) -> str | None:
    """Return ``"rss"``, ``"atom"`` or None from the document's root element."""
    rest = _PROLOG_RE.sub("", text.lstrip("\ufeff"), count=1)
    match = _ROOT_RE.match(rest)
    if match is None:
        return None
    root = match.group(1).rsplit(":", 1)[-1].lower()
    if root == "rss" and _CHANNEL_RE.search(rest):
        return "rss"
    if root == "feed":
        return "atom"
    return None


# ── Field extraction ─────────────────────────────────────────────────


def _first(*values: Any) -> str:
    for v in values:
        if isinstance(v, str) and v.strip():
            return v.strip()
    return ""


def _parse_date(entry: dict[str, Any], keys: tuple[str, ...]) -> datetime | None:
    """Best-effort parse of the first usable date field.

    feedparser's ``*_parsed`` struct is preferred: it is already UTC and
    understands RFC-822 zone names (EST, PDT, ...).  dateutil covers the
    strings feedparser could not parse.
    """
    for key in keys:
        parsed = entry.get(f"{key}_parsed")
        if parsed:
            return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
        raw = entry.get(key)
        if raw:
            try:
                value = dateutil_parser.parse(raw)
            except (ValueError, OverflowError):
                continue
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc)
    return None


def _content_value(entry: dict[str, Any]) -> str:
    content = entry.get("content") or []
    if content and isinstance(content, list):
        return _first(content[0].get("value"))
    return ""


def _rss_media_url(entry: dict[str, Any]) -> str:
    enclosures = entry.get("enclosures") or []
    media_content = entry.get("media_content") or []
    thumbs = entry.get("media_thumbnail") or []
    return _first(
        enclosures[0].get("href") if enclosures else None,
        media_content[0].get("url") if media_content else None,
        thumbs[0].get("url") if thumbs else None,
    )


def _atom_link(entry: dict[str, Any]) -> str:
    links = entry.get("links") or []
    for link in links:
        if link.get("rel") == "alternate" and link.get("href"):
            return link["href"]
    if links:
        return _first(links[0].get("href"))
    return _first(entry.get("link"))


def _atom_author(entry: dict[str, Any]) -> str:
    detail = entry.get("author_detail") or {}
    return _first(detail.get("name"), entry.get("author"))


# ── Entry → FeedItem ─────────────────────────────────────────────────


def _rss_entry_to_item(entry: dict[str, Any], source: Source, now: datetime) -> FeedItem:
    link = _first(entry.get("link"))
    external_id = _first(entry.get("id"), link)
    if not external_id:
        raise ParseError("RSS item has neither guid nor link")
    description = _first(entry.get("summary"), entry.get("description"))
    published = _parse_date(entry, ("published", "updated"))
    return FeedItem(
        source_id=source.id,
        external_id=external_id,
        title=strip_html(entry.get("title")) or "(untitled)",
        url=link or (source.url or ""),
        published_at=published or now,
        dated=published is not None,
        author=_first(entry.get("author")) or None,
        excerpt=make_excerpt(description),
        content_html=_content_value(entry) or None,
        media_url=_rss_media_url(entry) or None,
        source_name=source.name,
    )


def _atom_entry_to_item(entry: dict[str, Any], source: Source, now: datetime) -> FeedItem:
    link = _atom_link(entry)
    external_id = _first(entry.get("id"), link)
    if not external_id:
        raise ParseError("Atom entry has neither id nor link")
    content = _content_value(entry)
    published = _parse_date(entry, ("published", "updated"))
    return FeedItem(
        source_id=source.id,
        external_id=external_id,
        title=strip_html(entry.get("title")) or "(untitled)",
        url=link or (source.url or ""),
        published_at=published or now,
        dated=published is not None,
        author=_atom_author(entry) or None,
        excerpt=make_excerpt(_first(entry.get("summary"), content)),
        content_html=content or None,
        source_name=source.name,
    )


_MAPPERS = {"rss": _rss_entry_to_item, "atom": _atom_entry_to_item}


def parse_feed(text: str, source: Source, now: datetime | None = None) -> list[FeedItem]:
    """Parse an RSS/Atom payload into FeedItems.

    An unrecognised payload yields ``[]``.  A single malformed entry is
    logged and dropped without affecting the rest of the batch.
    """
    family = detect_family(text)
    if family is None:
        log.warning("Source %d: unrecognised feed format – 0 items", source.id)
        return []

    now = now or utcnow()
    parsed = feedparser.parse(text)
    if parsed.bozo:
        log.debug("Source %d: feed not well-formed (%s)", source.id, parsed.get("bozo_exception"))

    mapper = _MAPPERS[family]
    items: list[FeedItem] = []
    for entry in parsed.entries:
        try:
            items.append(mapper(entry, source, now))
        except ParseError as exc:
            log.warning("Source %d: skipping entry – %s", source.id, exc)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            log.warning("Source %d: skipping malformed entry – %s", source.id, exc)

    log.info("Source %d: parsed %d %s entries", source.id, len(items), family)
    return items


def fetch_feed(source: Source) -> list[FeedItem]:
    """Fetch and parse one RSS/Atom source.  Raises FetchError on HTTP failure."""
    if not source.url:
        raise ConfigurationError("no_url")
    resp = fetch(source.url)
    return parse_feed(resp.text, source)
