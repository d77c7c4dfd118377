"""Per-viewer ranking of feed items.

score = base score + recency bonus + keyword bonus

* recency: linear falloff from 1.0 at age 0 to 0.0 at 72 hours
* keyword: +2 for each distinct interest word found (case-insensitively)
  in title, excerpt, author or source name

Ranking is pure: the same items, interests and ``now`` always give the same
order.  Ties keep input order.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Callable, Iterable, Sequence

from storage.models import FeedItem, utcnow

log = logging.getLogger(__name__)

RECENCY_WINDOW_HOURS = 72.0
KEYWORD_WEIGHT = 2.0

_PROGRAM_PATTERNS = {
    "ftc": re.compile(r"\bftc\b", re.IGNORECASE),
    "frc": re.compile(r"\bfrc\b", re.IGNORECASE),
    "fll": re.compile(r"\bfll\b", re.IGNORECASE),
}


# ── Interests / programs ─────────────────────────────────────────────


def normalize_interests(words: Iterable[str] | None) -> list[str]:
    """Lowercase, trim, drop empties and repeats (first occurrence kept)."""
    cleaned = (w.strip().lower() for w in (words or []) if isinstance(w, str))
    return list(dict.fromkeys(w for w in cleaned if w))


def infer_programs(words: Iterable[str]) -> list[str]:
    """Programs named as whole words in the interests, in ftc/frc/fll order."""
    picks: list[str] = []
    for program, pattern in _PROGRAM_PATTERNS.items():
        if any(pattern.search(w) for w in words):
            picks.append(program)
    return picks


def programs_for_query(selected: Sequence[str]) -> list[str]:
    """Selected programs plus ``general``; empty when nothing was selected."""
    if not selected:
        return []
    return [*selected, "general"]


def filter_by_programs(items: Sequence[FeedItem], selected: Sequence[str]) -> list[FeedItem]:
    """Keep general + selected-program items, or everything if that empties the list."""
    if not selected:
        return list(items)
    filtered = [i for i in items if (i.program or "general") == "general" or i.program in selected]
    if not filtered:
        log.debug("Program filter %s matched nothing – falling back to all items", selected)
        return list(items)
    return filtered


# ── Scoring ──────────────────────────────────────────────────────────


def recency_component(published_at: datetime, now: datetime) -> float:
    age_hours = max(0.0, (now - published_at).total_seconds() / 3600.0)
    return max(0.0, RECENCY_WINDOW_HOURS - age_hours) / RECENCY_WINDOW_HOURS


def keyword_hits(item: FeedItem, words: Sequence[str]) -> int:
    hay = f"{item.title} {item.excerpt or ''} {item.author or ''} {item.source_name or ''}".lower()
    return sum(1 for w in normalize_interests(words) if w in hay)


def score_item(item: FeedItem, now: datetime, words: Sequence[str]) -> float:
    """Composite score: base + recency + keyword boost."""
    score = float(item.score or 0.0)
    score += recency_component(item.published_at, now)
    if words:
        score += KEYWORD_WEIGHT * keyword_hits(item, words)
    return score


def rank_items(
    items: Iterable[FeedItem], words: Sequence[str], now: datetime | None = None
) -> list[FeedItem]:
    """Sort descending by score.  Stable for equal scores."""
    now = now or utcnow()
    words = normalize_interests(words)
    return sorted(items, key=lambda i: score_item(i, now, words), reverse=True)


def _merge_key(item: FeedItem):
    return item.id if item.id is not None else (item.source_id, item.external_id)


def merge_and_rank(
    previous: Iterable[FeedItem],
    page: Iterable[FeedItem],
    words: Sequence[str],
    now: datetime | None = None,
) -> list[FeedItem]:
    """Union of an already-ranked list and a new page, fully re-sorted.

    Items sharing an id are collapsed; the copy from *page* wins.
    """
    by_id: dict = {}
    for item in previous:
        by_id[_merge_key(item)] = item
    for item in page:
        by_id[_merge_key(item)] = item
    return rank_items(by_id.values(), words, now)


class Ranker:
    """Interests plus a clock, reused across page loads for one viewer."""

    def __init__(
        self,
        interests: Iterable[str] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.words = normalize_interests(interests)
        self.selected_programs = infer_programs(self.words)
        self.clock = clock

    @property
    def query_programs(self) -> list[str]:
        return programs_for_query(self.selected_programs)

    def rank(self, items: Iterable[FeedItem]) -> list[FeedItem]:
        return rank_items(items, self.words, self.clock())

    def present(
        self, page: Sequence[FeedItem], previous: Iterable[FeedItem] = ()
    ) -> list[FeedItem]:
        """Program-filter a freshly fetched page and merge it into *previous*."""
        visible = filter_by_programs(page, self.selected_programs)
        return merge_and_rank(previous, visible, self.words, self.clock())
