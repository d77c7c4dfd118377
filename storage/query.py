"""Feed query service – filtered, cursor-paginated reads of the item store.

Pages are ordered by ``published_at`` descending.  The cursor is the
``published_at`` of the last item of the previous page; the next page holds
every matching item strictly older than it.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from dateutil import parser as dateutil_parser
from sqlalchemy import select

from storage.db import get_session, row_to_item
from storage.models import (
    ITEM_TYPES,
    LEVELS,
    PROGRAMS,
    FeedItem,
    FeedItemRow,
    SourceRow,
    to_db_time,
)

log = logging.getLogger(__name__)

DEFAULT_LIMIT = 24
MAX_LIMIT = 100


@dataclass
class FeedQuery:
    level: Optional[str] = None
    program: Optional[str] = None  # legacy single-program filter
    programs: list[str] = field(default_factory=list)
    source_programs: list[str] = field(default_factory=list)
    type: Optional[str] = None
    cursor: Optional[str] = None
    limit: int = DEFAULT_LIMIT
    source_id: Optional[int] = None

    def validate(self) -> None:
        """Raise ValueError for values outside the known vocabularies."""
        if self.level is not None and self.level not in LEVELS:
            raise ValueError(f"unknown level {self.level!r}")
        if self.type is not None and self.type not in ITEM_TYPES:
            raise ValueError(f"unknown type {self.type!r}")
        for p in [self.program, *self.programs, *self.source_programs]:
            if p is not None and p not in PROGRAMS:
                raise ValueError(f"unknown program {p!r}")


@dataclass
class FeedPage:
    items: list[FeedItem]
    next_cursor: Optional[str] = None

    def to_dict(self) -> dict:
        out: dict = {"items": [i.to_dict() for i in self.items]}
        if self.next_cursor is not None:
            out["nextCursor"] = self.next_cursor
        return out


def parse_cursor(cursor: str) -> dt.datetime:
    """ISO-8601 cursor → naive UTC datetime for comparison in SQL."""
    try:
        value = dateutil_parser.isoparse(cursor)
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"invalid cursor {cursor!r}") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return to_db_time(value)


def _clamp_limit(limit: int | None) -> int:
    if not limit:
        return DEFAULT_LIMIT
    return max(1, min(MAX_LIMIT, int(limit)))


def get_feed(query: FeedQuery) -> FeedPage:
    """Return one page of items matching *query* plus the cursor for the next."""
    query.validate()

    stmt = (
        select(FeedItemRow, SourceRow.name)
        .join(SourceRow, SourceRow.id == FeedItemRow.source_id, isouter=True)
        .order_by(FeedItemRow.published_at.desc(), FeedItemRow.id.desc())
        .limit(_clamp_limit(query.limit))
    )

    if query.level:
        stmt = stmt.where(FeedItemRow.level == query.level)
    if query.programs:
        stmt = stmt.where(FeedItemRow.program.in_(query.programs))
    elif query.program:
        stmt = stmt.where(FeedItemRow.program == query.program)
    if query.type:
        stmt = stmt.where(FeedItemRow.type == query.type)
    if query.cursor:
        stmt = stmt.where(FeedItemRow.published_at < parse_cursor(query.cursor))
    if query.source_id is not None:
        stmt = stmt.where(FeedItemRow.source_id == query.source_id)
    if query.source_programs:
        stmt = stmt.where(SourceRow.program.in_(query.source_programs))

    with get_session() as session:
        items = [row_to_item(row, name) for row, name in session.execute(stmt)]

    next_cursor = items[-1].published_at.isoformat() if items else None
    log.debug("Feed page: %d items (cursor=%s → %s)", len(items), query.cursor, next_cursor)
    return FeedPage(items=items, next_cursor=next_cursor)


def get_item(item_id: str) -> FeedItem | None:
    stmt = (
        select(FeedItemRow, SourceRow.name)
        .join(SourceRow, SourceRow.id == FeedItemRow.source_id, isouter=True)
        .where(FeedItemRow.id == item_id)
    )
    with get_session() as session:
        result = session.execute(stmt).first()
        if result is None:
            return None
        row, name = result
        return row_to_item(row, name)


def get_items_by_ids(ids: Sequence[str]) -> list[FeedItem]:
    if not ids:
        return []
    stmt = (
        select(FeedItemRow, SourceRow.name)
        .join(SourceRow, SourceRow.id == FeedItemRow.source_id, isouter=True)
        .where(FeedItemRow.id.in_(list(ids)))
    )
    with get_session() as session:
        return [row_to_item(row, name) for row, name in session.execute(stmt)]


def items_since(since: dt.datetime, limit: int = 50) -> list[FeedItem]:
    """Items published at or after *since*, newest first (used by the digest)."""
    stmt = (
        select(FeedItemRow, SourceRow.name)
        .join(SourceRow, SourceRow.id == FeedItemRow.source_id, isouter=True)
        .where(FeedItemRow.published_at >= to_db_time(since))
        .order_by(FeedItemRow.published_at.desc(), FeedItemRow.id.desc())
        .limit(limit)
    )
    with get_session() as session:
        return [row_to_item(row, name) for row, name in session.execute(stmt)]
