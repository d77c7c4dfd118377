"""Database helpers – SQLite by default, Postgres via DATABASE_URL."""

from __future__ import annotations

import json
import logging
import os
import uuid
from contextlib import contextmanager
from typing import Any, Generator, Iterable, Sequence

from sqlalchemy import case, create_engine, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ingest.errors import UpsertError
from process.dedupe import dedupe_batch, item_hash
from storage.models import (
    Base,
    FeedItem,
    FeedItemRow,
    Source,
    SourceRow,
    from_db_time,
    to_db_time,
    utcnow,
)

log = logging.getLogger(__name__)

# Fields rewritten when an already-ingested item is seen again.
_MUTABLE_FIELDS = (
    "title",
    "url",
    "published_at",
    "author",
    "excerpt",
    "content_html",
    "media_url",
)

# ── Engine / session factory ─────────────────────────────────────────

_engine = None
_SessionFactory: sessionmaker[Session] | None = None


def _get_database_url() -> str:
    """Return the DB URL.  Postgres swap: set DATABASE_URL env var."""
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    db_path = os.getenv("SQLITE_PATH", "roboticshub_feed.db")
    return f"sqlite:///{db_path}"


def init_db(url: str | None = None) -> None:
    """Create engine, session factory, and tables (idempotent)."""
    global _engine, _SessionFactory
    url = url or _get_database_url()
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    if _engine is not None:
        _engine.dispose()
    _engine = create_engine(url, echo=False, connect_args=connect_args)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)
    Base.metadata.create_all(_engine)
    log.info("Database initialised (%s)", url.split("///")[0] + "///…")


def is_initialised() -> bool:
    return _SessionFactory is not None


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Provide a transactional session scope."""
    if _SessionFactory is None:
        raise RuntimeError("Call init_db() first")
    session = _SessionFactory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ── Source registry ──────────────────────────────────────────────────


def sync_sources(entries: Iterable[dict[str, Any]]) -> int:
    """Insert or update Source rows from config entries.  Returns count touched.

    A channel_id already resolved by the pipeline is kept unless the entry
    sets one explicitly.
    """
    touched = 0
    with get_session() as session:
        for entry in entries:
            source_id = int(entry["id"])
            row = session.get(SourceRow, source_id)
            if row is None:
                row = SourceRow(id=source_id)
                session.add(row)
            row.name = entry.get("name", "")
            row.type = entry["type"]
            row.url = entry.get("url")
            row.channel_handle = entry.get("channel_handle")
            if entry.get("channel_id"):
                row.channel_id = entry["channel_id"]
            row.enabled = bool(entry.get("enabled", True))
            row.program = entry.get("program", "general")
            touched += 1
    log.info("Synced %d sources into the registry", touched)
    return touched


def list_sources(enabled_only: bool = True) -> list[Source]:
    stmt = select(SourceRow).order_by(SourceRow.id)
    if enabled_only:
        stmt = stmt.where(SourceRow.enabled.is_(True))
    with get_session() as session:
        return [Source.from_row(r) for r in session.scalars(stmt)]


def list_sources_by_name() -> list[Source]:
    """Enabled sources ordered by name (for feed filter pickers)."""
    stmt = select(SourceRow).where(SourceRow.enabled.is_(True)).order_by(SourceRow.name)
    with get_session() as session:
        return [Source.from_row(r) for r in session.scalars(stmt)]


def get_source(source_id: int) -> Source | None:
    with get_session() as session:
        row = session.get(SourceRow, source_id)
        return Source.from_row(row) if row else None


def set_channel_id(source_id: int, channel_id: str) -> bool:
    """Persist a resolved channel id.  Only writes when none is stored yet."""
    with get_session() as session:
        row = session.get(SourceRow, source_id)
        if row is None or row.channel_id:
            return False
        row.channel_id = channel_id
    log.info("Source %d: resolved channel_id=%s", source_id, channel_id)
    return True


# ── Item upsert ──────────────────────────────────────────────────────


def _item_to_values(item: FeedItem, now) -> dict[str, Any]:
    return {
        "id": uuid.uuid4().hex,
        "source_id": item.source_id,
        "external_id": item.external_id,
        "hash": item_hash(item.source_id, item.external_id),
        "title": item.title,
        "url": item.url,
        "published_at": to_db_time(item.published_at),
        "dated": item.dated,
        "author": item.author,
        "excerpt": item.excerpt,
        "content_html": item.content_html,
        "media_url": item.media_url,
        "program": item.program,
        "type": item.type,
        "level": item.level,
        "region": item.region,
        "score": 0.0,
        "tags": json.dumps(item.tags) if item.tags else None,
        "created_at": now,
    }


def _dialect_insert(session: Session):
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise UpsertError(f"Upsert not supported for dialect {name!r}")


def _conflict_updates(stmt) -> dict[str, Any]:
    """SET clause for a conflicting row.

    An undated incoming item keeps the stored published_at, so re-ingesting
    it with a later fallback time leaves the row untouched.
    """
    table = FeedItemRow.__table__
    incoming_dated = stmt.excluded.dated.is_(True)
    updates: dict[str, Any] = {name: stmt.excluded[name] for name in _MUTABLE_FIELDS}
    updates["published_at"] = case(
        (incoming_dated, stmt.excluded.published_at), else_=table.c.published_at
    )
    updates["dated"] = case((incoming_dated, stmt.excluded.dated), else_=table.c.dated)
    return updates


def upsert_items(source_id: int, items: Sequence[FeedItem]) -> int:
    """Upsert one source's items in a single statement.  Returns rows written.

    Conflict target is (source_id, external_id).  On conflict only the
    mutable content fields are overwritten; id, score, classification and
    created_at keep their first-ingest values.  Any failure rolls back the
    whole batch and raises UpsertError.
    """
    stray = [i.external_id for i in items if i.source_id != source_id]
    if stray:
        raise UpsertError(f"batch for source {source_id} contains foreign items: {stray[:3]}")
    batch = dedupe_batch(items)
    if not batch:
        return 0

    now = to_db_time(utcnow())
    rows = [_item_to_values(item, now) for item in batch]
    try:
        with get_session() as session:
            insert = _dialect_insert(session)
            stmt = insert(FeedItemRow).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=["source_id", "external_id"],
                set_=_conflict_updates(stmt),
            )
            session.execute(stmt)
    except SQLAlchemyError as exc:
        log.error("Upsert failed for source %d: %s", source_id, exc)
        raise UpsertError(f"upsert failed for source {source_id}: {exc}") from exc

    log.info("Upserted %d items for source %d", len(rows), source_id)
    return len(rows)


# ── Row → dataclass ──────────────────────────────────────────────────


def row_to_item(row: FeedItemRow, source_name: str | None = None) -> FeedItem:
    return FeedItem(
        id=row.id,
        source_id=row.source_id,
        external_id=row.external_id,
        hash=row.hash,
        title=row.title,
        url=row.url,
        published_at=from_db_time(row.published_at),
        dated=bool(row.dated),
        author=row.author,
        excerpt=row.excerpt,
        content_html=row.content_html,
        media_url=row.media_url,
        program=row.program,
        type=row.type,
        level=row.level,
        region=row.region,
        score=row.score or 0.0,
        tags=json.loads(row.tags) if row.tags else [],
        created_at=from_db_time(row.created_at) if row.created_at else None,
        source_name=source_name,
    )
