"""SQLAlchemy models and shared data classes for the news feed."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase

PROGRAMS = ("fll", "ftc", "frc", "general")
LEVELS = ("middle", "high", "general")
ITEM_TYPES = ("news", "tutorial", "highlight", "event", "research")
SOURCE_TYPES = ("rss", "youtube")


# ── Time helpers ─────────────────────────────────────────────────────
def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def to_db_time(value: dt.datetime) -> dt.datetime:
    """Aware or naive datetime → naive UTC (the storage convention)."""
    if value.tzinfo is not None:
        value = value.astimezone(dt.timezone.utc).replace(tzinfo=None)
    return value


def from_db_time(value: dt.datetime) -> dt.datetime:
    """Naive UTC from the DB → aware UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


# ── ORM base ────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass


class SourceRow(Base):
    """Configured content provider (RSS/Atom feed or YouTube channel)."""

    __tablename__ = "sources"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(256), nullable=False, default="")
    type = Column(String(16), nullable=False)  # "rss" | "youtube"
    url = Column(String(2048), nullable=True)
    channel_handle = Column(String(256), nullable=True)
    channel_id = Column(String(64), nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)
    program = Column(String(16), nullable=False, default="general")

    def __repr__(self) -> str:
        return f"<SourceRow id={self.id} type={self.type} name={self.name!r}>"


class FeedItemRow(Base):
    """Persisted feed item (one row per source item)."""

    __tablename__ = "feed_items"

    id = Column(String(36), primary_key=True)
    source_id = Column(Integer, ForeignKey("sources.id"), nullable=False, index=True)
    external_id = Column(String(1024), nullable=False)
    hash = Column(String(64), nullable=False)
    title = Column(Text, nullable=False)
    url = Column(String(2048), nullable=False)
    published_at = Column(DateTime, nullable=False, index=True)
    # False when the source gave no usable date and published_at is the
    # first-ingest time.
    dated = Column(Boolean, nullable=False, default=True)
    author = Column(String(512), nullable=True)
    excerpt = Column(Text, nullable=True)
    content_html = Column(Text, nullable=True)
    media_url = Column(String(2048), nullable=True)
    program = Column(String(16), nullable=False, default="general")
    type = Column(String(16), nullable=False, default="news")
    level = Column(String(16), nullable=False, default="general")
    region = Column(String(128), nullable=True)
    score = Column(Float, nullable=False, default=0.0)
    tags = Column(Text, nullable=True)  # JSON-encoded list
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("source_id", "external_id", name="uq_feed_items_source_external"),
        UniqueConstraint("hash", name="uq_feed_items_hash"),
    )

    def __repr__(self) -> str:
        return f"<FeedItemRow id={self.id} title={self.title!r:.40}>"


# ── Plain data classes used throughout the pipeline ──────────────────
@dataclass
class Source:
    id: int
    type: str  # "rss" | "youtube"
    name: str = ""
    url: Optional[str] = None
    channel_handle: Optional[str] = None
    channel_id: Optional[str] = None
    enabled: bool = True
    program: str = "general"

    @classmethod
    def from_row(cls, row: SourceRow) -> "Source":
        return cls(
            id=row.id,
            type=row.type,
            name=row.name or "",
            url=row.url,
            channel_handle=row.channel_handle,
            channel_id=row.channel_id,
            enabled=bool(row.enabled),
            program=row.program or "general",
        )

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "type": self.type, "program": self.program}


@dataclass
class FeedItem:
    source_id: int
    external_id: str
    title: str
    url: str
    published_at: dt.datetime  # aware UTC
    dated: bool = True

    author: Optional[str] = None
    excerpt: Optional[str] = None
    content_html: Optional[str] = None
    media_url: Optional[str] = None

    program: str = "general"
    type: str = "news"
    level: str = "general"
    region: Optional[str] = None

    score: float = 0.0
    tags: list[str] = field(default_factory=list)

    # Populated by the store
    id: Optional[str] = None
    hash: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    source_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "external_id": self.external_id,
            "hash": self.hash,
            "title": self.title,
            "url": self.url,
            "published_at": self.published_at.isoformat(),
            "author": self.author,
            "excerpt": self.excerpt,
            "content_html": self.content_html,
            "media_url": self.media_url,
            "program": self.program,
            "type": self.type,
            "level": self.level,
            "region": self.region,
            "score": self.score,
            "tags": self.tags,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "source": {"id": self.source_id, "name": self.source_name}
            if self.source_name is not None
            else None,
        }
