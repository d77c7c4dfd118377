"""Tests for the source registry and the idempotent item upsert."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import update

from ingest.errors import UpsertError
from ingest.rss import parse_feed
from storage import db
from storage.models import FeedItemRow
from storage.query import FeedQuery, get_feed


# ── Source registry ──────────────────────────────────────────────────


def test_sync_sources_and_listing(sources) -> None:
    enabled = db.list_sources()
    assert [s.id for s in enabled] == [1, 2, 3]
    assert [s.name for s in db.list_sources_by_name()] == [
        "Atom Robotics",
        "FRC Channel",
        "Robotics Blog",
    ]
    assert db.get_source(4).enabled is False
    assert db.get_source(99) is None
    assert sources[3].program == "frc"


def test_set_channel_id_only_once(sources) -> None:
    assert db.set_channel_id(3, "UCfirst") is True
    assert db.set_channel_id(3, "UCsecond") is False
    assert db.get_source(3).channel_id == "UCfirst"
    assert db.set_channel_id(99, "UCx") is False


def test_resync_keeps_resolved_channel_id(sources) -> None:
    db.set_channel_id(3, "UCresolved")

    db.sync_sources(
        [{"id": 3, "name": "FRC Channel", "type": "youtube", "channel_handle": "@FRCChannel"}]
    )

    assert db.get_source(3).channel_id == "UCresolved"


# ── Upsert ───────────────────────────────────────────────────────────


def test_upsert_is_idempotent(sources, make_item, snapshot) -> None:
    items = [make_item("a", hours_ago=1), make_item("b", hours_ago=2)]

    assert db.upsert_items(1, items) == 2
    first = snapshot()
    assert db.upsert_items(1, items) == 2
    second = snapshot()

    assert len(first) == 2
    assert first == second


def test_upsert_updates_in_place(sources, make_item, snapshot) -> None:
    db.upsert_items(1, [make_item("a", title="Old title")])
    (before,) = snapshot()
    with db.get_session() as session:
        session.execute(update(FeedItemRow).values(score=5.0, program="frc"))

    db.upsert_items(1, [make_item("a", title="New title", excerpt="fresh")])

    (after,) = snapshot()
    columns = [c.name for c in FeedItemRow.__table__.columns]
    row = dict(zip(columns, after))
    assert row["id"] == before[columns.index("id")]
    assert row["title"] == "New title"
    assert row["excerpt"] == "fresh"
    assert row["score"] == 5.0
    assert row["program"] == "frc"
    assert row["created_at"] == before[columns.index("created_at")]


UNDATED_RSS = """<rss version="2.0"><channel><title>Robotics Blog</title>
<item><title>No date</title><link>https://blog.example.com/undated</link></item>
</channel></rss>"""


def test_undated_item_keeps_first_ingest_time(sources, now, snapshot) -> None:
    """Re-ingesting an undated entry later must not move its published_at."""
    source = sources[1]

    db.upsert_items(1, parse_feed(UNDATED_RSS, source, now=now))
    first = snapshot()
    db.upsert_items(1, parse_feed(UNDATED_RSS, source, now=now + timedelta(hours=1)))
    second = snapshot()

    assert first == second
    (item,) = get_feed(FeedQuery(source_id=1)).items
    assert item.published_at == now
    assert item.dated is False


def test_undated_item_takes_date_once_published(sources, now, make_item) -> None:
    db.upsert_items(1, parse_feed(UNDATED_RSS, sources[1], now=now))

    dated = make_item("https://blog.example.com/undated", hours_ago=30)
    db.upsert_items(1, [dated])

    (item,) = get_feed(FeedQuery(source_id=1)).items
    assert item.published_at == now - timedelta(hours=30)
    assert item.dated is True


def test_undated_reingest_keeps_stored_date(sources, now, make_item) -> None:
    db.upsert_items(1, [make_item("https://blog.example.com/undated", hours_ago=30)])

    db.upsert_items(1, parse_feed(UNDATED_RSS, sources[1], now=now))

    (item,) = get_feed(FeedQuery(source_id=1)).items
    assert item.published_at == now - timedelta(hours=30)
    assert item.dated is True
    assert item.title == "No date"


def test_upsert_hash_and_compound_key(sources, make_item, snapshot) -> None:
    db.upsert_items(1, [make_item("shared", source_id=1)])
    db.upsert_items(2, [make_item("shared", source_id=2)])

    rows = snapshot()
    assert len(rows) == 2
    hash_index = [c.name for c in FeedItemRow.__table__.columns].index("hash")
    assert rows[0][hash_index] != rows[1][hash_index]


def test_duplicate_ids_in_one_batch_collapse(sources, make_item, snapshot) -> None:
    written = db.upsert_items(1, [make_item("a", title="one"), make_item("a", title="two")])

    assert written == 1
    (row,) = snapshot()
    assert "two" in row


def test_upsert_failure_commits_nothing(sources, make_item, snapshot) -> None:
    good = make_item("good")
    bad = make_item("bad")
    bad.title = None  # NOT NULL

    with pytest.raises(UpsertError):
        db.upsert_items(1, [good, bad])

    assert snapshot() == []


def test_upsert_rejects_foreign_items(sources, make_item) -> None:
    with pytest.raises(UpsertError):
        db.upsert_items(1, [make_item("x", source_id=2)])


def test_upsert_empty_batch(sources) -> None:
    assert db.upsert_items(1, []) == 0
