"""Shared test fixtures for the news feed tests."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from storage import db
from storage.models import FeedItem, FeedItemRow

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:dc="http://purl.org/dc/elements/1.1/"
     xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:media="http://search.yahoo.com/mrss/">
  <channel>
    <title>Robotics Blog</title>
    <link>https://blog.example.com</link>
    <description>Team updates</description>
    <item>
      <title>Vision tracking with Python</title>
      <link>https://blog.example.com/vision</link>
      <guid isPermaLink="false">post-1</guid>
      <description>&lt;p&gt;Our &lt;b&gt;python&lt;/b&gt; tutorial&lt;/p&gt;</description>
      <content:encoded><![CDATA[<p>Full <em>body</em></p>]]></content:encoded>
      <dc:creator>Ada Lovelace</dc:creator>
      <pubDate>Sun, 01 Mar 2026 10:00:00 GMT</pubDate>
      <enclosure url="https://blog.example.com/vision.jpg" type="image/jpeg" length="0"/>
    </item>
    <item>
      <title>Drivetrain notes</title>
      <link>https://blog.example.com/drivetrain</link>
      <description>Swerve or tank?</description>
      <pubDate>Sat, 28 Feb 2026 09:00:00 GMT</pubDate>
      <media:thumbnail url="https://blog.example.com/drive-thumb.jpg"/>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Robotics</title>
  <link href="https://atom.example.com"/>
  <id>urn:feed:atom-robotics</id>
  <updated>2026-03-01T08:00:00Z</updated>
  <entry>
    <title>Atom Entry 1</title>
    <link rel="related" href="https://atom.example.com/related"/>
    <link rel="alternate" href="https://atom.example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <published>2026-03-01T08:00:00Z</published>
    <updated>2026-03-01T09:00:00Z</updated>
    <author><name>Grace Hopper</name></author>
    <summary>Summary of entry 1</summary>
  </entry>
  <entry>
    <title>Atom Entry 2</title>
    <link href="https://atom.example.com/entry-2"/>
    <id>urn:uuid:entry-2</id>
    <updated>2026-02-27T08:00:00Z</updated>
    <summary type="html">&lt;p&gt;Second &lt;i&gt;entry&lt;/i&gt;&lt;/p&gt;</summary>
  </entry>
</feed>"""

SAMPLE_YOUTUBE_SEARCH = {
    "items": [
        {
            "id": {"kind": "youtube#video", "videoId": "abc123"},
            "snippet": {
                "publishedAt": "2026-03-01T11:00:00Z",
                "title": "Match highlights",
                "description": "d" * 600,
                "channelTitle": "FIRST Robotics Competition",
                "thumbnails": {
                    "default": {"url": "https://i.ytimg.com/vi/abc123/default.jpg"},
                    "high": {"url": "https://i.ytimg.com/vi/abc123/hqdefault.jpg"},
                },
            },
        },
        {
            "id": {"kind": "youtube#playlist", "playlistId": "PL1"},
            "snippet": {"title": "A playlist"},
        },
        {
            "id": {"kind": "youtube#video", "videoId": "def456"},
            "snippet": {
                "publishedAt": "2026-02-28T11:00:00Z",
                "title": "Robot reveal",
                "description": "Reveal video",
                "channelTitle": "FIRST Robotics Competition",
                "thumbnails": {"default": {"url": "https://i.ytimg.com/vi/def456/default.jpg"}},
            },
        },
    ]
}

SOURCE_ENTRIES = [
    {"id": 1, "name": "Robotics Blog", "type": "rss", "url": "https://blog.example.com/rss"},
    {"id": 2, "name": "Atom Robotics", "type": "rss", "url": "https://atom.example.com/feed"},
    {
        "id": 3,
        "name": "FRC Channel",
        "type": "youtube",
        "channel_handle": "@FRCChannel",
        "program": "frc",
    },
    {"id": 4, "name": "Archived", "type": "rss", "url": "https://old.example.com", "enabled": False},
]


class FakeResponse:
    def __init__(self, text: str = "", status_code: int = 200, payload: dict | None = None):
        self.text = text if payload is None else json.dumps(payload)
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            return json.loads(self.text)
        return self._payload


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def database(tmp_path):
    """Fresh SQLite database per test."""
    db.init_db(f"sqlite:///{tmp_path / 'feed.db'}")
    yield


@pytest.fixture
def snapshot(database):
    """Return a callable giving every feed_items row as a full column tuple."""

    def _snapshot() -> list[tuple]:
        columns = [c.name for c in FeedItemRow.__table__.columns]
        with db.get_session() as session:
            rows = session.scalars(
                select(FeedItemRow).order_by(FeedItemRow.source_id, FeedItemRow.external_id)
            ).all()
            return [tuple(getattr(r, c) for c in columns) for r in rows]

    return _snapshot


@pytest.fixture
def sources(database):
    db.sync_sources(SOURCE_ENTRIES)
    return {s.id: s for s in db.list_sources(enabled_only=False)}


@pytest.fixture
def make_item():
    """Factory for FeedItems with sensible defaults."""

    def _make(
        external_id: str,
        source_id: int = 1,
        hours_ago: float = 0.0,
        **kwargs,
    ) -> FeedItem:
        kwargs.setdefault("title", f"Item {external_id}")
        kwargs.setdefault("url", f"https://example.com/{external_id}")
        return FeedItem(
            source_id=source_id,
            external_id=external_id,
            published_at=NOW - timedelta(hours=hours_ago),
            **kwargs,
        )

    return _make


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def rss_xml() -> str:
    return SAMPLE_RSS_XML


@pytest.fixture
def atom_xml() -> str:
    return SAMPLE_ATOM_XML


@pytest.fixture
def youtube_payload() -> dict:
    return json.loads(json.dumps(SAMPLE_YOUTUBE_SEARCH))
