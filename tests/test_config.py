"""Tests for source registry config loading."""

from __future__ import annotations

import main
from storage import db
from storage.models import PROGRAMS, SOURCE_TYPES


def test_bundled_sources_are_valid() -> None:
    entries = main.load_sources()

    assert entries
    assert len({e["id"] for e in entries}) == len(entries)
    for entry in entries:
        assert entry["type"] in SOURCE_TYPES
        assert entry.get("program", "general") in PROGRAMS
        if entry["type"] == "rss":
            assert entry["url"]
        else:
            assert entry.get("channel_id") or entry.get("channel_handle")


def test_sources_path_override(tmp_path, monkeypatch, database) -> None:
    path = tmp_path / "sources.yaml"
    path.write_text(
        "sources:\n"
        "  - id: 7\n"
        "    name: Local\n"
        "    type: rss\n"
        "    url: https://local.example.com/rss\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("SOURCES_PATH", str(path))

    db.sync_sources(main.load_sources())

    assert [s.name for s in db.list_sources()] == ["Local"]
