"""Ingestion sweep – normalise each enabled source and upsert its items.

Sources run one after another.  A failure on one source is recorded in its
result entry and never aborts the sweep; the sweep itself is re-run on an
external schedule, and upsert idempotence stands in for retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ingest import rss, youtube
from ingest.errors import ConfigurationError
from storage import db
from storage.models import Source

log = logging.getLogger(__name__)


@dataclass
class IngestResult:
    source_id: int
    items: int = 0
    skipped: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        out: dict = {"sourceId": self.source_id, "items": self.items}
        if self.skipped is not None:
            out["skipped"] = self.skipped
        if self.error is not None:
            out["error"] = self.error
        return out


def ingest_source(source: Source, api_key: str | None = None) -> IngestResult:
    """Ingest one source.

    Missing configuration is reported as ``skipped``.  FetchError and
    UpsertError propagate so the caller decides how to record them.
    """
    try:
        if source.type == "rss":
            items = rss.fetch_feed(source)
        elif source.type == "youtube":
            key = api_key if api_key is not None else youtube.get_api_key()
            items = youtube.ingest_channel(
                source,
                key,
                on_resolved=lambda cid: db.set_channel_id(source.id, cid),
            )
        else:
            raise ConfigurationError("unsupported_type")
    except ConfigurationError as exc:
        log.warning("Source %d skipped: %s", source.id, exc.reason)
        return IngestResult(source_id=source.id, skipped=exc.reason)

    if not items:
        return IngestResult(source_id=source.id, items=0)

    written = db.upsert_items(source.id, items)
    return IngestResult(source_id=source.id, items=written)


def ingest_all(api_key: str | None = None) -> list[IngestResult]:
    """Sweep all enabled sources sequentially."""
    sources = db.list_sources(enabled_only=True)
    log.info("Ingestion sweep starting over %d sources", len(sources))

    results: list[IngestResult] = []
    for source in sources:
        try:
            result = ingest_source(source, api_key=api_key)
        except Exception as exc:
            log.exception("Source %d failed – continuing sweep", source.id)
            result = IngestResult(source_id=source.id, error=str(exc))
        results.append(result)

    total = sum(r.items for r in results)
    failed = sum(1 for r in results if r.error)
    log.info("Ingestion sweep finished: %d items, %d failed sources", total, failed)
    return results
