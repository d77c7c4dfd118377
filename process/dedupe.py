"""Deduplication – stable per-source item key and in-batch collapsing."""

from __future__ import annotations

import hashlib
import logging
from typing import Sequence

from storage.models import FeedItem

log = logging.getLogger(__name__)


def item_hash(source_id: int, external_id: str) -> str:
    """SHA-256 hex of ``"{source_id}:{external_id}"``."""
    blob = f"{source_id}:{external_id}".encode("utf-8")
    return hashlib.sha256(blob).hexdigest()


def dedupe_batch(items: Sequence[FeedItem]) -> list[FeedItem]:
    """Collapse items sharing (source_id, external_id).  Last occurrence wins.

    Order of first appearance is kept so the batch stays stable.
    """
    by_key: dict[tuple[int, str], FeedItem] = {}
    for item in items:
        key = (item.source_id, item.external_id)
        if key in by_key:
            log.debug("Dedup (external_id): %s", item.external_id)
        by_key[key] = item

    unique = list(by_key.values())
    dropped = len(items) - len(unique)
    if dropped:
        log.info("Deduplication removed %d items (%d → %d)", dropped, len(items), len(unique))
    return unique
