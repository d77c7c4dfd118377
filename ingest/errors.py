"""Ingestion error taxonomy.

FetchError and UpsertError fail one source's run and are recorded in its
result entry.  ParseError never leaves the normaliser: a bad entry is
logged and dropped.  ConfigurationError becomes a ``skipped`` reason.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for per-source ingestion failures."""


class FetchError(IngestError):
    """Upstream HTTP fetch returned non-2xx or failed at the network level."""

    def __init__(self, url: str, status_code: int | None = None, reason: str = "") -> None:
        self.url = url
        self.status_code = status_code
        self.reason = reason
        if status_code is not None:
            msg = f"fetch failed {status_code} for {url}"
        else:
            msg = f"fetch failed for {url}: {reason}"
        super().__init__(msg)


class ParseError(IngestError):
    """A single raw feed entry could not be normalised."""


class ConfigurationError(IngestError):
    """Missing credentials or per-source fields; the source is skipped."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class UpsertError(IngestError):
    """The batch write of a source's items was rejected by the store."""
