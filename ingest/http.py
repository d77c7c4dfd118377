"""Shared HTTP session with a per-request timeout and basic rate limiting.

No retries: a failed fetch fails the source for this run and the next
scheduled sweep picks it up again.
"""

from __future__ import annotations

import logging
import os
import time

import requests
from requests.adapters import HTTPAdapter

from ingest.errors import FetchError

log = logging.getLogger(__name__)

# ── Defaults ─────────────────────────────────────────────────────────
_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "20"))  # seconds
_MIN_REQUEST_INTERVAL = 0.25  # seconds between requests (basic rate limit)
_USER_AGENT = "RoboticsHubBot/1.0 (+https://roboticshub.example)"

# ── Module-level session (reusable across the sweep) ─────────────────
_session: requests.Session | None = None
_last_request_ts: float = 0.0


def get_session() -> requests.Session:
    """Return a pooled requests.Session without automatic retries."""
    global _session
    if _session is not None:
        return _session

    _session = requests.Session()
    adapter = HTTPAdapter(max_retries=0)
    _session.mount("https://", adapter)
    _session.mount("http://", adapter)
    _session.headers.update({"User-Agent": _USER_AGENT})
    return _session


def fetch(url: str, params: dict | None = None, timeout: float = _TIMEOUT) -> requests.Response:
    """GET with rate-limiting pause.  Raises FetchError on non-2xx or network failure."""
    global _last_request_ts

    elapsed = time.monotonic() - _last_request_ts
    if elapsed < _MIN_REQUEST_INTERVAL:
        time.sleep(_MIN_REQUEST_INTERVAL - elapsed)

    sess = get_session()
    log.debug("HTTP GET %s", url)
    try:
        resp = sess.get(url, params=params, timeout=timeout)
    except requests.RequestException as exc:
        raise FetchError(url, reason=str(exc)) from exc
    finally:
        _last_request_ts = time.monotonic()

    if not 200 <= resp.status_code < 300:
        log.warning("HTTP %d for %s", resp.status_code, url)
        raise FetchError(url, status_code=resp.status_code)

    return resp
