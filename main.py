#!/usr/bin/env python3
"""roboticshub-feed – news feed ingestion and API.

Usage:
    python main.py                    # sweep all enabled sources once (default)
    python main.py --source-id 3      # ingest a single source
    python main.py --schedule         # sweep every INGEST_INTERVAL_MINUTES (default 30)
    python main.py --serve            # run the feed API with uvicorn
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv

# ── Ensure project root is on sys.path ───────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# ── Load .env file (if present) ──────────────────────────────────────
_env_path = PROJECT_ROOT / ".env"
load_dotenv(_env_path, override=True)  # override=True so .env always wins

from ingest.errors import IngestError
from ingest.pipeline import ingest_all, ingest_source
from storage.db import get_source, init_db, sync_sources

# ── Logging setup ────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def _setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


log = logging.getLogger("roboticshub_feed")


# ── Config loading ───────────────────────────────────────────────────
CONFIG_DIR = PROJECT_ROOT / "config"


def load_sources(path: Path | None = None) -> list[dict]:
    """Return the source entries from sources.yaml (SOURCES_PATH overrides)."""
    path = path or Path(os.getenv("SOURCES_PATH", CONFIG_DIR / "sources.yaml"))
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return data.get("sources", [])


def _prepare(sync: bool) -> None:
    init_db()
    if sync:
        entries = load_sources()
        sync_sources(entries)
        log.info("Config loaded: %d sources", len(entries))


# ── Ingestion ────────────────────────────────────────────────────────


def run_sweep() -> list[dict]:
    """Sweep every enabled source once and return the per-source outcomes."""
    log.info("=== ingestion sweep starting ===")
    results = [r.to_dict() for r in ingest_all()]
    log.info("=== ingestion sweep finished ===")
    return results


def run_single(source_id: int) -> dict | None:
    source = get_source(source_id)
    if source is None:
        log.error("Source %d not found", source_id)
        return None
    try:
        return ingest_source(source).to_dict()
    except IngestError as exc:
        log.error("Source %d failed: %s", source_id, exc)
        return {"sourceId": source_id, "items": 0, "error": str(exc)}


# ── Scheduler ────────────────────────────────────────────────────────


def run_scheduled() -> None:
    """Run the sweep on a fixed interval (INGEST_INTERVAL_MINUTES, default 30)."""
    from apscheduler.schedulers.blocking import BlockingScheduler
    from apscheduler.triggers.interval import IntervalTrigger

    minutes = int(os.getenv("INGEST_INTERVAL_MINUTES", "30"))
    scheduler = BlockingScheduler()
    scheduler.add_job(
        run_sweep,
        IntervalTrigger(minutes=minutes),
        id="news_ingest",
        name="News ingestion sweep",
        max_instances=1,
        coalesce=True,
    )
    log.info("Scheduler started – sweeping every %d minutes", minutes)
    run_sweep()
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        log.info("Scheduler stopped")


# ── CLI ──────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="RoboticsHub news feed ingestion")
    parser.add_argument("--source-id", type=int, help="Ingest only this source")
    parser.add_argument("--schedule", action="store_true", help="Sweep on a fixed interval")
    parser.add_argument("--serve", action="store_true", help="Serve the feed API")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    parser.add_argument(
        "--no-sync",
        action="store_true",
        help="Do not load config/sources.yaml into the source registry",
    )
    args = parser.parse_args(argv)

    _setup_logging()
    _prepare(sync=not args.no_sync)

    if args.serve:
        import uvicorn

        uvicorn.run("web.app:app", host="0.0.0.0", port=args.port)
        return 0

    if args.schedule:
        run_scheduled()
        return 0

    if args.source_id is not None:
        result = run_single(args.source_id)
        if result is None:
            return 1
        print(json.dumps({"ok": True, "result": result}, indent=2))
        return 0

    print(json.dumps({"ok": True, "results": run_sweep()}, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
