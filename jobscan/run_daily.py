"""
Daily batch: scan every auto-scan user, refresh skill trends, archive stale matches.

Usage:
  - Cron (recommended):  0 6 * * * cd /path/to/project && .venv/bin/jobscan daily --once
  - Or keep it running:  jobscan daily   (sleeps until DAILY_RUN_HOUR in DAILY_RUN_TZ)
"""
from __future__ import annotations

import os
import time
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from jobscan.config import Settings, ensure_data_dir, load_settings
from jobscan.log import get_logger
from jobscan.notify import default_sink
from jobscan.pipeline import ScanError, ScanPipeline
from jobscan.store import Store

log = get_logger(__name__)

RUN_TZ = ZoneInfo(os.environ.get("DAILY_RUN_TZ", "UTC"))
TARGET_HOUR = int(os.environ.get("DAILY_RUN_HOUR", "6"))
TARGET_MINUTE = 0


def run_once(pipeline: ScanPipeline, settings: Settings) -> dict:
    store = pipeline.store
    summary: dict = {"users": 0, "added": 0, "failed": [], "trends": {}, "archived": 0}

    for user_id in store.list_users(auto_scan_only=True):
        summary["users"] += 1
        try:
            result = pipeline.run_scan(user_id)
        except ScanError as exc:
            log.error("Scan for %s failed after %d additions: %s", user_id, exc.added_count, exc)
            summary["added"] += exc.added_count
            summary["failed"].append(user_id)
            continue
        summary["added"] += result.added_count

    summary["trends"] = pipeline.update_trends()

    cutoff = datetime.now(timezone.utc) - timedelta(days=settings.archive_after_days)
    summary["archived"] = store.archive_older_than(cutoff)
    log.info("Daily run: %d users scanned, %d new matches, %d archived, %d failed",
             summary["users"], summary["added"], summary["archived"], len(summary["failed"]))
    return summary


def build_pipeline(settings: Settings | None = None) -> ScanPipeline:
    settings = settings or load_settings()
    ensure_data_dir(settings)
    store = Store.from_settings(settings)
    store.create_all()
    return ScanPipeline(store, settings, sink=default_sink(store, settings.notify_email))


def next_run(now: datetime | None = None) -> datetime:
    now = now or datetime.now(RUN_TZ)
    target = now.replace(hour=TARGET_HOUR, minute=TARGET_MINUTE, second=0, microsecond=0)
    if now >= target:
        target = target + timedelta(days=1)
    return target


def main(once: bool = False) -> None:
    settings = load_settings()
    pipeline = build_pipeline(settings)
    if once:
        run_once(pipeline, settings)
        return

    log.info("Scheduler: run daily at %d:%02d %s", TARGET_HOUR, TARGET_MINUTE, RUN_TZ.key)
    while True:
        target = next_run()
        wait_secs = max(0.0, (target - datetime.now(RUN_TZ)).total_seconds())
        log.info("Next run at %s (in %.1f hours)", target, wait_secs / 3600)
        time.sleep(wait_secs)
        run_once(pipeline, settings)


if __name__ == "__main__":
    import sys

    main(once="--once" in sys.argv)
