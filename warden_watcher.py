#!/usr/bin/env python3
"""warden_watcher -- ingest blocked/failed spec artifacts into regression history.

Runs the SpecWatcher against the project's data directory, forwards newly
blocked specs to the blocker board, and writes a heartbeat after every
interval so a supervisor can tell the daemon is alive.

Usage:
  python warden_watcher.py
  python warden_watcher.py --interval 5
  python warden_watcher.py --summary
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
import time
from pathlib import Path
from typing import Any, Dict

from warden.blockers import BlockerBoard
from warden.config_authority import env_bool, env_float, resolve_section
from warden.diagnostics import LOG_FORMAT, attach_file_log, detach_file_log, log_exception
from warden.paths import data_dir
from warden.regression import RegressionTracker
from warden.watcher import SpecWatcher

logger = logging.getLogger("warden.watcher_daemon")

HEARTBEAT_FILE_NAME = "watcher_heartbeat.json"


def load_watcher_config() -> Dict[str, Any]:
    return resolve_section(
        "watcher",
        env_overrides={
            "enabled": env_bool("WARDEN_WATCHER_ENABLED"),
            "interval_s": env_float("WARDEN_WATCHER_INTERVAL_S"),
        },
    ).data


def write_heartbeat(path: Path, stats: Dict[str, Any]) -> None:
    """Write heartbeat file for supervisor monitoring."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"ts": time.time(), "stats": stats}, indent=2), encoding="utf-8")
    except OSError as e:
        logger.debug("heartbeat write failed: %s", e)


def print_summary(tracker: RegressionTracker, board: BlockerBoard) -> None:
    summary = tracker.get_regression_summary()
    summary["escalated_issues"] = tracker.get_escalated_issues()
    summary["active_blockers"] = board.active_count()
    print(json.dumps(summary, indent=2, default=str))


def main():
    ap = argparse.ArgumentParser(description="Warden artifact watcher")
    ap.add_argument("--interval", type=float, default=None, help="Seconds between scans")
    ap.add_argument("--summary", action="store_true", help="Print regression summary then exit")
    args = ap.parse_args()

    root = data_dir()
    tracker = RegressionTracker(root)
    board = BlockerBoard(root)

    if args.summary:
        print_summary(tracker, board)
        return

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    logger.info("Warden watcher starting (data dir %s)", root)

    config = load_watcher_config()
    if not config.get("enabled", True):
        logger.info("Watcher disabled in tuneables.json")
        return

    log_file = attach_file_log("watcher")
    if log_file is not None:
        logger.info("Logging to %s", log_file)

    interval = float(args.interval if args.interval is not None else config["interval_s"])
    watcher = SpecWatcher(
        root,
        tracker,
        notifier=board,
        interval_s=interval,
        daily_tail_lines=int(config["daily_tail_lines"]),
    )
    stop_event = threading.Event()

    def _shutdown(signum=None, frame=None):
        logger.info("Watcher shutting down")
        stop_event.set()

    try:
        signal.signal(signal.SIGINT, _shutdown)
        signal.signal(signal.SIGTERM, _shutdown)
    except ValueError:
        pass

    heartbeat = root / HEARTBEAT_FILE_NAME
    watcher.start()
    try:
        while not stop_event.wait(interval):
            try:
                write_heartbeat(heartbeat, {
                    "last_tick": watcher.last_tick_stats,
                    "known_artifacts": len(watcher.processed),
                    "active_blockers": board.active_count(),
                })
            except Exception as e:
                log_exception("watcher", "heartbeat cycle failed", e)
    finally:
        watcher.stop()
        logger.info("Watcher stopped")
        detach_file_log("watcher")


if __name__ == "__main__":
    main()
