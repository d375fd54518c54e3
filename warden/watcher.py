"""
Ingestion watcher: picks up blocked/failed spec artifacts exactly once.

Producers drop JSON artifacts into `<data dir>/{blocked,failed,failed-queue}/`
and append run notes to `<data dir>/daily/YYYY-MM-DD.md`. Every tick the
watcher folds each new artifact into the regression tracker as a failure and
hands it to the blocked-spec notifier once.

Idempotence:
- the first start seeds the processed set from what is already on disk, so a
  fresh process never replays old artifacts
- an artifact whose mtime is older than the last completed tick is marked
  processed without being folded
- a restart after stop() keeps the processed set and does not re-seed
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Pattern, Sequence, Set, Tuple

from .diagnostics import log_debug, log_exception
from .paths import DROP_DIR_NAMES
from .regression import ObservationEvent, RegressionTracker

log = logging.getLogger("warden.watcher")

DEFAULT_ITERATIONS = 10

ArtifactKey = Tuple[str, str]

DEFAULT_BLOCK_PATTERNS = (
    r"Ralph Loop: BLOCKED",
    r"stopped after \d+ consecutive test failures",
)
DEFAULT_SPEC_PATTERN = r"Spec:\s*(\S+)"


class ProcessedArtifactSet:
    """Process-lifetime set of (source, name) keys already handled."""

    def __init__(self) -> None:
        self._keys: Set[ArtifactKey] = set()
        self.seeded = False

    def seed(self, keys: Iterable[ArtifactKey]) -> None:
        self._keys.update(keys)
        self.seeded = True

    def add(self, key: ArtifactKey) -> None:
        self._keys.add(key)

    def reset(self) -> None:
        self._keys.clear()
        self.seeded = False

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class LogLineMatcher:
    """Ordered block-line patterns plus the pattern that names the spec."""

    def __init__(
        self,
        block_patterns: Sequence[str] = DEFAULT_BLOCK_PATTERNS,
        spec_pattern: str = DEFAULT_SPEC_PATTERN,
    ):
        self.block_patterns: List[Pattern[str]] = [re.compile(p) for p in block_patterns]
        self.spec_pattern: Pattern[str] = re.compile(spec_pattern)

    def is_block_line(self, line: str) -> bool:
        return any(p.search(line) for p in self.block_patterns)

    def match(self, line: str) -> Optional[str]:
        """Spec name referenced by a block line, else None."""
        if not self.is_block_line(line):
            return None
        m = self.spec_pattern.search(line)
        return m.group(1) if m else None


def build_loop_result(source: str, artifact_path: Path, spec: Dict[str, Any]) -> Dict[str, Any]:
    target = spec.get("file_path") or spec.get("filePath") or "unknown"
    history = spec.get("_failure_history", spec.get("_failureHistory"))
    return {
        "status": "blocked" if source == "blocked" else "max-iterations",
        "reason": spec.get("_failure_reason")
        or spec.get("_failureReason")
        or f"Spec failed after multiple attempts targeting {target}",
        "iterations": int(spec.get("_iterations") or DEFAULT_ITERATIONS),
        "spec_path": str(artifact_path),
        "failure_history": history if isinstance(history, list) else [],
    }


class SpecWatcher:
    """Polling watcher with an explicit Stopped/Running lifecycle."""

    def __init__(
        self,
        data_dir: Path,
        tracker: RegressionTracker,
        notifier=None,
        interval_s: float = 10.0,
        clock: Optional[Callable[[], float]] = None,
        *,
        matcher: Optional[LogLineMatcher] = None,
        daily_tail_lines: int = 20,
        processed: Optional[ProcessedArtifactSet] = None,
    ):
        self.data_dir = Path(data_dir)
        self.tracker = tracker
        self.notifier = notifier
        self.interval_s = float(interval_s)
        self.matcher = matcher or LogLineMatcher()
        self.daily_tail_lines = int(daily_tail_lines)
        self.processed = processed or ProcessedArtifactSet()
        self._clock = clock or time.time
        self._cursor: Optional[float] = None
        self._state_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_tick_stats: Dict[str, int] = {}

    # ----------------------------------------------------------- lifecycle

    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self) -> bool:
        """Stopped -> Running. Returns False when already running."""
        with self._state_lock:
            if self._thread is not None:
                return False
            if not self.processed.seeded:
                self.seed()
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run, args=(self._stop_event,), name="warden-watcher", daemon=True
            )
            self._thread.start()
        log.info("Watcher started (interval %.1fs, %d known artifacts)", self.interval_s, len(self.processed))
        return True

    def stop(self, timeout: Optional[float] = 5.0) -> bool:
        """Running -> Stopped. Returns False when already stopped."""
        with self._state_lock:
            thread = self._thread
            if thread is None:
                return False
            self._stop_event.set()
            self._thread = None
        if thread is not threading.current_thread():
            thread.join(timeout)
        log.info("Watcher stopped")
        return True

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval_s):
            try:
                self.tick()
            except Exception as e:
                log_exception("watcher", "tick failed", e)

    # -------------------------------------------------------------- seeding

    def _drop_dirs(self) -> List[Tuple[str, Path]]:
        return [(name, self.data_dir / name) for name in DROP_DIR_NAMES]

    def _list_artifacts(self, directory: Path) -> List[Path]:
        if not directory.is_dir():
            return []
        try:
            return sorted(p for p in directory.glob("*.json") if p.is_file())
        except OSError as e:
            log_debug("watcher", f"cannot list {directory}", e)
            return []

    def _today(self) -> str:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).strftime("%Y-%m-%d")

    def seed(self) -> None:
        """Mark everything already on disk as known and start the cursor."""
        keys: List[ArtifactKey] = []
        for source, directory in self._drop_dirs():
            keys.extend((source, p.name) for p in self._list_artifacts(directory))
        today = self._today()
        for spec_name in self._daily_block_specs(today):
            keys.append((f"daily:{today}", spec_name))
        self.processed.seed(keys)
        if self._cursor is None:
            self._cursor = self._clock()

    # ----------------------------------------------------------------- tick

    def tick(self) -> Dict[str, int]:
        """One synchronous scan of drop directories and today's daily log.

        Serialized, so a thread left over from a timed-out stop() cannot fold
        alongside its replacement.
        """
        with self._tick_lock:
            return self._tick()

    def _tick(self) -> Dict[str, int]:
        stats = {"folded": 0, "stale": 0, "errors": 0, "daily_alerts": 0}
        if self._cursor is None:
            self._cursor = self._clock()
        cursor = self._cursor

        for source, directory in self._drop_dirs():
            for artifact in self._list_artifacts(directory):
                key = (source, artifact.name)
                if key in self.processed:
                    continue
                try:
                    self._ingest(source, artifact, key, cursor, stats)
                except Exception as e:
                    stats["errors"] += 1
                    log.warning("Skipping artifact %s/%s: %s", source, artifact.name, e)
                    log_debug("watcher", f"artifact {source}/{artifact.name} failed", e)

        try:
            stats["daily_alerts"] = self._scan_daily_log()
        except Exception as e:
            stats["errors"] += 1
            log_debug("watcher", "daily log scan failed", e)

        self._cursor = max(cursor, self._clock())
        self.last_tick_stats = stats
        if stats["folded"] or stats["errors"] or stats["daily_alerts"]:
            log.info("Watcher tick: %s", stats)
        return stats

    def _ingest(self, source: str, artifact: Path, key: ArtifactKey, cursor: float, stats: Dict[str, int]) -> None:
        if artifact.stat().st_mtime < cursor:
            self.processed.add(key)
            stats["stale"] += 1
            return

        spec = json.loads(artifact.read_text(encoding="utf-8"))
        if not isinstance(spec, dict):
            raise ValueError("artifact is not a JSON object")

        loop_result = build_loop_result(source, artifact, spec)
        self.tracker.record_result(ObservationEvent(
            status="failed",
            target_id=str(spec.get("id") or artifact.stem),
            kind="spec",
            message=loop_result["reason"],
            details={"source": source, "artifact": artifact.name, "iterations": loop_result["iterations"]},
        ))
        self.processed.add(key)
        stats["folded"] += 1

        if self.notifier is not None:
            try:
                self.notifier.on_spec_blocked(loop_result, spec)
            except Exception as e:
                log_exception("watcher", f"notifier failed for {source}/{artifact.name}", e)

    # ------------------------------------------------------------ daily log

    def _daily_block_specs(self, day: str) -> List[str]:
        path = self.data_dir / "daily" / f"{day}.md"
        if not path.exists():
            return []
        try:
            lines = path.read_text(encoding="utf-8", errors="replace").split("\n")
        except OSError as e:
            log_debug("watcher", f"cannot read {path}", e)
            return []
        found: List[str] = []
        for line in lines[-self.daily_tail_lines:]:
            spec_name = self.matcher.match(line)
            if spec_name and spec_name not in found:
                found.append(spec_name)
        return found

    def _scan_daily_log(self) -> int:
        today = self._today()
        alerts = 0
        for spec_name in self._daily_block_specs(today):
            key = (f"daily:{today}", spec_name)
            if key in self.processed:
                continue
            self.processed.add(key)
            self.tracker.record_result(ObservationEvent(
                status="failed",
                target_id=spec_name,
                kind="spec",
                message=f"blocked in daily log {today}",
                details={"source": "daily", "date": today},
            ))
            alerts += 1
        return alerts
