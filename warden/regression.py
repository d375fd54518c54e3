"""
Regression tracker: per-target failure history and escalation scoring.

Each observation is folded into `<data dir>/regression-history.json`:

    failure   checks+1, failures+1, streak+1, first_failed (once), last_failed
    success   checks+1, streak reset, last_passed (failure history is kept)
    neutral   checks+1

Every fold appends to a 50-row event log and recomputes the escalation score:

    min(streak * 2, 10) + round_half_up(failures / checks * 5) + age bonus

where the age bonus is 3/2/1 once the first failure is older than 24h/6h/1h.
The score is clamped to [0, 15].
"""

from __future__ import annotations

import json
import logging
import math
import os
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config_authority import resolve_section
from .diagnostics import log_debug

log = logging.getLogger("warden.regression")

HISTORY_FILE_NAME = "regression-history.json"
MAX_EVENT_LOG = 50
MAX_SCORE = 15

SUCCESS_STATUSES = frozenset({"passed", "healthy"})
FAILURE_STATUSES = frozenset({"failed", "unhealthy", "misconfigured", "error"})

# (hours since first failure, bonus), checked in order.
AGE_BONUS_STEPS = ((24.0, 3), (6.0, 2), (1.0, 1))

_PATH_LOCKS: Dict[str, threading.RLock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    key = str(path.resolve())
    with _PATH_LOCKS_GUARD:
        lock = _PATH_LOCKS.get(key)
        if lock is None:
            lock = threading.RLock()
            _PATH_LOCKS[key] = lock
        return lock


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _parse_ts(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def is_failure(status: str) -> bool:
    return status in FAILURE_STATUSES


def is_success(status: str) -> bool:
    return status in SUCCESS_STATUSES


@dataclass
class ObservationEvent:
    status: str
    target_id: str = "unknown"
    kind: str = "unknown"
    message: str = ""
    details: Optional[Dict[str, Any]] = None
    observed_at: Optional[float] = None

    @classmethod
    def from_result(cls, result: Dict[str, Any]) -> "ObservationEvent":
        """Build from a loose result dict (`id` or `integration`, `errors` list)."""
        message = result.get("message") or ""
        errors = result.get("errors")
        if not message and isinstance(errors, list) and errors:
            message = str(errors[0])
        return cls(
            status=str(result.get("status") or ""),
            target_id=str(result.get("id") or result.get("integration") or "unknown"),
            kind=str(result.get("type") or "unknown"),
            message=str(message),
            details=result.get("details"),
        )


@dataclass
class TargetHistory:
    id: str
    type: str
    first_seen: str
    last_checked: str
    last_status: str = ""
    total_checks: int = 0
    total_failures: int = 0
    consecutive_failures: int = 0
    first_failed: Optional[str] = None
    last_failed: Optional[str] = None
    last_passed: Optional[str] = None
    escalation_score: int = 0
    history: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TargetHistory":
        history = data.get("history")
        return cls(
            id=str(data.get("id") or "unknown"),
            type=str(data.get("type") or "unknown"),
            first_seen=str(data.get("first_seen") or ""),
            last_checked=str(data.get("last_checked") or ""),
            last_status=str(data.get("last_status") or ""),
            total_checks=int(data.get("total_checks") or 0),
            total_failures=int(data.get("total_failures") or 0),
            consecutive_failures=int(data.get("consecutive_failures") or 0),
            first_failed=data.get("first_failed"),
            last_failed=data.get("last_failed"),
            last_passed=data.get("last_passed"),
            escalation_score=int(data.get("escalation_score") or 0),
            history=[row for row in history if isinstance(row, dict)] if isinstance(history, list) else [],
        )

    @property
    def last_message(self) -> str:
        return str(self.history[-1].get("message") or "") if self.history else ""


def calculate_escalation(entry: TargetHistory, now: float) -> int:
    """Pure function of the post-fold record and the evaluation time."""
    score = min(entry.consecutive_failures * 2, 10)

    if entry.total_checks > 0:
        rate = entry.total_failures / entry.total_checks
        score += int(math.floor(rate * 5 + 0.5))

    first_failed = _parse_ts(entry.first_failed)
    if first_failed is not None:
        hours = (now - first_failed) / 3600.0
        for threshold, bonus in AGE_BONUS_STEPS:
            if hours > threshold:
                score += bonus
                break

    return max(0, min(score, MAX_SCORE))


def fold(entry: TargetHistory, event: ObservationEvent, now: float) -> TargetHistory:
    """Apply one observation to a target record in place."""
    stamp = _iso(event.observed_at if event.observed_at is not None else now)

    entry.history.append({"status": event.status, "message": event.message, "timestamp": stamp})
    if len(entry.history) > MAX_EVENT_LOG:
        entry.history = entry.history[-MAX_EVENT_LOG:]

    entry.last_status = event.status
    entry.last_checked = stamp
    entry.total_checks += 1
    if entry.type == "unknown" and event.kind != "unknown":
        entry.type = event.kind

    if is_failure(event.status):
        entry.total_failures += 1
        entry.consecutive_failures += 1
        if not entry.first_failed:
            entry.first_failed = stamp
        entry.last_failed = stamp
    elif is_success(event.status):
        entry.consecutive_failures = 0
        entry.last_passed = stamp
    else:
        entry.consecutive_failures = 0

    entry.escalation_score = calculate_escalation(entry, now)
    return entry


class RegressionTracker:
    """Load-modify-save fold over the regression history store."""

    def __init__(self, data_dir: Path, clock: Optional[Callable[[], float]] = None):
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / HISTORY_FILE_NAME
        self._clock = clock or time.time
        self._lock = _lock_for(self.path)

    # ------------------------------------------------------------- storage

    def _empty(self) -> Dict[str, Any]:
        return {"entries": [], "last_updated": None}

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return self._empty()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            log.warning("regression history %s unreadable, using empty store: %s", self.path, e)
            return self._empty()
        if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
            log.warning("regression history %s malformed, using empty store", self.path)
            return self._empty()
        return data

    def _entries(self, data: Dict[str, Any]) -> List[TargetHistory]:
        out: List[TargetHistory] = []
        for row in data.get("entries", []):
            if isinstance(row, dict):
                try:
                    out.append(TargetHistory.from_dict(row))
                except (TypeError, ValueError, OverflowError) as e:
                    log.warning("dropping malformed regression entry %r: %s", row.get("id"), e)
        return out

    def _save(self, entries: List[TargetHistory]) -> Optional[str]:
        last_updated = _iso(self._clock())
        payload = {"entries": [e.to_dict() for e in entries], "last_updated": last_updated}
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(str(tmp), str(self.path))
        except OSError as e:
            log.warning("regression history save failed: %s", e)
            log_debug("regression", "save failed", e)
            return None
        return last_updated

    # ---------------------------------------------------------------- fold

    def record_result(self, observation) -> TargetHistory:
        """Fold one observation (ObservationEvent or loose result dict)."""
        event = observation if isinstance(observation, ObservationEvent) else ObservationEvent.from_result(observation)
        now = self._clock()
        with self._lock:
            entries = self._entries(self._load())
            entry = next((e for e in entries if e.id == event.target_id), None)
            if entry is None:
                stamp = _iso(event.observed_at if event.observed_at is not None else now)
                entry = TargetHistory(id=event.target_id, type=event.kind, first_seen=stamp, last_checked=stamp)
                entries.append(entry)
            fold(entry, event, now)
            self._save(entries)
        if entry.escalation_score >= 10:
            log.info("Target %s escalated to %d (%d consecutive failures)",
                     entry.id, entry.escalation_score, entry.consecutive_failures)
        return entry

    # ------------------------------------------------------------- queries

    def get_target(self, target_id: str) -> Optional[TargetHistory]:
        with self._lock:
            entries = self._entries(self._load())
        return next((e for e in entries if e.id == target_id), None)

    def get_escalated_issues(self, min_score: Optional[int] = None) -> List[Dict[str, Any]]:
        if min_score is None:
            min_score = int(resolve_section("regression").data["escalation_min_score"])
        with self._lock:
            entries = self._entries(self._load())
        hits = [e for e in entries if e.escalation_score >= min_score and not is_success(e.last_status)]
        hits.sort(key=lambda e: e.escalation_score, reverse=True)
        return [
            {
                "id": e.id,
                "type": e.type,
                "escalation_score": e.escalation_score,
                "consecutive_failures": e.consecutive_failures,
                "total_failures": e.total_failures,
                "first_failed": e.first_failed,
                "last_failed": e.last_failed,
                "last_status": e.last_status,
                "message": e.last_message,
            }
            for e in hits
        ]

    def get_regression_summary(self) -> Dict[str, Any]:
        with self._lock:
            data = self._load()
        entries = self._entries(data)
        failing = [e for e in entries if is_failure(e.last_status)]

        unresolved = [e for e in failing if _parse_ts(e.first_failed) is not None]
        unresolved.sort(key=lambda e: _parse_ts(e.first_failed))
        recent = [e for e in entries if _parse_ts(e.last_failed) is not None]
        recent.sort(key=lambda e: _parse_ts(e.last_failed), reverse=True)

        return {
            "total_tracked": len(entries),
            "currently_failing": len(failing),
            "escalated": sum(1 for e in entries if e.escalation_score >= 3),
            "longest_regression": unresolved[0].to_dict() if unresolved else None,
            "recent_failures": [e.to_dict() for e in recent[:5]],
            "last_updated": data.get("last_updated"),
        }
