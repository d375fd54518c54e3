"""
Cost ledger: append-only record of paid model calls.

The budget governor only reads `total_all_time()`; everything else here is
bookkeeping for operators. Old entries are pruned once the ledger grows past
`cost_ledger.max_entries`, and their spend is carried in `pruned_cost_total`
so the all-time figure never shrinks.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config_authority import resolve_section
from .diagnostics import log_debug

log = logging.getLogger("warden.cost_ledger")

LEDGER_FILE_NAME = "cost-ledger.json"

# USD per million tokens.
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "claude-sonnet-4-5": {"input": 3.0, "output": 15.0, "cache_read": 0.30, "cache_write": 3.75},
    "claude-sonnet-4-6": {"input": 3.0, "output": 15.0, "cache_read": 0.30, "cache_write": 3.75},
    "claude-haiku-4-5": {"input": 1.0, "output": 5.0, "cache_read": 0.10, "cache_write": 1.25},
    "claude-opus-4-5": {"input": 5.0, "output": 25.0, "cache_read": 0.50, "cache_write": 6.25},
    "claude-opus-4-6": {"input": 5.0, "output": 25.0, "cache_read": 0.50, "cache_write": 6.25},
    "sonnet": {"input": 3.0, "output": 15.0},
    "haiku": {"input": 1.0, "output": 5.0},
    "opus": {"input": 5.0, "output": 25.0},
}
DEFAULT_PRICING_MODEL = "sonnet"


def _pricing_for(model: str) -> Dict[str, float]:
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]
    # Dated snapshots (claude-haiku-4-5-20251001) price like their family.
    for name in sorted(MODEL_PRICING, key=len, reverse=True):
        if model.startswith(name + "-"):
            return MODEL_PRICING[name]
    return MODEL_PRICING[DEFAULT_PRICING_MODEL]


def calculate_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    cache_read_tokens: int = 0,
    cache_write_tokens: int = 0,
) -> float:
    pricing = _pricing_for(model)
    non_cached_input = max(0, int(input_tokens) - int(cache_read_tokens or 0))
    cost = non_cached_input / 1_000_000 * pricing["input"]
    cost += int(output_tokens) / 1_000_000 * pricing["output"]
    if cache_read_tokens and pricing.get("cache_read"):
        cost += cache_read_tokens / 1_000_000 * pricing["cache_read"]
    if cache_write_tokens and pricing.get("cache_write"):
        cost += cache_write_tokens / 1_000_000 * pricing["cache_write"]
    return cost


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _entry_ts(entry: Dict[str, Any]) -> float:
    try:
        return datetime.fromisoformat(str(entry.get("timestamp") or "")).timestamp()
    except ValueError:
        return 0.0


def _empty_ledger(now: float) -> Dict[str, Any]:
    return {
        "entries": [],
        "total_all_time": 0.0,
        "pruned_cost_total": 0.0,
        "last_updated": _iso(now),
    }


class CostLedger:
    """JSON-backed spend ledger under the data directory."""

    def __init__(
        self,
        data_dir: Path,
        *,
        max_entries: Optional[int] = None,
        keep_entries: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(data_dir) / LEDGER_FILE_NAME
        cfg = resolve_section("cost_ledger").data
        self.max_entries = int(max_entries if max_entries is not None else cfg["max_entries"])
        self.keep_entries = min(
            int(keep_entries if keep_entries is not None else cfg["keep_entries"]),
            self.max_entries,
        )
        self._clock = clock
        self._lock = threading.RLock()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return _empty_ledger(self._clock())
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            log.warning("cost ledger %s unreadable, starting empty: %s", self.path, e)
            return _empty_ledger(self._clock())
        if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
            log.warning("cost ledger %s malformed, starting empty", self.path)
            return _empty_ledger(self._clock())
        data.setdefault("total_all_time", 0.0)
        data.setdefault("pruned_cost_total", 0.0)
        return data

    def _save(self, ledger: Dict[str, Any]) -> None:
        ledger["last_updated"] = _iso(self._clock())
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(ledger, indent=2), encoding="utf-8")
        os.replace(str(tmp), str(self.path))

    def log_cost(
        self,
        *,
        agent: str,
        model: str,
        action: str,
        cost: float = 0.0,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cache_read_tokens: int = 0,
        cache_write_tokens: int = 0,
        task: Optional[str] = None,
        feature: Optional[str] = None,
        context: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Append one entry. Token counts, when given, override `cost`."""
        if any(n and n > 0 for n in (input_tokens, output_tokens, cache_read_tokens, cache_write_tokens)):
            cost = calculate_cost(model, input_tokens, output_tokens, cache_read_tokens, cache_write_tokens)

        now = self._clock()
        entry: Dict[str, Any] = {
            "id": f"cost-{int(now * 1000)}-{uuid.uuid4().hex[:6]}",
            "timestamp": _iso(now),
            "agent": agent,
            "model": model,
            "action": action,
            "cost": float(cost),
            "input_tokens": int(input_tokens or 0),
            "output_tokens": int(output_tokens or 0),
        }
        if cache_read_tokens:
            entry["cache_read_tokens"] = int(cache_read_tokens)
        if cache_write_tokens:
            entry["cache_write_tokens"] = int(cache_write_tokens)
        for key, value in (("task", task), ("feature", feature), ("context", context)):
            if value:
                entry[key] = value

        with self._lock:
            ledger = self._load()
            entries: List[Dict[str, Any]] = ledger["entries"]
            entries.append(entry)
            if len(entries) > self.max_entries:
                dropped = entries[: len(entries) - self.keep_entries]
                ledger["pruned_cost_total"] = float(ledger.get("pruned_cost_total") or 0.0) + sum(
                    float(e.get("cost") or 0.0) for e in dropped
                )
                ledger["entries"] = entries[-self.keep_entries:]
                log_debug("cost_ledger", f"pruned {len(dropped)} entries")
            ledger["total_all_time"] = float(ledger.get("total_all_time") or 0.0) + float(cost)
            try:
                self._save(ledger)
            except OSError as e:
                log.warning("cost ledger save failed: %s", e)
        return entry

    def total_all_time(self) -> float:
        """Read fresh from disk on every call; the governor must not see a cached figure."""
        with self._lock:
            return float(self._load().get("total_all_time") or 0.0)

    def get_cost_summary(self) -> Dict[str, Any]:
        with self._lock:
            ledger = self._load()
        now = self._clock()
        today = _iso(now)[:10]

        entries = ledger["entries"]
        by_model: Dict[str, Dict[str, Any]] = {}
        by_agent: Dict[str, Dict[str, Any]] = {}
        by_feature: Dict[str, Dict[str, Any]] = {}
        for e in entries:
            cost = float(e.get("cost") or 0.0)
            for bucket, key in (
                (by_model, e.get("model") or "unknown"),
                (by_agent, e.get("agent") or "unknown"),
                (by_feature, e.get("feature")),
            ):
                if not key:
                    continue
                row = bucket.setdefault(key, {"count": 0, "cost": 0.0})
                row["count"] += 1
                row["cost"] += cost

        return {
            "total_all_time": float(ledger.get("total_all_time") or 0.0),
            "pruned_cost_total": float(ledger.get("pruned_cost_total") or 0.0),
            "total_today": sum(float(e.get("cost") or 0.0) for e in entries if str(e.get("timestamp", "")).startswith(today)),
            "total_this_hour": sum(float(e.get("cost") or 0.0) for e in entries if _entry_ts(e) >= now - 3600),
            "last_24h": sum(float(e.get("cost") or 0.0) for e in entries if _entry_ts(e) >= now - 86400),
            "entries_count": len(entries),
            "recent_entries": entries[-20:][::-1],
            "by_model": by_model,
            "by_agent": by_agent,
            "by_feature": by_feature,
        }
