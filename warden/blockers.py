"""Blocker board: operator-facing alerts for specs the agent gave up on."""

from __future__ import annotations

import json
import logging
import os
import re
import threading
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

log = logging.getLogger("warden.blockers")

BLOCKERS_FILE_NAME = "blockers.json"
MAX_BLOCKERS = 50
BLOCKER_STATUSES = ("active", "resolved", "dismissed")

# (category, substrings of the lowercased reason)
_REASON_CATEGORIES = (
    ("permissions", ("permission", "blocked", "protected")),
    ("code-syntax", ("syntax", "parse", "import")),
    ("test-failure", ("test", "grep", "criteria")),
)


def classify_failure(spec: Dict[str, Any], reason: str) -> Dict[str, Any]:
    """Map a failure reason to a category plus instructions for the operator."""
    reason_lower = (reason or "").lower()
    target = spec.get("file_path") or spec.get("filePath") or "unknown"
    category = "unknown"
    for name, needles in _REASON_CATEGORIES:
        if any(n in reason_lower for n in needles):
            category = name
            break
    if category == "unknown" and "blocked_category" in json.dumps(spec).lower():
        category = "permissions"

    if category == "permissions":
        instructions = [
            "The change was stopped by the path policy or a category restriction",
            "Check warden.yaml: the target may be missing from safe_paths or listed in never_modify",
            f"Target file: {target}",
        ]
    elif category == "code-syntax":
        instructions = [
            "Generated changes kept introducing syntax or import errors",
            f"Target file: {target}",
            "Make this change by hand or narrow the step description",
        ]
    elif category == "test-failure":
        instructions = [
            "Changes were written but did not pass verification",
            f"Test command that keeps failing: {spec.get('test_command') or spec.get('testCommand') or 'unknown'}",
            f"Target file: {target}",
            "The spec may target the wrong file or use incorrect test criteria",
        ]
    else:
        instructions = [
            f"The agent got stuck trying to: {spec.get('description') or spec.get('constraint') or 'complete a task'}",
            f"Target file: {target}",
            f"Failure reason: {reason}",
            "Once fixed by hand, mark this blocker as resolved",
        ]
    return {"category": category, "user_instructions": instructions}


def blocker_key(target_file: str, description: str) -> str:
    slug = re.sub(r"\s+", "-", (description or "")[:60].lower())
    return f"file:{(target_file or 'unknown').lower()}:{slug}"


class BlockerBoard:
    """Persistent list of blockers, newest first, capped at MAX_BLOCKERS."""

    def __init__(self, data_dir: Path, clock: Callable[[], float] = time.time):
        self.path = Path(data_dir) / BLOCKERS_FILE_NAME
        self._clock = clock
        self._lock = threading.Lock()

    def _load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            log.warning("blockers file %s unreadable, starting empty: %s", self.path, e)
            return []
        rows = data.get("blockers") if isinstance(data, dict) else None
        return [b for b in rows if isinstance(b, dict)] if isinstance(rows, list) else []

    def _save(self, blockers: List[Dict[str, Any]]) -> None:
        payload = {
            "blockers": blockers,
            "last_updated": datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat(),
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(str(tmp), str(self.path))
        except OSError as e:
            log.warning("blockers save failed: %s", e)

    def on_spec_blocked(self, loop_result: Dict[str, Any], spec: Dict[str, Any]) -> Dict[str, Any]:
        reason = str(loop_result.get("reason") or "unknown")
        iterations = int(loop_result.get("iterations") or 0)
        spec_id = str(spec.get("id") or "")
        target = str(spec.get("file_path") or spec.get("filePath") or "unknown")
        description = str(spec.get("description") or spec.get("constraint") or "")

        with self._lock:
            blockers = self._load()
            active = [b for b in blockers if b.get("status") == "active"]

            existing = next((b for b in active if spec_id and b.get("spec_id") == spec_id), None)
            if existing is None:
                key = blocker_key(target, description)
                existing = next(
                    (b for b in active if blocker_key(b.get("target_file", ""), b.get("description", "")) == key),
                    None,
                )
            if existing is not None:
                existing["attempts"] = int(existing.get("attempts") or 0) + iterations
                if len(description) > len(existing.get("description") or ""):
                    existing["description"] = description
                self._save(blockers)
                return existing

            now = self._clock()
            analysis = classify_failure(spec, reason)
            blocker = {
                "id": f"blk-{int(now * 1000)}-{uuid.uuid4().hex[:4]}",
                "spec_id": spec_id or f"unknown-{int(now * 1000)}",
                "spec_file": str(loop_result.get("spec_path") or "unknown"),
                "target_file": target,
                "description": description or "Unknown spec objective",
                "reason": reason,
                "status_at_block": str(loop_result.get("status") or ""),
                "attempts": iterations,
                "category": analysis["category"],
                "user_instructions": analysis["user_instructions"],
                "created_at": datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
                "status": "active",
            }
            blockers.insert(0, blocker)
            del blockers[MAX_BLOCKERS:]
            self._save(blockers)

        log.warning("Spec %s blocked (%s) after %d attempts: %s",
                    blocker["spec_id"], blocker["category"], iterations, reason)
        return blocker

    def get_blockers(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            blockers = self._load()
        if status:
            return [b for b in blockers if b.get("status") == status]
        return blockers

    def update_blocker(self, blocker_id: str, status: str) -> Optional[Dict[str, Any]]:
        if status not in BLOCKER_STATUSES:
            raise ValueError(f"unknown blocker status: {status!r}")
        with self._lock:
            blockers = self._load()
            blocker = next((b for b in blockers if b.get("id") == blocker_id), None)
            if blocker is None:
                return None
            blocker["status"] = status
            self._save(blockers)
        return blocker

    def active_count(self) -> int:
        return len(self.get_blockers("active"))
