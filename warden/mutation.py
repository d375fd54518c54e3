"""
Guarded mutation pipeline: policy-checked reads and writes of project files.

Reads never raise. Oversized files are cut at MAX_READ_CHARS and carry a
continuation marker telling the consumer which lines it did not see and must
preserve.

Writes are reported, not raised:
1. the path must classify as MUTABLE (deny wins, unknown is protected)
2. the destination directory is created if needed
3. an existing file is copied to the backup store first; if that copy fails
   the write is aborted and the target is left untouched
4. new content lands through a same-directory temp file and os.replace
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote, unquote

from .diagnostics import log_debug
from .path_policy import PathClassification, classify, resolve_relative
from .paths import data_dir

log = logging.getLogger("warden.mutation")

MAX_READ_CHARS = 15000

_BACKUP_NAME_RE = re.compile(r"^(?P<escaped>.+)\.(?P<ts>\d+)\.bak$")

# Keeps "<stem>.<ms>.bak" and "<stem>.path" under NAME_MAX.
MAX_BACKUP_STEM = 180
# quote(safe="") never emits "+", so it marks a hashed stem.
_HASHED_SEP = "+"


class ReadStatus(Enum):
    OK = "ok"
    TRUNCATED = "truncated"
    MISSING = "missing"
    UNREADABLE = "unreadable"
    OUTSIDE_ROOT = "outside_root"


class WriteError(Enum):
    POLICY_VIOLATION = "policy_violation"
    BACKUP_FAILED = "backup_failed"
    WRITE_FAILED = "write_failed"


@dataclass(frozen=True)
class Backup:
    """Immutable pre-overwrite snapshot."""

    original_path: str
    captured_at: float
    storage_path: Path


@dataclass
class FileRead:
    path: str
    status: ReadStatus
    text: str
    shown_lines: int = 0
    total_lines: int = 0

    @property
    def exists(self) -> bool:
        return self.status in (ReadStatus.OK, ReadStatus.TRUNCATED)

    @property
    def truncated(self) -> bool:
        return self.status is ReadStatus.TRUNCATED


@dataclass
class WriteResult:
    path: str
    ok: bool
    classification: PathClassification
    backup: Optional[Backup] = None
    error_kind: Optional[WriteError] = None
    error: str = ""


def escape_backup_name(relative_path: str) -> str:
    """Percent-encoded path, or a truncated prefix plus a digest when that is too long.

    Hashed stems are not reversible; the original path is kept beside the
    backups in `<stem>.path`.
    """
    escaped = quote(relative_path, safe="")
    if len(escaped) <= MAX_BACKUP_STEM:
        return escaped
    digest = hashlib.sha256(relative_path.encode("utf-8")).hexdigest()[:16]
    return f"{escaped[: MAX_BACKUP_STEM - len(digest) - 1]}{_HASHED_SEP}{digest}"


def _read_exact(path: Path) -> str:
    """Decode without newline translation so CRLF files round-trip."""
    with open(path, encoding="utf-8", newline="") as fh:
        return fh.read()


def continuation_marker(shown_lines: int, total_lines: int) -> str:
    return (
        f"\n\n[TRUNCATED: showing {shown_lines} of {total_lines} lines. "
        f"Lines {shown_lines + 1}-{total_lines} MUST be preserved exactly as they are. "
        f"Only modify the section shown above.]"
    )


class MutationPipeline:
    """Single-file read/write gateway for the build layer.

    `policy` is any object exposing get_safe_paths() and
    get_never_modify_paths() (see warden.identity.WardenConfig).
    Callers serialize writes per path; no path-level locking happens here.
    """

    def __init__(self, root: Path, policy, backup_dir: Optional[Path] = None):
        self.root = Path(root).resolve()
        self.policy = policy
        self.backup_dir = Path(backup_dir) if backup_dir else data_dir(self.root) / "backups"

    # ----------------------------------------------------------------- read

    def read_file(self, path: str) -> FileRead:
        relative = resolve_relative(path, self.root)
        if relative is None:
            return FileRead(path, ReadStatus.OUTSIDE_ROOT, f"[Path outside project root: {path}]")
        full = self.root / relative
        if not full.is_file():
            return FileRead(path, ReadStatus.MISSING, f"[File does not exist: {path}]")
        try:
            content = _read_exact(full)
        except (OSError, UnicodeDecodeError) as e:
            log_debug("mutation", f"read failed for {relative}", e)
            return FileRead(path, ReadStatus.UNREADABLE, f"[Cannot read: {path}]")

        total_lines = len(content.split("\n"))
        if len(content) <= MAX_READ_CHARS:
            return FileRead(path, ReadStatus.OK, content, total_lines, total_lines)

        shown = content[:MAX_READ_CHARS]
        shown_lines = len(shown.split("\n"))
        return FileRead(
            path,
            ReadStatus.TRUNCATED,
            shown + continuation_marker(shown_lines, total_lines),
            shown_lines,
            total_lines,
        )

    # ---------------------------------------------------------------- write

    def classify(self, path: str) -> PathClassification:
        return classify(
            path,
            self.policy.get_safe_paths(),
            self.policy.get_never_modify_paths(),
            root=self.root,
        )

    def write_file(self, path: str, content: str) -> WriteResult:
        classification = self.classify(path)
        if classification is not PathClassification.MUTABLE:
            log.info("Blocked write to %s path: %s", classification.value, path)
            return WriteResult(
                path,
                ok=False,
                classification=classification,
                error_kind=WriteError.POLICY_VIOLATION,
                error=f"path is {classification.value}: {path}",
            )

        relative = resolve_relative(path, self.root)
        full = self.root / relative
        backup: Optional[Backup] = None
        try:
            full.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log.warning("Cannot create directory for %s: %s", relative, e)
            return WriteResult(path, False, classification, error_kind=WriteError.WRITE_FAILED, error=str(e))

        if full.exists():
            try:
                backup = self._capture_backup(relative, full)
            except OSError as e:
                log.warning("Backup of %s failed, write aborted: %s", relative, e)
                return WriteResult(
                    path,
                    ok=False,
                    classification=classification,
                    error_kind=WriteError.BACKUP_FAILED,
                    error=str(e),
                )

        tmp = full.with_name(f".{full.name}.tmp.{os.getpid()}.{time.time_ns()}")
        try:
            with open(tmp, "w", encoding="utf-8", newline="") as fh:
                fh.write(content)
            os.replace(str(tmp), str(full))
        except OSError as e:
            log.warning("Write to %s failed: %s", relative, e)
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                pass
            return WriteResult(path, False, classification, backup=backup, error_kind=WriteError.WRITE_FAILED, error=str(e))

        return WriteResult(path, ok=True, classification=classification, backup=backup)

    def _capture_backup(self, relative: str, full: Path) -> Backup:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        escaped = escape_backup_name(relative)
        if _HASHED_SEP in escaped:
            sidecar = self.backup_dir / f"{escaped}.path"
            if not sidecar.exists():
                sidecar.write_text(relative, encoding="utf-8")
        stamp = time.time_ns() // 1_000_000
        target = self.backup_dir / f"{escaped}.{stamp}.bak"
        while target.exists():
            stamp += 1
            target = self.backup_dir / f"{escaped}.{stamp}.bak"
        shutil.copyfile(str(full), str(target))
        return Backup(original_path=relative, captured_at=stamp / 1000.0, storage_path=target)

    # -------------------------------------------------------------- backups

    def list_backups(self, path: Optional[str] = None) -> List[Backup]:
        """Backups newest first, optionally only those of one original path."""
        if not self.backup_dir.exists():
            return []
        wanted = None
        if path is not None:
            relative = resolve_relative(path, self.root)
            if relative is None:
                return []
            wanted = escape_backup_name(relative)
        out: List[Backup] = []
        for f in self.backup_dir.glob("*.bak"):
            m = _BACKUP_NAME_RE.match(f.name)
            if not m:
                continue
            if wanted is not None and m.group("escaped") != wanted:
                continue
            original = self._original_path(m.group("escaped"))
            if original is None:
                continue
            out.append(Backup(
                original_path=original,
                captured_at=int(m.group("ts")) / 1000.0,
                storage_path=f,
            ))
        out.sort(key=lambda b: b.captured_at, reverse=True)
        return out

    def _original_path(self, escaped: str) -> Optional[str]:
        if _HASHED_SEP not in escaped:
            return unquote(escaped)
        try:
            return (self.backup_dir / f"{escaped}.path").read_text(encoding="utf-8")
        except OSError as e:
            log_debug("mutation", f"no original path recorded for backup {escaped}", e)
            return None

    def restore_backup(self, backup: Backup) -> WriteResult:
        """Restore through the guarded write path (policy check plus a fresh backup)."""
        try:
            content = _read_exact(backup.storage_path)
        except (OSError, UnicodeDecodeError) as e:
            log.warning("Cannot read backup %s: %s", backup.storage_path, e)
            return WriteResult(
                backup.original_path,
                ok=False,
                classification=self.classify(backup.original_path),
                error_kind=WriteError.WRITE_FAILED,
                error=str(e),
            )
        result = self.write_file(backup.original_path, content)
        if result.ok:
            captured = datetime.fromtimestamp(backup.captured_at, tz=timezone.utc).isoformat()
            log.info("Restored %s from backup taken at %s", backup.original_path, captured)
        return result
