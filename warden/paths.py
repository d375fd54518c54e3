"""Project-root and data-directory resolution."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

DATA_DIR_NAME = ".warden"

DROP_DIR_NAMES = ("blocked", "failed", "failed-queue")


def project_root() -> Path:
    """Root that relative target paths resolve against (WARDEN_PROJECT_ROOT or cwd)."""
    explicit = os.environ.get("WARDEN_PROJECT_ROOT", "").strip()
    if explicit:
        return Path(explicit).expanduser().resolve()
    return Path.cwd().resolve()


def data_dir(root: Optional[Path] = None) -> Path:
    """WARDEN_DATA_DIR when set, else `.warden` under `root` (default: project root)."""
    explicit = os.environ.get("WARDEN_DATA_DIR", "").strip()
    if explicit:
        return Path(explicit).expanduser().resolve()
    return Path(root or project_root()) / DATA_DIR_NAME

