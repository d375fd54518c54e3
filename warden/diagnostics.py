"""
Debug and failure reporting shared by the warden components.

`log_debug` writes to stderr only while WARDEN_DEBUG is truthy, so it is
usable before logging is configured. `log_exception` goes through the
component's logger with the traceback attached. Long-running daemons call
`attach_file_log` to mirror the whole `warden.*` logger tree into
`<data dir>/logs/<component>.log`.
"""

from __future__ import annotations

import logging
import os
import sys
import traceback
from pathlib import Path
from typing import Dict, Optional

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_TRUTHY = {"1", "true", "yes", "on"}
_file_handlers: Dict[str, logging.FileHandler] = {}


def _component_logger(component: str) -> logging.Logger:
    return logging.getLogger(f"warden.{component}")


def log_debug(component: str, message: str, exc: Optional[BaseException] = None) -> None:
    if os.environ.get("WARDEN_DEBUG", "").strip().lower() not in _TRUTHY:
        return
    parts = [f"[WARDEN][{component}] {message}" + (f": {exc}" if exc is not None else "")]
    if exc is not None:
        parts.append("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    try:
        sys.stderr.write("\n".join(parts) + "\n")
    except (OSError, ValueError):
        # stderr closed under a daemon supervisor
        pass


def log_exception(component: str, message: str, exc: BaseException) -> None:
    """Report a caught failure at ERROR with its traceback, whatever WARDEN_DEBUG says."""
    _component_logger(component).error(
        "%s: %s", message, exc, exc_info=(type(exc), exc, exc.__traceback__)
    )


def attach_file_log(component: str, log_dir: Optional[Path] = None) -> Optional[Path]:
    """Add a file handler for `component` to the `warden` logger.

    Returns the log file path, or None when the component is already attached
    or the directory cannot be created.
    """
    if component in _file_handlers:
        return None
    if log_dir is None:
        from .paths import data_dir

        log_dir = Path(os.environ.get("WARDEN_LOG_DIR") or (data_dir() / "logs"))
    log_file = Path(log_dir) / f"{component}.log"
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
    except OSError as e:
        log_debug("diagnostics", f"cannot open {log_file}", e)
        return None

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger("warden").addHandler(handler)
    _file_handlers[component] = handler
    return log_file


def detach_file_log(component: str) -> bool:
    handler = _file_handlers.pop(component, None)
    if handler is None:
        return False
    logging.getLogger("warden").removeHandler(handler)
    handler.close()
    return True
