"""
Central configuration resolver with deterministic precedence.

Precedence per key:
1) schema default
2) versioned baseline (config/tuneables.json)
3) runtime override (<data dir>/tuneables.json)
4) explicit env override mapping (opt-in per key; process env first,
   then the project's .env file)
"""

from __future__ import annotations

import json
import os
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from dotenv import dotenv_values

from .paths import data_dir, project_root

DEFAULT_BASELINE_PATH = Path(__file__).resolve().parent.parent / "config" / "tuneables.json"

ParserFn = Callable[[str], Any]


@dataclass(frozen=True)
class EnvOverride:
    env_name: str
    parser: ParserFn


@dataclass
class ResolvedSection:
    data: Dict[str, Any]
    sources: Dict[str, str]
    warnings: List[str] = field(default_factory=list)


def _read_json(path: Path) -> Dict[str, Any]:
    try:
        if path.exists():
            data = json.loads(path.read_text(encoding="utf-8-sig"))
            if isinstance(data, dict):
                return data
    except (json.JSONDecodeError, OSError):
        pass
    return {}


def _section(data: Dict[str, Any], section_name: str) -> Dict[str, Any]:
    row = data.get(section_name, {})
    return dict(row) if isinstance(row, dict) else {}


def _parse_bool(raw: str) -> bool:
    text = str(raw or "").strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"invalid bool: {raw!r}")


def env_bool(name: str) -> EnvOverride:
    return EnvOverride(name, _parse_bool)


def env_str(name: str) -> EnvOverride:
    return EnvOverride(name, lambda raw: str(raw or "").strip())


def env_float(name: str) -> EnvOverride:
    return EnvOverride(name, float)


def _dotenv_file_values(env_file: Optional[Path]) -> Dict[str, Optional[str]]:
    path = env_file or (project_root() / ".env")
    try:
        if path.exists():
            return dict(dotenv_values(path))
    except OSError:
        pass
    return {}


def resolve_section(
    section_name: str,
    *,
    baseline_path: Optional[Path] = None,
    runtime_path: Optional[Path] = None,
    env_overrides: Optional[Dict[str, EnvOverride]] = None,
    env_file: Optional[Path] = None,
    include_schema_defaults: bool = True,
) -> ResolvedSection:
    """Resolve a tuneables section with source attribution."""
    from .tuneables_schema import get_section_defaults, validate_section

    baseline = baseline_path or DEFAULT_BASELINE_PATH
    runtime = runtime_path or (data_dir() / "tuneables.json")

    merged: Dict[str, Any] = {}
    sources: Dict[str, str] = {}
    warnings: List[str] = []

    if include_schema_defaults:
        for key, value in get_section_defaults(section_name).items():
            merged[key] = deepcopy(value)
            sources[key] = "schema"

    baseline_section = _section(_read_json(baseline), section_name)
    for key, value in baseline_section.items():
        merged[key] = deepcopy(value)
        sources[key] = "baseline"

    runtime_section = _section(_read_json(runtime), section_name)
    for key, value in runtime_section.items():
        merged[key] = deepcopy(value)
        sources[key] = "runtime"

    file_env: Optional[Dict[str, Optional[str]]] = None
    for key, override in dict(env_overrides or {}).items():
        raw = os.getenv(override.env_name)
        if raw is None or str(raw).strip() == "":
            if file_env is None:
                file_env = _dotenv_file_values(env_file)
            raw = file_env.get(override.env_name)
        if raw is None or str(raw).strip() == "":
            continue
        try:
            merged[key] = deepcopy(override.parser(raw))
            sources[key] = f"env:{override.env_name}"
        except (TypeError, ValueError):
            warnings.append(f"invalid_env_override:{override.env_name}")

    cleaned, schema_warnings = validate_section(section_name, merged)
    warnings.extend(schema_warnings)
    return ResolvedSection(data=cleaned, sources=sources, warnings=warnings)
