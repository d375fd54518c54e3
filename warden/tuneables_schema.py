"""
Central schema for Warden tuneables.

Single source of truth for every tuneable section, key, type, default and
min/max bounds. Consumed by config_authority when resolving a section.

Usage:
    from warden.tuneables_schema import validate_section
    clean, warnings = validate_section("budget", {"max_spend": "2.5"})
"""

from __future__ import annotations

from collections import namedtuple
from typing import Any, Dict, List, Optional, Tuple

# --------------- Schema Primitives ---------------

TuneableSpec = namedtuple("TuneableSpec", [
    "type",          # "int", "float", "bool", "str", "list"
    "default",       # Default value
    "min_val",       # Minimum (None if unbounded or non-numeric)
    "max_val",       # Maximum (None if unbounded or non-numeric)
    "description",   # Human-readable description
], defaults=[None, None, ""])


SCHEMA: Dict[str, Dict[str, TuneableSpec]] = {
    # ---- budget: spend ceiling enforced before paid model calls ----
    "budget": {
        "enabled": TuneableSpec("bool", True, None, None, "Enforce the spend ceiling"),
        "max_spend": TuneableSpec("float", 1.50, 0.0, 100000.0, "Hard ceiling on all-time spend (USD)"),
        "warning_threshold": TuneableSpec("float", 1.00, 0.0, 100000.0, "Spend at which warnings start (USD)"),
    },

    # ---- identity: policy file and config cache ----
    "identity": {
        "policy_file": TuneableSpec("str", "warden.yaml", None, None, "YAML file with safe/never-modify paths"),
        "cache_ttl_s": TuneableSpec("float", 60.0, 0.0, 3600.0, "Seconds config values stay cached"),
    },

    # ---- regression: escalation queries ----
    "regression": {
        "escalation_min_score": TuneableSpec("int", 3, 0, 15, "Default min score for escalated issues"),
    },

    # ---- watcher: blocked/failed artifact ingestion ----
    "watcher": {
        "enabled": TuneableSpec("bool", True, None, None, "Run the ingestion watcher"),
        "interval_s": TuneableSpec("float", 10.0, 0.5, 3600.0, "Seconds between watcher ticks"),
        "daily_tail_lines": TuneableSpec("int", 20, 1, 500, "Daily log lines inspected per tick"),
    },

    # ---- cost_ledger: ledger size caps ----
    "cost_ledger": {
        "max_entries": TuneableSpec("int", 2000, 100, 100000, "Entries kept before pruning"),
        "keep_entries": TuneableSpec("int", 1500, 50, 100000, "Entries kept after pruning"),
    },
}


def _validate_value(
    section: str, key: str, value: Any, spec: TuneableSpec,
) -> Tuple[Any, Optional[str]]:
    """Validate and coerce a single value. Returns (value, warning_or_None)."""
    if spec.type == "int":
        try:
            coerced = int(value)
        except (ValueError, TypeError):
            return spec.default, f"{section}.{key}: cannot convert {value!r} to int, using default {spec.default}"
        if spec.min_val is not None and coerced < spec.min_val:
            return spec.min_val, f"{section}.{key}: {coerced} below min {spec.min_val}, clamped"
        if spec.max_val is not None and coerced > spec.max_val:
            return spec.max_val, f"{section}.{key}: {coerced} above max {spec.max_val}, clamped"
        return coerced, None

    elif spec.type == "float":
        try:
            coerced = float(value)
        except (ValueError, TypeError):
            return spec.default, f"{section}.{key}: cannot convert {value!r} to float, using default {spec.default}"
        if spec.min_val is not None and coerced < spec.min_val:
            return float(spec.min_val), f"{section}.{key}: {coerced} below min {spec.min_val}, clamped"
        if spec.max_val is not None and coerced > spec.max_val:
            return float(spec.max_val), f"{section}.{key}: {coerced} above max {spec.max_val}, clamped"
        return coerced, None

    elif spec.type == "bool":
        if isinstance(value, bool):
            return value, None
        if isinstance(value, (int, float)):
            return bool(value), None
        text = str(value).strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True, None
        if text in ("0", "false", "no", "off"):
            return False, None
        return spec.default, f"{section}.{key}: cannot parse {value!r} as bool, using default {spec.default}"

    elif spec.type == "str":
        return str(value).strip(), None

    elif spec.type == "list":
        if isinstance(value, list):
            return value, None
        return spec.default, f"{section}.{key}: expected list, got {type(value).__name__}, using default"

    return value, None


def validate_section(section_name: str, data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """Coerce and clamp known keys of one section; unknown keys pass through."""
    spec_map = SCHEMA.get(section_name, {})
    cleaned: Dict[str, Any] = {}
    warnings: List[str] = []
    for key, value in data.items():
        spec = spec_map.get(key)
        if spec is None:
            cleaned[key] = value
            if not key.startswith("_"):
                warnings.append(f"{section_name}.{key}: unknown key (possible typo?)")
            continue
        validated, warning = _validate_value(section_name, key, value, spec)
        cleaned[key] = validated
        if warning:
            warnings.append(warning)
    return cleaned, warnings


def get_section_defaults(section_name: str) -> Dict[str, Any]:
    """Return default values for a section."""
    spec = SCHEMA.get(section_name, {})
    return {k: s.default for k, s in spec.items()}
