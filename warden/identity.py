"""Configuration collaborator: path lists and budget limits with a TTL cache.

Safe and never-modify path lists come from a YAML policy file at the project
root (``warden.yaml`` by default):

    safe_paths:
      - server/**
      - skills/generated/
    never_modify:
      - server/index.ts
      - package.json

Budget limits come from the ``budget`` tuneables section. Values are cached
for ``identity.cache_ttl_s`` seconds; ``invalidate()`` drops the cache.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from .config_authority import env_bool, env_float, env_str, resolve_section
from .paths import DATA_DIR_NAME, project_root

log = logging.getLogger("warden.identity")

# Always denied, whatever the policy file says.
BASELINE_NEVER_MODIFY = (".env", ".env.*", ".git/**", f"{DATA_DIR_NAME}/**")


@dataclass(frozen=True)
class BudgetLimits:
    max: float
    warning: float


def _string_list(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return []
    out: List[str] = []
    for item in raw:
        text = str(item or "").strip()
        if text:
            out.append(text)
    return out


def load_policy_file(path: Path) -> Dict[str, List[str]]:
    """Read safe/never-modify lists from YAML. Missing or bad files yield empty lists."""
    empty = {"safe_paths": [], "never_modify": []}
    if not path.exists():
        return empty
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        log.warning("policy file %s unreadable, treating all paths as protected: %s", path, e)
        return empty
    if not isinstance(data, dict):
        log.warning("policy file %s is not a mapping, ignoring", path)
        return empty
    return {
        "safe_paths": _string_list(data.get("safe_paths")),
        "never_modify": _string_list(data.get("never_modify")),
    }


class WardenConfig:
    """Process-scoped config state: init, TTL invalidation, explicit reset."""

    def __init__(
        self,
        root: Optional[Path] = None,
        *,
        policy_file: Optional[Path] = None,
        ttl_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.root = Path(root) if root else project_root()
        identity = resolve_section(
            "identity",
            env_overrides={
                "policy_file": env_str("WARDEN_POLICY_FILE"),
                "cache_ttl_s": env_float("WARDEN_CONFIG_TTL_S"),
            },
        ).data
        self.policy_file = Path(policy_file) if policy_file else self.root / identity["policy_file"]
        self.ttl_s = float(identity["cache_ttl_s"] if ttl_s is None else ttl_s)
        self._clock = clock
        self._cached: Optional[Dict[str, Any]] = None
        self._loaded_at = 0.0

    def _load(self) -> Dict[str, Any]:
        now = self._clock()
        if self._cached is not None and now - self._loaded_at < self.ttl_s:
            return self._cached

        policy = load_policy_file(self.policy_file)
        never_modify = list(policy["never_modify"])
        for entry in BASELINE_NEVER_MODIFY:
            if entry not in never_modify:
                never_modify.append(entry)

        budget = resolve_section(
            "budget",
            env_overrides={
                "enabled": env_bool("WARDEN_BUDGET_ENABLED"),
                "max_spend": env_float("WARDEN_MAX_SPEND"),
                "warning_threshold": env_float("WARDEN_BUDGET_WARNING"),
            },
        ).data
        limits = None
        if budget.get("enabled", True):
            limits = BudgetLimits(
                max=float(budget["max_spend"]),
                warning=float(budget["warning_threshold"]),
            )

        self._cached = {
            "safe_paths": policy["safe_paths"],
            "never_modify": never_modify,
            "budget": limits,
        }
        self._loaded_at = now
        return self._cached

    def get_safe_paths(self) -> List[str]:
        return list(self._load()["safe_paths"])

    def get_never_modify_paths(self) -> List[str]:
        return list(self._load()["never_modify"])

    def get_budget_limits(self) -> Optional[BudgetLimits]:
        return self._load()["budget"]

    def invalidate(self) -> None:
        self._cached = None
        self._loaded_at = 0.0


_DEFAULT: Optional[WardenConfig] = None


def get_config() -> WardenConfig:
    """Process default instance; components accept an explicit one instead."""
    global _DEFAULT
    if _DEFAULT is None:
        _DEFAULT = WardenConfig()
    return _DEFAULT


def reset_config() -> None:
    global _DEFAULT
    _DEFAULT = None
