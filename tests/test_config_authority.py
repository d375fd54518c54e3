"""Tests for tuneable resolution: schema -> baseline -> runtime -> env."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from warden.config_authority import env_bool, env_float, resolve_section
from warden.tuneables_schema import SCHEMA, get_section_defaults, validate_section


def _write(path: Path, sections: Dict[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(sections), encoding="utf-8")
    return path


def test_schema_defaults_when_no_files(tmp_path):
    resolved = resolve_section(
        "watcher",
        baseline_path=tmp_path / "missing.json",
        runtime_path=tmp_path / "missing-too.json",
    )
    assert resolved.data == get_section_defaults("watcher")
    assert set(resolved.sources.values()) == {"schema"}


def test_precedence_and_source_attribution(tmp_path, monkeypatch):
    baseline = _write(tmp_path / "baseline.json", {"budget": {"max_spend": 2.0, "warning_threshold": 1.5}})
    runtime = _write(tmp_path / "runtime.json", {"budget": {"warning_threshold": 1.75}})
    monkeypatch.setenv("WARDEN_BUDGET_ENABLED", "off")

    resolved = resolve_section(
        "budget",
        baseline_path=baseline,
        runtime_path=runtime,
        env_overrides={"enabled": env_bool("WARDEN_BUDGET_ENABLED")},
    )

    assert resolved.data == {"enabled": False, "max_spend": 2.0, "warning_threshold": 1.75}
    assert resolved.sources == {
        "enabled": "env:WARDEN_BUDGET_ENABLED",
        "max_spend": "baseline",
        "warning_threshold": "runtime",
    }


def test_invalid_env_override_is_reported_and_ignored(tmp_path, monkeypatch):
    monkeypatch.setenv("WARDEN_MAX_SPEND", "lots")
    resolved = resolve_section(
        "budget",
        baseline_path=tmp_path / "none.json",
        runtime_path=tmp_path / "none.json",
        env_overrides={"max_spend": env_float("WARDEN_MAX_SPEND")},
    )
    assert resolved.data["max_spend"] == 1.50
    assert "invalid_env_override:WARDEN_MAX_SPEND" in resolved.warnings


def test_dotenv_file_is_fallback_for_process_env(tmp_path, monkeypatch):
    env_file = tmp_path / "custom.env"
    env_file.write_text("WARDEN_WATCHER_INTERVAL_S=42\n", encoding="utf-8")
    overrides = {"interval_s": env_float("WARDEN_WATCHER_INTERVAL_S")}

    resolved = resolve_section("watcher", env_overrides=overrides, env_file=env_file)
    assert resolved.data["interval_s"] == 42.0

    monkeypatch.setenv("WARDEN_WATCHER_INTERVAL_S", "7")
    resolved = resolve_section("watcher", env_overrides=overrides, env_file=env_file)
    assert resolved.data["interval_s"] == 7.0


def test_out_of_range_values_are_clamped(tmp_path):
    runtime = _write(tmp_path / "runtime.json", {"watcher": {"interval_s": 0.01, "daily_tail_lines": "9000"}})
    resolved = resolve_section("watcher", baseline_path=tmp_path / "none.json", runtime_path=runtime)
    assert resolved.data["interval_s"] == 0.5
    assert resolved.data["daily_tail_lines"] == 500
    assert len(resolved.warnings) == 2


def test_corrupt_runtime_file_is_ignored(tmp_path):
    runtime = tmp_path / "runtime.json"
    runtime.write_text("{broken", encoding="utf-8")
    resolved = resolve_section("regression", baseline_path=tmp_path / "none.json", runtime_path=runtime)
    assert resolved.data == {"escalation_min_score": 3}


def test_validate_section_flags_unknown_keys():
    cleaned, warnings = validate_section("budget", {"max_spnd": 3, "_comment": "x"})
    assert cleaned == {"max_spnd": 3, "_comment": "x"}
    assert warnings == ["budget.max_spnd: unknown key (possible typo?)"]


def test_bool_coercion():
    cleaned, warnings = validate_section("watcher", {"enabled": "no"})
    assert cleaned["enabled"] is False
    cleaned, warnings = validate_section("watcher", {"enabled": "maybe"})
    assert cleaned["enabled"] is True
    assert warnings


def test_repo_baseline_matches_schema_defaults():
    baseline = Path(__file__).resolve().parent.parent / "config" / "tuneables.json"
    data = json.loads(baseline.read_text(encoding="utf-8"))
    assert set(data) == set(SCHEMA)
    for section, values in data.items():
        assert values == get_section_defaults(section)
