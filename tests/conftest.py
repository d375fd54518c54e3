from __future__ import annotations

import pytest

_WARDEN_ENV = (
    "WARDEN_DEBUG",
    "WARDEN_POLICY_FILE",
    "WARDEN_CONFIG_TTL_S",
    "WARDEN_BUDGET_ENABLED",
    "WARDEN_MAX_SPEND",
    "WARDEN_BUDGET_WARNING",
    "WARDEN_WATCHER_ENABLED",
    "WARDEN_WATCHER_INTERVAL_S",
    "WARDEN_LOG_DIR",
)


@pytest.fixture(autouse=True)
def _isolated_project(tmp_path, monkeypatch):
    """Point project root and data dir at tmp_path for every test."""
    monkeypatch.setenv("WARDEN_PROJECT_ROOT", str(tmp_path))
    monkeypatch.setenv("WARDEN_DATA_DIR", str(tmp_path / ".warden"))
    for name in _WARDEN_ENV:
        monkeypatch.delenv(name, raising=False)
    yield


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticPolicy:
    def __init__(self, safe=None, never=None):
        self.safe = list(safe or [])
        self.never = list(never or [])

    def get_safe_paths(self):
        return list(self.safe)

    def get_never_modify_paths(self):
        return list(self.never)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_policy():
    return StaticPolicy
