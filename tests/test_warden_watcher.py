import json
import sys

import warden_watcher
from warden.regression import ObservationEvent, RegressionTracker


def test_summary_mode_prints_regression_state(tmp_path, monkeypatch, capsys):
    data_dir = tmp_path / ".warden"
    tracker = RegressionTracker(data_dir)
    for _ in range(2):
        tracker.record_result(ObservationEvent(status="failed", target_id="svc-a"))

    monkeypatch.setattr(sys, "argv", ["warden_watcher.py", "--summary"])
    warden_watcher.main()

    out = json.loads(capsys.readouterr().out)
    assert out["total_tracked"] == 1
    assert out["currently_failing"] == 1
    assert [i["id"] for i in out["escalated_issues"]] == ["svc-a"]
    assert out["active_blockers"] == 0


def test_disabled_watcher_exits_without_starting(tmp_path, monkeypatch):
    monkeypatch.setenv("WARDEN_WATCHER_ENABLED", "0")
    monkeypatch.setattr(sys, "argv", ["warden_watcher.py"])

    started = []
    monkeypatch.setattr(warden_watcher.SpecWatcher, "start", lambda self: started.append(self))
    warden_watcher.main()
    assert started == []


def test_heartbeat_file(tmp_path):
    path = tmp_path / "hb" / "watcher_heartbeat.json"
    warden_watcher.write_heartbeat(path, {"known_artifacts": 3})
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["stats"] == {"known_artifacts": 3}
    assert data["ts"] > 0
