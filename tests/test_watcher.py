import json
import os
import threading
from datetime import datetime, timezone

import pytest

from warden.regression import RegressionTracker
from warden.watcher import LogLineMatcher, ProcessedArtifactSet, SpecWatcher


class RecordingNotifier:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def on_spec_blocked(self, loop_result, spec):
        self.calls.append((loop_result, spec))
        if self.fail:
            raise RuntimeError("notifier down")


def _drop(data_dir, source, name, payload, mtime):
    directory = data_dir / source
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    if isinstance(payload, str):
        path.write_text(payload, encoding="utf-8")
    else:
        path.write_text(json.dumps(payload), encoding="utf-8")
    os.utime(path, (mtime, mtime))
    return path


def _watcher(tmp_path, clock, notifier=None):
    data_dir = tmp_path / ".warden"
    tracker = RegressionTracker(data_dir, clock=clock)
    watcher = SpecWatcher(data_dir, tracker, notifier, interval_s=3600, clock=clock)
    return data_dir, tracker, watcher


def test_seeded_artifacts_are_never_folded(tmp_path, clock):
    notifier = RecordingNotifier()
    data_dir, tracker, watcher = _watcher(tmp_path, clock, notifier)
    _drop(data_dir, "blocked", "old.json", {"id": "old"}, clock.now + 100)

    watcher.seed()
    stats = watcher.tick()

    assert stats["folded"] == 0
    assert notifier.calls == []
    assert tracker.get_target("old") is None


def test_new_artifact_is_folded_and_notified_once(tmp_path, clock):
    notifier = RecordingNotifier()
    data_dir, tracker, watcher = _watcher(tmp_path, clock, notifier)
    watcher.seed()

    path = _drop(
        data_dir, "blocked", "spec-1.json",
        {"id": "spec-1", "file_path": "server/a.ts", "_failure_reason": "permission denied", "_iterations": 4},
        clock.now + 5,
    )
    first = watcher.tick()
    second = watcher.tick()

    assert first["folded"] == 1
    assert second["folded"] == 0
    assert len(notifier.calls) == 1
    loop_result, spec = notifier.calls[0]
    assert loop_result == {
        "status": "blocked",
        "reason": "permission denied",
        "iterations": 4,
        "spec_path": str(path),
        "failure_history": [],
    }
    assert spec["id"] == "spec-1"
    entry = tracker.get_target("spec-1")
    assert entry.total_failures == 1
    assert entry.last_status == "failed"


def test_failed_dir_defaults(tmp_path, clock):
    notifier = RecordingNotifier()
    data_dir, _, watcher = _watcher(tmp_path, clock, notifier)
    watcher.seed()
    _drop(data_dir, "failed-queue", "x.json", {"filePath": "client/app.tsx"}, clock.now + 5)

    watcher.tick()

    loop_result, _ = notifier.calls[0]
    assert loop_result["status"] == "max-iterations"
    assert loop_result["iterations"] == 10
    assert loop_result["reason"] == "Spec failed after multiple attempts targeting client/app.tsx"


def test_artifact_older_than_cursor_is_marked_without_folding(tmp_path, clock):
    data_dir, tracker, watcher = _watcher(tmp_path, clock)
    watcher.seed()
    _drop(data_dir, "failed", "stale.json", {"id": "stale"}, clock.now - 50)

    stats = watcher.tick()

    assert stats == {"folded": 0, "stale": 1, "errors": 0, "daily_alerts": 0}
    assert ("failed", "stale.json") in watcher.processed
    assert tracker.get_target("stale") is None


def test_replay_of_same_artifact_folds_once(tmp_path, clock):
    data_dir, tracker, watcher = _watcher(tmp_path, clock)
    watcher.seed()
    _drop(data_dir, "blocked", "dup.json", {"id": "dup"}, clock.now + 5)
    watcher.tick()

    # Same name rewritten with a fresh mtime.
    _drop(data_dir, "blocked", "dup.json", {"id": "dup"}, clock.now + 500)
    watcher.tick()

    assert tracker.get_target("dup").total_checks == 1


def test_malformed_artifact_does_not_stop_siblings(tmp_path, clock):
    notifier = RecordingNotifier()
    data_dir, tracker, watcher = _watcher(tmp_path, clock, notifier)
    watcher.seed()
    _drop(data_dir, "blocked", "a-bad.json", "{oops", clock.now + 5)
    _drop(data_dir, "blocked", "b-good.json", {"id": "good"}, clock.now + 5)

    stats = watcher.tick()

    assert stats["errors"] == 1
    assert stats["folded"] == 1
    assert tracker.get_target("good") is not None
    assert ("blocked", "a-bad.json") not in watcher.processed


def test_notifier_failure_keeps_artifact_processed(tmp_path, clock):
    notifier = RecordingNotifier(fail=True)
    data_dir, tracker, watcher = _watcher(tmp_path, clock, notifier)
    watcher.seed()
    _drop(data_dir, "blocked", "n.json", {"id": "n"}, clock.now + 5)

    watcher.tick()
    watcher.tick()

    assert len(notifier.calls) == 1
    assert tracker.get_target("n").total_checks == 1


def test_missing_directories_are_nothing_to_do(tmp_path, clock):
    _, _, watcher = _watcher(tmp_path, clock)
    assert watcher.tick() == {"folded": 0, "stale": 0, "errors": 0, "daily_alerts": 0}


def _daily(data_dir, clock, lines):
    day = datetime.fromtimestamp(clock.now, tz=timezone.utc).strftime("%Y-%m-%d")
    path = data_dir / "daily" / f"{day}.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_daily_log_alerts_fold_once_per_spec(tmp_path, clock):
    data_dir, tracker, watcher = _watcher(tmp_path, clock)
    watcher.seed()
    _daily(data_dir, clock, [
        "## 10:00",
        "Ralph Loop: BLOCKED Spec: auth-flow.json",
        "stopped after 3 consecutive test failures Spec: billing.json",
        "Ralph Loop: BLOCKED Spec: auth-flow.json",
        "Ralph Loop: BLOCKED without a spec name",
    ])

    assert watcher.tick()["daily_alerts"] == 2
    assert watcher.tick()["daily_alerts"] == 0
    assert tracker.get_target("auth-flow.json").total_failures == 1
    assert tracker.get_target("billing.json").total_failures == 1


def test_daily_log_only_tail_is_scanned(tmp_path, clock):
    data_dir, tracker, watcher = _watcher(tmp_path, clock)
    watcher.seed()
    lines = ["Ralph Loop: BLOCKED Spec: early.json"] + ["filler"] * 25
    _daily(data_dir, clock, lines)

    assert watcher.tick()["daily_alerts"] == 0
    assert tracker.get_target("early.json") is None


def test_daily_log_seeded_on_first_start(tmp_path, clock):
    data_dir, tracker, watcher = _watcher(tmp_path, clock)
    _daily(data_dir, clock, ["Ralph Loop: BLOCKED Spec: known.json"])
    watcher.seed()
    assert watcher.tick()["daily_alerts"] == 0


def test_start_stop_lifecycle_and_restart_keeps_state(tmp_path, clock):
    data_dir, tracker, watcher = _watcher(tmp_path, clock)
    _drop(data_dir, "blocked", "pre.json", {"id": "pre"}, clock.now + 100)

    assert watcher.start() is True
    assert watcher.start() is False
    assert watcher.running is True
    assert ("blocked", "pre.json") in watcher.processed

    assert watcher.stop() is True
    assert watcher.stop() is False
    assert watcher.running is False

    _drop(data_dir, "blocked", "during-stop.json", {"id": "during"}, clock.now + 100)
    assert watcher.start() is True
    try:
        assert ("blocked", "during-stop.json") not in watcher.processed
        assert watcher.tick()["folded"] == 1
        assert tracker.get_target("pre") is None
    finally:
        watcher.stop()


def test_overlapping_ticks_fold_an_artifact_once(tmp_path, clock):
    data_dir, tracker, watcher = _watcher(tmp_path, clock)
    watcher.seed()
    _drop(data_dir, "blocked", "late.json", {"id": "late"}, clock.now + 100)

    results = []
    with watcher._tick_lock:
        workers = [threading.Thread(target=lambda: results.append(watcher.tick())) for _ in range(2)]
        for worker in workers:
            worker.start()
        workers[0].join(0.2)
        assert results == []
    for worker in workers:
        worker.join(5)

    assert sorted(r["folded"] for r in results) == [0, 1]
    assert tracker.get_target("late").total_checks == 1


def test_processed_set_reset():
    processed = ProcessedArtifactSet()
    processed.seed([("blocked", "a.json")])
    processed.add(("failed", "b.json"))
    assert len(processed) == 2
    assert processed.seeded is True

    processed.reset()
    assert len(processed) == 0
    assert processed.seeded is False
    assert ("blocked", "a.json") not in processed


@pytest.mark.parametrize(
    "line, expected",
    [
        ("Ralph Loop: BLOCKED Spec: a.json", "a.json"),
        ("Loop stopped after 12 consecutive test failures. Spec:b.json", "b.json"),
        ("Spec: c.json completed", None),
        ("Ralph Loop: BLOCKED", None),
    ],
)
def test_log_line_matcher(line, expected):
    assert LogLineMatcher().match(line) == expected
