"""
Build-step application: the glue between a planned step and the guards.

A step is `{id, action, target_path, description}`. `generate(step, current)`
is the paid model call; it receives the step and the current file read and
returns the new file content.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .budget import BudgetExceeded, BudgetGovernor
from .mutation import FileRead, MutationPipeline
from .path_policy import PathClassification
from .regression import ObservationEvent, RegressionTracker

log = logging.getLogger("warden.builder")


@dataclass
class BuildStep:
    id: str
    action: str
    target_path: str
    description: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildStep":
        return cls(
            id=str(data.get("id") or ""),
            action=str(data.get("action") or "replace"),
            target_path=str(data.get("target_path") or data.get("filePath") or ""),
            description=str(data.get("description") or ""),
        )


@dataclass
class BuildResult:
    step_id: str
    success: bool = False
    files_modified: List[str] = field(default_factory=list)
    error: str = ""


def _record(tracker: Optional[RegressionTracker], step: BuildStep, status: str, message: str) -> None:
    if tracker is None:
        return
    tracker.record_result(ObservationEvent(
        status=status,
        target_id=step.target_path or step.id,
        kind="build-step",
        message=message,
        details={"step_id": step.id, "action": step.action},
    ))


def _fail(progress, tracker, step: BuildStep, result: BuildResult, reason: str) -> BuildResult:
    result.error = reason
    progress.mark_step_failed(step.id, reason)
    _record(tracker, step, "failed", reason)
    log.warning("Step %s failed: %s", step.id, reason)
    return result


def apply_step(
    step,
    generate: Callable[[BuildStep, FileRead], str],
    pipeline: MutationPipeline,
    governor: BudgetGovernor,
    progress,
    tracker: Optional[RegressionTracker] = None,
) -> BuildResult:
    """Run one step through policy, budget and the guarded write.

    Policy rejections and write failures are reported in the result and the
    step is marked failed. BudgetExceeded marks the step failed and then
    propagates.
    """
    if not isinstance(step, BuildStep):
        step = BuildStep.from_dict(step)
    result = BuildResult(step_id=step.id)

    classification = pipeline.classify(step.target_path)
    if classification is not PathClassification.MUTABLE:
        return _fail(progress, tracker, step, result, f"Unsafe path ({classification.value}): {step.target_path}")

    progress.mark_step_in_progress(step.id)
    current = pipeline.read_file(step.target_path)

    try:
        governor.check_budget_or_throw()
    except BudgetExceeded as e:
        result.error = str(e)
        progress.mark_step_failed(step.id, str(e))
        raise

    try:
        content = generate(step, current)
    except BudgetExceeded as e:
        result.error = str(e)
        progress.mark_step_failed(step.id, str(e))
        raise
    except Exception as e:
        return _fail(progress, tracker, step, result, f"generation failed: {e}")

    if not content:
        return _fail(progress, tracker, step, result, "No content produced")

    if step.action == "append" and current.exists and not current.truncated:
        content = current.text + "\n" + content

    written = pipeline.write_file(step.target_path, content)
    if not written.ok:
        return _fail(progress, tracker, step, result, written.error or "write failed")

    result.success = True
    result.files_modified.append(step.target_path)
    progress.mark_step_done(step.id)
    _record(tracker, step, "passed", step.description)
    log.info("Step %s applied to %s", step.id, step.target_path)
    return result


def rollback_files(pipeline: MutationPipeline, paths: List[str]) -> List[str]:
    """Restore each path from its newest backup; returns the paths restored."""
    restored: List[str] = []
    for path in paths:
        backups = pipeline.list_backups(path)
        if not backups:
            continue
        outcome = pipeline.restore_backup(backups[0])
        if outcome.ok:
            restored.append(path)
        else:
            log.warning("Rollback of %s failed: %s", path, outcome.error)
    return restored
