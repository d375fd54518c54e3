"""
Warden: safety and monitoring substrate for a self-modifying agent.

The layers, leaf first:
1. Path Policy - which targets may be mutated (deny wins, unknown is protected)
2. Mutation Pipeline - bounded reads, policy-checked writes with backups
3. Budget Governor - hard spend ceiling before any paid call
4. Regression Tracker - per-target failure history and escalation score
5. Watcher - exactly-once ingestion of blocked/failed spec artifacts
"""

from .budget import BudgetExceeded, BudgetGovernor, BudgetStatus
from .identity import BudgetLimits, WardenConfig, get_config, reset_config
from .mutation import FileRead, MutationPipeline, ReadStatus, WriteError, WriteResult
from .path_policy import PathClassification, PathMatcher, classify, is_mutable
from .regression import ObservationEvent, RegressionTracker, TargetHistory
from .watcher import LogLineMatcher, ProcessedArtifactSet, SpecWatcher

__all__ = [
    "BudgetExceeded",
    "BudgetGovernor",
    "BudgetLimits",
    "BudgetStatus",
    "FileRead",
    "LogLineMatcher",
    "MutationPipeline",
    "ObservationEvent",
    "PathClassification",
    "PathMatcher",
    "ProcessedArtifactSet",
    "ReadStatus",
    "RegressionTracker",
    "SpecWatcher",
    "TargetHistory",
    "WardenConfig",
    "WriteError",
    "WriteResult",
    "classify",
    "get_config",
    "is_mutable",
    "reset_config",
]
