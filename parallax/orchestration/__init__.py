"""
Multi-Worker Orchestration — parallel analysis of one file by specialized workers.

A request (file content + dependency records) becomes a prioritized list of
typed tasks. Tasks are grouped by the kind of worker that serves them and
spread round-robin over the idle workers of that kind; each worker works
through its share serially while all workers run concurrently. Results are
collected per task id and merged by the synthesizer.
"""

from __future__ import annotations

from parallax.orchestration.models import (
    DependencyInfo,
    OrchestrationResult,
    Task,
    TaskKind,
    TaskStatus,
    Worker,
    WorkerSpec,
)
from parallax.orchestration.orchestrator import Orchestrator, OrchestratorStatus
from parallax.orchestration.pool import DEFAULT_WORKER_SPECS, NoWorkersAvailableError, WorkerPool

__all__ = [
    "DEFAULT_WORKER_SPECS",
    "DependencyInfo",
    "NoWorkersAvailableError",
    "OrchestrationResult",
    "Orchestrator",
    "OrchestratorStatus",
    "Task",
    "TaskKind",
    "TaskStatus",
    "Worker",
    "WorkerPool",
    "WorkerSpec",
]
