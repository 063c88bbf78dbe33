"""
Orchestration Data Models — the vocabulary of one analysis run.

DependencyInfo is what the caller hands in. Task is one unit of work with a
typed payload; the payloads form a closed union discriminated by ``kind`` so
each task kind carries exactly the fields its prompt needs. WorkerSpec is the
static description of a specialized worker, Worker its runtime handle.
OrchestrationResult is what the caller gets back.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class TaskKind(str, Enum):
    IMPORT_ANALYSIS = "import-analysis"
    CONTENT_ANALYSIS = "content-analysis"
    STRUCTURE_ANALYSIS = "structure-analysis"
    DEPENDENCY_TREE = "dependency-tree"
    SYNTHESIS = "synthesis"


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


_VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.PROCESSING},
    TaskStatus.PROCESSING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),  # terminal
    TaskStatus.FAILED: set(),  # terminal
}


class InvalidTransitionError(Exception):
    """Raised when a task is moved to a status it cannot reach."""

    def __init__(self, task_id: str, current: TaskStatus, target: TaskStatus) -> None:
        self.task_id = task_id
        self.current = current
        self.target = target
        super().__init__(f"Invalid transition for {task_id}: {current.value} -> {target.value}")


class DependencyInfo(BaseModel):
    """One import of the analyzed file, as extracted by the caller.

    Accepts both snake_case field names and the camelCase keys editor-side
    import extractors emit (``importKind``, ``importedNames`` and so on).
    Unknown keys are rejected rather than dropped.
    """

    source: str
    import_kind: Literal["named", "default", "namespace"] = Field("named", alias="importKind")
    imported_names: list[str] = Field(default_factory=list, alias="importedNames")
    extracted_code: Optional[str] = Field(None, alias="extractedCode")
    sub_dependency_sources: list[str] = Field(default_factory=list, alias="subDependencySources")

    model_config = {"populate_by_name": True, "extra": "forbid"}


# ---------------------------------------------------------------------------
# Task payloads
# ---------------------------------------------------------------------------


class ContentAnalysisInput(BaseModel):
    kind: Literal["content-analysis"] = "content-analysis"
    file_name: str
    content: str
    context: str = "main-file-analysis"


class StructureAnalysisInput(BaseModel):
    kind: Literal["structure-analysis"] = "structure-analysis"
    file_name: str
    content: str
    dependency_sources: list[str] = Field(default_factory=list)
    line_count: int = 0


class ImportAnalysisInput(BaseModel):
    kind: Literal["import-analysis"] = "import-analysis"
    source: str
    import_kind: Literal["named", "default", "namespace"] = "named"
    imported_names: list[str] = Field(default_factory=list)
    extracted_code: str = ""
    sub_dependency_sources: list[str] = Field(default_factory=list)


class DependencyTreeInput(BaseModel):
    kind: Literal["dependency-tree"] = "dependency-tree"
    main_file: str
    dependencies: list[DependencyInfo] = Field(default_factory=list)


class SynthesisInput(BaseModel):
    kind: Literal["synthesis"] = "synthesis"
    sections: dict[str, Any] = Field(default_factory=dict)


TaskInput = Annotated[
    Union[
        ContentAnalysisInput,
        StructureAnalysisInput,
        ImportAnalysisInput,
        DependencyTreeInput,
        SynthesisInput,
    ],
    Field(discriminator="kind"),
]

# Payload kind -> kind of worker that serves it. Dependency trees are answered
# by the structure analysts.
ROUTING_KIND: dict[TaskKind, TaskKind] = {
    TaskKind.CONTENT_ANALYSIS: TaskKind.CONTENT_ANALYSIS,
    TaskKind.STRUCTURE_ANALYSIS: TaskKind.STRUCTURE_ANALYSIS,
    TaskKind.IMPORT_ANALYSIS: TaskKind.IMPORT_ANALYSIS,
    TaskKind.DEPENDENCY_TREE: TaskKind.STRUCTURE_ANALYSIS,
    TaskKind.SYNTHESIS: TaskKind.SYNTHESIS,
}


class Task(BaseModel):
    """One unit of analysis work and its lifecycle."""

    id: str
    input: TaskInput
    priority: int = 0
    status: TaskStatus = TaskStatus.PENDING
    assigned_worker: Optional[str] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    result: Optional[str] = None
    error: Optional[str] = None

    @property
    def payload_kind(self) -> TaskKind:
        return TaskKind(self.input.kind)

    @property
    def kind(self) -> TaskKind:
        """The worker kind this task is routed to."""
        return ROUTING_KIND[self.payload_kind]

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at) * 1000.0

    def _transition(self, target: TaskStatus) -> None:
        if target not in _VALID_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.id, self.status, target)
        self.status = target

    def mark_processing(self, worker_id: str) -> None:
        self._transition(TaskStatus.PROCESSING)
        self.assigned_worker = worker_id
        self.started_at = time.monotonic()

    def mark_completed(self, result: str) -> None:
        self._transition(TaskStatus.COMPLETED)
        self.finished_at = max(time.monotonic(), self.started_at or 0.0)
        self.result = result

    def mark_failed(self, error: str) -> None:
        self._transition(TaskStatus.FAILED)
        self.finished_at = max(time.monotonic(), self.started_at or 0.0)
        self.error = error


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------


class WorkerSpec(BaseModel):
    """Static definition of one specialized worker."""

    worker_id: str
    kind: TaskKind
    specialization: str = ""
    system_prompt: Optional[str] = None
    options: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def reject_payload_only_kinds(self) -> "WorkerSpec":
        if ROUTING_KIND[self.kind] is not self.kind:
            raise ValueError(
                f"Worker kind '{self.kind.value}' is served by "
                f"'{ROUTING_KIND[self.kind].value}' workers"
            )
        return self


@dataclass
class Worker:
    """Runtime handle for a specialized worker and its statistics."""

    spec: WorkerSpec
    client: Any  # OllamaClient or anything with generate()/test_connection()
    available: bool = True
    current_task_id: Optional[str] = None
    completed_count: int = 0
    average_latency_ms: float = 0.0

    @property
    def id(self) -> str:
        return self.spec.worker_id

    @property
    def kind(self) -> TaskKind:
        return self.spec.kind

    @property
    def specialization(self) -> str:
        return self.spec.specialization

    def acquire(self, task_id: str) -> None:
        if not self.available:
            raise RuntimeError(
                f"Worker {self.id} is busy with {self.current_task_id}, cannot take {task_id}"
            )
        self.available = False
        self.current_task_id = task_id

    def release(self) -> None:
        self.available = True
        self.current_task_id = None

    def record_completion(self, duration_ms: float) -> None:
        """Fold one task duration into the running average."""
        previous = self.completed_count
        self.completed_count += 1
        self.average_latency_ms = (
            self.average_latency_ms * previous + duration_ms
        ) / self.completed_count

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "specialization": self.specialization,
            "available": self.available,
            "completed_tasks": self.completed_count,
            "average_latency_ms": round(self.average_latency_ms),
            "current_task": self.current_task_id,
        }


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def error_marker(message: str) -> dict[str, Any]:
    """Result recorded for a task whose generation call failed.

    The ``failed`` flag tells it apart from a worker answer that happens to
    carry its own ``error`` key.
    """
    return {"error": message, "failed": True}


def is_error_marker(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and set(value) == {"error", "failed"}
        and value["failed"] is True
    )


class PerformanceMetrics(BaseModel):
    total_wall_ms: float = 0.0
    task_count: int = 0
    efficiency_ratio: float = 1.0


class OrchestrationResult(BaseModel):
    """Everything one ``analyze_in_parallel`` call produced."""

    per_task_results: dict[str, Any] = Field(default_factory=dict)
    synthesis: str = ""
    metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)

    @property
    def main_content(self) -> Any:
        return self.per_task_results.get("main-content")

    @property
    def global_structure(self) -> Any:
        return self.per_task_results.get("global-structure")

    @property
    def dependency_tree(self) -> Any:
        return self.per_task_results.get("dependency-tree")

    @property
    def import_analyses(self) -> list[Any]:
        return import_results(self.per_task_results)

    @property
    def failed_task_ids(self) -> list[str]:
        return sorted(k for k, v in self.per_task_results.items() if is_error_marker(v))


def import_results(results: dict[str, Any]) -> list[Any]:
    """Import-analysis results ordered by import index."""

    def _index(key: str) -> int:
        suffix = key[len("import-"):]
        return int(suffix) if suffix.isdigit() else 0

    keys = sorted((k for k in results if k.startswith("import-")), key=_index)
    return [results[k] for k in keys]
