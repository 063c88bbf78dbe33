"""
Task Scheduler — turns one analysis request into prioritized, typed tasks
and distributes them over workers.

Task list for a file with n dependencies:
  main-content      content-analysis     priority 10
  global-structure  structure-analysis   priority 9
  import-<i>        import-analysis      priority 5   (one per dependency)
  dependency-tree   structure-analysis   priority 3   (only if n > 0)
"""

from __future__ import annotations

from typing import Sequence

from parallax.orchestration.models import (
    ContentAnalysisInput,
    DependencyInfo,
    DependencyTreeInput,
    ImportAnalysisInput,
    StructureAnalysisInput,
    Task,
    TaskKind,
    Worker,
)

PRIORITY_MAIN_CONTENT = 10
PRIORITY_STRUCTURE = 9
PRIORITY_IMPORT = 5
PRIORITY_DEPENDENCY_TREE = 3


def build_tasks(
    file_content: str,
    dependencies: Sequence[DependencyInfo],
    file_name: str,
) -> list[Task]:
    """Build the task list for one file, sorted by priority (highest first).

    ``sorted`` is stable, so equal priorities keep insertion order.
    """
    tasks: list[Task] = [
        Task(
            id="main-content",
            input=ContentAnalysisInput(file_name=file_name, content=file_content),
            priority=PRIORITY_MAIN_CONTENT,
        ),
        Task(
            id="global-structure",
            input=StructureAnalysisInput(
                file_name=file_name,
                content=file_content,
                dependency_sources=[dep.source for dep in dependencies],
                line_count=len(file_content.split("\n")),
            ),
            priority=PRIORITY_STRUCTURE,
        ),
    ]

    for index, dep in enumerate(dependencies):
        tasks.append(
            Task(
                id=f"import-{index}",
                input=ImportAnalysisInput(
                    source=dep.source,
                    import_kind=dep.import_kind,
                    imported_names=list(dep.imported_names),
                    extracted_code=dep.extracted_code or "",
                    sub_dependency_sources=list(dep.sub_dependency_sources),
                ),
                priority=PRIORITY_IMPORT,
            )
        )

    if dependencies:
        tasks.append(
            Task(
                id="dependency-tree",
                input=DependencyTreeInput(main_file=file_name, dependencies=list(dependencies)),
                priority=PRIORITY_DEPENDENCY_TREE,
            )
        )

    return sorted(tasks, key=lambda t: t.priority, reverse=True)


def group_by_kind(tasks: Sequence[Task]) -> dict[TaskKind, list[Task]]:
    """Partition tasks by routing kind, keeping their order within each group."""
    groups: dict[TaskKind, list[Task]] = {}
    for task in tasks:
        groups.setdefault(task.kind, []).append(task)
    return groups


def assign_round_robin(
    tasks: Sequence[Task],
    workers: Sequence[Worker],
) -> list[tuple[Worker, list[Task]]]:
    """Task ``i`` goes to ``workers[i % len(workers)]``.

    Returns one lane per worker that received at least one task, in worker
    order. Each lane is meant to be run serially.
    """
    if not workers:
        raise ValueError("Cannot assign tasks without workers")
    lanes: list[list[Task]] = [[] for _ in workers]
    for i, task in enumerate(tasks):
        lanes[i % len(workers)].append(task)
    return [(worker, lane) for worker, lane in zip(workers, lanes) if lane]
