"""
Worker Pool — the fixed set of specialized workers for one orchestrator.

Workers are created once from a list of WorkerSpec, probed for liveness, and
dropped for good if the probe fails. Nothing creates workers after that.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable, Optional

import structlog

from parallax.metrics import metrics
from parallax.orchestration.models import TaskKind, Worker, WorkerSpec

logger = structlog.get_logger(__name__)


class NoWorkersAvailableError(RuntimeError):
    """Raised when pool validation leaves no functioning worker."""


_IMPORT_SYSTEM_PROMPT = """You are an expert in analyzing JavaScript/TypeScript imports and dependencies.
Analyze the imports provided and answer ONLY in JSON with this structure:
{
  "importType": "named|default|namespace",
  "dependencies": ["dep1", "dep2"],
  "complexity": 1-10,
  "purpose": "short description",
  "risks": ["risk1", "risk2"],
  "suggestions": ["suggestion1"]
}
Be concise and precise."""

_CONTENT_SYSTEM_PROMPT = """You are an expert in code analysis and business logic.
Analyze the provided code and answer in JSON with:
{
  "mainPurpose": "main objective",
  "keyFunctions": ["func1", "func2"],
  "patterns": ["pattern1", "pattern2"],
  "complexity": 1-10,
  "businessLogic": "description of the business logic",
  "codeQuality": 1-10,
  "improvements": ["improvement1"]
}"""

_STRUCTURE_SYSTEM_PROMPT = """You are an expert software architect.
Analyze the structure and architecture of the provided code. Answer in JSON:
{
  "architecture": "detected architecture type",
  "patterns": ["pattern1", "pattern2"],
  "organization": "how the code is organized",
  "coupling": 1-10,
  "cohesion": 1-10,
  "maintainability": 1-10,
  "recommendations": ["rec1", "rec2"]
}"""

_SYNTHESIS_SYSTEM_PROMPT = """You are an expert at synthesizing technical analyses.
You receive several JSON analyses and must produce a coherent, actionable synthesis.
Give a clear summary with conclusions and prioritized recommendations."""

DEFAULT_WORKER_SPECS: tuple[WorkerSpec, ...] = (
    WorkerSpec(
        worker_id="import-analyzer-1",
        kind=TaskKind.IMPORT_ANALYSIS,
        specialization="Import and dependency analysis",
        system_prompt=_IMPORT_SYSTEM_PROMPT,
        options={"temperature": 0.1, "top_p": 0.7},
    ),
    WorkerSpec(
        worker_id="import-analyzer-2",
        kind=TaskKind.IMPORT_ANALYSIS,
        specialization="Backup import analyzer",
        system_prompt=(
            "You are a dependency analyst. Analyze the imports and return structured "
            "JSON describing their usage and impact."
        ),
        options={"temperature": 0.1},
    ),
    WorkerSpec(
        worker_id="content-analyzer-1",
        kind=TaskKind.CONTENT_ANALYSIS,
        specialization="Content and business logic analysis",
        system_prompt=_CONTENT_SYSTEM_PROMPT,
        options={"temperature": 0.3, "top_p": 0.9},
    ),
    WorkerSpec(
        worker_id="structure-analyzer-1",
        kind=TaskKind.STRUCTURE_ANALYSIS,
        specialization="Global architecture and structure",
        system_prompt=_STRUCTURE_SYSTEM_PROMPT,
        options={"temperature": 0.2, "top_p": 0.8},
    ),
    WorkerSpec(
        worker_id="synthesizer-1",
        kind=TaskKind.SYNTHESIS,
        specialization="Synthesis and merging of analyses",
        system_prompt=_SYNTHESIS_SYSTEM_PROMPT,
        options={"temperature": 0.4},
    ),
)


class WorkerPool:
    """Owns the workers of one orchestrator instance."""

    def __init__(self, workers: Iterable[Worker]):
        self._workers: dict[str, Worker] = {}
        for worker in workers:
            if worker.id in self._workers:
                raise ValueError(f"Duplicate worker id: {worker.id}")
            self._workers[worker.id] = worker

    @classmethod
    def create(
        cls,
        specs: Iterable[WorkerSpec],
        client_factory: Callable[[WorkerSpec], Any],
    ) -> "WorkerPool":
        """Build one worker per spec, each with its own client."""
        workers = []
        for spec in specs:
            workers.append(Worker(spec=spec, client=client_factory(spec)))
            logger.info(
                "pool.worker_created",
                worker=spec.worker_id,
                kind=spec.kind.value,
                specialization=spec.specialization,
            )
        return cls(workers)

    def __len__(self) -> int:
        return len(self._workers)

    def __iter__(self):
        return iter(list(self._workers.values()))

    def get(self, worker_id: str) -> Optional[Worker]:
        return self._workers.get(worker_id)

    async def validate(self) -> "WorkerPool":
        """Probe every worker; drop the ones that fail.

        Raises NoWorkersAvailableError if nothing survives.
        """
        workers = list(self._workers.values())
        outcomes = await asyncio.gather(
            *(self._probe(worker) for worker in workers),
        )
        for worker, alive in zip(workers, outcomes):
            if alive:
                logger.info("pool.worker_validated", worker=worker.id)
                continue
            logger.warning("pool.worker_removed", worker=worker.id)
            del self._workers[worker.id]
            await self._close_client(worker)

        metrics.set_gauge("pool.workers", len(self._workers))
        if not self._workers:
            raise NoWorkersAvailableError("No functioning workers available")

        logger.info("pool.validated", workers=len(self._workers))
        return self

    async def _probe(self, worker: Worker) -> bool:
        try:
            return bool(await worker.client.test_connection())
        except Exception as exc:
            logger.warning("pool.probe_error", worker=worker.id, error=str(exc))
            return False

    async def _close_client(self, worker: Worker) -> None:
        close = getattr(worker.client, "aclose", None)
        if close is None:
            return
        try:
            await close()
        except Exception:
            logger.debug("pool.client_close_failed", worker=worker.id, exc_info=True)

    def available_workers(self, kind: TaskKind) -> list[Worker]:
        """Workers of ``kind`` that are idle right now, in creation order."""
        return [w for w in self._workers.values() if w.kind is kind and w.available]

    def find_available(self, kind: TaskKind) -> Optional[Worker]:
        workers = self.available_workers(kind)
        return workers[0] if workers else None

    def stats(self) -> dict[str, Any]:
        records = [w.snapshot() for w in self._workers.values()]
        return {
            "total_workers": len(records),
            "available_workers": sum(1 for r in records if r["available"]),
            "workers": records,
        }

    async def close(self) -> None:
        for worker in list(self._workers.values()):
            await self._close_client(worker)
        metrics.set_gauge("pool.workers", 0)
