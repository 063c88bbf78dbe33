"""
Shared fixtures for the Parallax test suite.

Provides a scripted stand-in for the generation client, worker builders and
sample dependency records as fixtures so individual test modules can focus on
behavior rather than setup.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, Union

import pytest

from parallax.metrics import metrics
from parallax.orchestration.models import DependencyInfo, TaskKind, Worker, WorkerSpec


Reply = Union[str, Callable[[str], str]]


class FakeClient:
    """Generation client double with scripted replies and call recording."""

    def __init__(
        self,
        reply: Reply = '{"ok": true}',
        *,
        alive: bool = True,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        fail_when: Optional[str] = None,
        connection_error: Optional[Exception] = None,
    ):
        self.reply = reply
        self.alive = alive
        self.delay = delay
        self.error = error
        self.fail_when = fail_when
        self.connection_error = connection_error
        self.calls: list[dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        options: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        self.calls.append({"prompt": prompt, "system": system, "options": options, "timeout": timeout})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None and (self.fail_when is None or self.fail_when in prompt):
                raise self.error
            return self.reply(prompt) if callable(self.reply) else self.reply
        finally:
            self.in_flight -= 1

    async def test_connection(self) -> bool:
        if self.connection_error is not None:
            raise self.connection_error
        return self.alive

    async def aclose(self) -> None:
        self.closed = True


def _spec(worker_id: str, kind: TaskKind, **kwargs: Any) -> WorkerSpec:
    return WorkerSpec(worker_id=worker_id, kind=kind, specialization=f"{kind.value} worker", **kwargs)


@pytest.fixture()
def fake_client() -> type[FakeClient]:
    """Constructor for scripted generation clients."""
    return FakeClient


@pytest.fixture()
def make_spec() -> Callable[..., WorkerSpec]:
    return _spec


@pytest.fixture()
def make_worker() -> Callable[..., Worker]:
    """Build a worker around a FakeClient unless one is passed."""

    def _make(worker_id: str, kind: TaskKind, client: Optional[FakeClient] = None, **kwargs: Any) -> Worker:
        return Worker(spec=_spec(worker_id, kind, **kwargs), client=client or FakeClient())

    return _make


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Every test starts from an empty metrics registry."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture()
def sample_dependencies() -> list[DependencyInfo]:
    return [
        DependencyInfo(
            source="react",
            import_kind="default",
            imported_names=["React"],
            extracted_code="import React from 'react';",
        ),
        DependencyInfo(
            source="lodash",
            import_kind="named",
            imported_names=["debounce", "throttle"],
            extracted_code="import { debounce, throttle } from 'lodash';",
        ),
        DependencyInfo(
            source="./utils/format",
            import_kind="namespace",
            imported_names=["fmt"],
            extracted_code="import * as fmt from './utils/format';",
            sub_dependency_sources=["date-fns"],
        ),
    ]


@pytest.fixture()
def sample_source() -> str:
    return (
        "import React from 'react';\n"
        "import { debounce, throttle } from 'lodash';\n"
        "import * as fmt from './utils/format';\n"
        "\n"
        "export function App() {\n"
        "  return fmt.title('hello');\n"
        "}\n"
    )
