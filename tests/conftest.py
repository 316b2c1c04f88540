from __future__ import annotations

import pytest


class DummyMetrics:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, str]]] = []

    def increment(self, name: str, tags: dict[str, str]) -> None:
        self.calls.append((name, tags))

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def metrics() -> DummyMetrics:
    return DummyMetrics()
