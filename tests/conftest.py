"""Shared pytest fixtures for ctp tests."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import pytest

from ctp.run_manager import RunManager

# ============================================================================
# Collaborator fakes
# ============================================================================


class FakeRegistry:
    """Fixed detector table with ids/masks that are easy to assert on."""

    TABLE = {
        "ITS": (0, 0x1),
        "TPC": (1, 0x2),
        "FT0": (2, 0x4),
        "detA": (5, 0x20),
        "detB": (6, 0x40),
    }

    def resolve(self, name: str) -> Optional[Tuple[int, int]]:
        return self.TABLE.get(name)


class RecordingStore:
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []

    def store(self, payload, path, valid_from, valid_until, metadata) -> bool:
        self.calls.append({
            "payload": payload, "path": path,
            "valid_from": valid_from, "valid_until": valid_until, "metadata": metadata,
        })
        return True

    def paths(self) -> List[str]:
        return [c["path"] for c in self.calls]


class RejectingStore(RecordingStore):
    def store(self, payload, path, valid_from, valid_until, metadata) -> bool:
        super().store(payload, path, valid_from, valid_until, metadata)
        return False


class ExplodingStore:
    def store(self, payload, path, valid_from, valid_until, metadata) -> bool:
        raise ConnectionError("object store unreachable")


class StepClock:
    """Returns 1000, 2000, 3000, ... on successive calls."""

    def __init__(self, start: int = 1000, step: int = 1000) -> None:
        self.now = start - step
        self.step = step

    def __call__(self) -> int:
        self.now += self.step
        return self.now


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def manager(registry: FakeRegistry, store: RecordingStore, clock: StepClock) -> RunManager:
    """Small feed: 8 counters, the first 3 are run slots."""
    return RunManager(registry, store, n_counters=8, n_runs=3, clock=clock)


def snapshot(ts: float, runs: List[int], n_counters: int = 8, n_runs: int = 3, fill: int = 7) -> str:
    """Build a feed line for the small geometry used by the `manager` fixture."""
    slots = runs + [0] * (n_runs - len(runs))
    counters = slots + [fill] * (n_counters - n_runs)
    return " ".join([str(ts)] + [str(c) for c in counters])


@pytest.fixture
def make_snapshot():
    return snapshot
