"""
ctp/scalers.py
--------------
Counter ("scaler") feed handling.

A snapshot is one line: `<timestamp> <counter_0> ... <counter_{N-1}>`.
The first `n_runs` counters carry the numbers of the currently active runs
(0 marks an empty slot); the rest are hardware counters.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .tokenizer import tokenize, to_uint


class SnapshotError(ValueError):
    def __init__(self, reason: str, detail: str):
        super().__init__(f"{reason}: {detail}")
        self.reason = reason
        self.detail = detail


@dataclass(frozen=True)
class ScalerRecord:
    timestamp: float
    counters: Tuple[int, ...]


def default_counter_names(n_counters: int, n_runs: int) -> List[str]:
    if n_runs > n_counters:
        raise ValueError(f"n_runs ({n_runs}) larger than n_counters ({n_counters})")
    names = [f"runn{i}" for i in range(n_runs)]
    names += [f"cnt{i}" for i in range(n_runs, n_counters)]
    return names


def build_counter_positions(names: Sequence[str], n_counters: int) -> Dict[str, int]:
    """Name -> position table. The name list must match the feed width exactly."""
    if len(names) != n_counters:
        raise RuntimeError(
            f"NCOUNTERS: {n_counters} different from names list: {len(names)}"
        )
    positions: Dict[str, int] = {}
    for i, name in enumerate(names):
        if name in positions:
            raise RuntimeError(f"duplicate counter name: {name}")
        positions[name] = i
    return positions


def parse_snapshot(text: str, n_counters: int) -> ScalerRecord:
    """Parse a whole snapshot line or raise SnapshotError; never returns partial data."""
    tokens = tokenize(text)
    if len(tokens) != n_counters + 1:
        raise SnapshotError(
            "bad_token_count", f"got {len(tokens)} tokens, expected {n_counters + 1}"
        )
    try:
        timestamp = float(tokens[0])
    except ValueError:
        raise SnapshotError("bad_token", f"timestamp {tokens[0]!r}") from None
    if not math.isfinite(timestamp):
        raise SnapshotError("bad_token", f"timestamp {tokens[0]!r}")
    counters: List[int] = []
    for pos, tok in enumerate(tokens[1:]):
        try:
            counters.append(to_uint(tok))
        except ValueError:
            raise SnapshotError("bad_token", f"counter {pos} = {tok!r}") from None
    return ScalerRecord(timestamp, tuple(counters))


@dataclass
class RunScalers:
    """Counter history of one run, in arrival order."""
    run_number: int
    records: List[ScalerRecord] = field(default_factory=list)

    def add(self, record: ScalerRecord) -> None:
        self.records.append(record)

    @property
    def latest(self) -> Optional[ScalerRecord]:
        return self.records[-1] if self.records else None

    def to_dict(self, names: Optional[Sequence[str]] = None) -> Dict:
        return {
            "run_number": self.run_number,
            "names": list(names) if names is not None else None,
            "records": [
                {"timestamp": r.timestamp, "counters": list(r.counters)} for r in self.records
            ],
        }
