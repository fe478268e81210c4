from __future__ import annotations
"""
ctp/run_manager.py
------------------
Run lifecycle tracker.

Each live run owns its parsed configuration and the counter snapshots seen
while it was live. There is no explicit stop message: the counter feed lists
the active run numbers in its first `n_runs` slots every cycle, and a run
whose number is missing from one whole cycle is considered finished. One well-formed
snapshot that misses the run ends it; a malformed snapshot changes nothing.

Per run number: absent -> live (start_run) -> finalized (stop_run).
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .config_loader import get_counter_cfg, get_db_path, get_detector_names, get_store_cfg
from .configuration import Configuration
from .detectors import DetectorRegistry, StaticDetectorRegistry
from .errors import LineIssue
from .inferred_parser import parse_inferred
from .scalers import (
    RunScalers, ScalerRecord, SnapshotError,
    build_counter_positions, default_counter_names, parse_snapshot,
)
from .store import CONFIG_PATH, SCALERS_PATH, ObjectStore, config_payload, make_store, scalers_payload

UTC_MS = lambda: int(time.time() * 1000)

log = logging.getLogger("ctp.runs")


# ----------------------------- Data structs -----------------------------
@dataclass
class ActiveRun:
    run_number: int
    config: Configuration
    scalers: RunScalers
    start_ms: int
    end_ms: Optional[int] = None
    seen: bool = True
    issues: List[LineIssue] = field(default_factory=list)


@dataclass
class RunResult:
    ok: bool
    run_number: int
    reason: Optional[str] = None
    stored: Optional[bool] = None


@dataclass
class ObserveResult:
    ok: bool
    timestamp: Optional[float] = None
    updated: List[int] = field(default_factory=list)
    stopped: List[int] = field(default_factory=list)
    reason: Optional[str] = None
    detail: Optional[str] = None


# ----------------------------- Run manager -----------------------------
class RunManager:
    def __init__(self, registry: DetectorRegistry, store: ObjectStore, *,
                 n_counters: int, n_runs: int,
                 counter_names: Optional[Sequence[str]] = None,
                 clock: Optional[Callable[[], int]] = None):
        if n_runs <= 0 or n_counters <= 0:
            raise ValueError("n_counters and n_runs must be positive")
        if n_runs > n_counters:
            raise ValueError(f"n_runs ({n_runs}) larger than n_counters ({n_counters})")
        self.registry = registry
        self.store = store
        self.n_counters = int(n_counters)
        self.n_runs = int(n_runs)
        self._clock = clock or UTC_MS

        names = list(counter_names) if counter_names else default_counter_names(self.n_counters, self.n_runs)
        self.counter_names: tuple[str, ...] = tuple(names)
        # built once; exposed read-only
        self.counter_positions: Mapping[str, int] = MappingProxyType(
            build_counter_positions(self.counter_names, self.n_counters)
        )

        self._lock = threading.RLock()
        self.active_runs: Dict[int, ActiveRun] = {}

    # ---------- lifecycle ----------
    def start_run(self, run_number: int, config_text: str) -> RunResult:
        run_number = int(run_number)
        log.info("Starting run: %d", run_number)
        if run_number <= 0:
            return RunResult(False, run_number, reason="invalid_run_number")

        with self._lock:
            if run_number in self.active_runs:
                log.warning("run_conflict", extra={"run_number": run_number})
                return RunResult(False, run_number, reason="run_conflict")

            parsed = parse_inferred(config_text, self.registry)
            config = parsed.config
            if config.run_number is not None and config.run_number != run_number:
                log.warning("run_number_mismatch",
                            extra={"run_number": run_number, "declared": config.run_number})
                return RunResult(False, run_number, reason="run_number_mismatch")
            config.set_run_number(run_number)

            self.active_runs[run_number] = ActiveRun(
                run_number=run_number,
                config=config,
                scalers=RunScalers(run_number),
                start_ms=self._clock(),
                seen=True,
                issues=list(parsed.issues),
            )
            log.info("Run: %d started. %s", run_number, self.describe_active_runs())
            return RunResult(True, run_number)

    def stop_run(self, run_number: int) -> RunResult:
        run_number = int(run_number)
        with self._lock:
            arun = self.active_runs.get(run_number)
            if arun is None:
                log.info("stopRun: Run not found: %d", run_number)
                return RunResult(False, run_number, reason="run_not_found")

            arun.end_ms = self._clock()
            try:
                stored = self._persist(arun)
            finally:
                # retire regardless of what the store did
                del self.active_runs[run_number]
            log.info("Run: %d stopped.", run_number, extra={"stored": stored})
            return RunResult(True, run_number, stored=stored)

    def _persist(self, arun: ActiveRun) -> bool:
        metadata = {"runNumber": str(arun.run_number)}
        ok = True
        for path, payload in (
            (CONFIG_PATH, config_payload(arun.config)),
            (SCALERS_PATH, scalers_payload(arun.scalers, list(self.counter_names))),
        ):
            try:
                if not self.store.store(payload, path, arun.start_ms, arun.end_ms, metadata):
                    log.warning("store_rejected", extra={"run_number": arun.run_number, "path": path})
                    ok = False
            except Exception:
                log.exception("store_failed", extra={"run_number": arun.run_number, "path": path})
                ok = False
        return ok

    # ---------- counters ----------
    def observe_counters(self, snapshot_text: str) -> ObserveResult:
        try:
            record = parse_snapshot(snapshot_text, self.n_counters)
        except SnapshotError as e:
            log.error("Scalers rejected: %s", e)
            return ObserveResult(False, reason=e.reason, detail=e.detail)

        log.info("Processing scalers, time: %s", record.timestamp)
        with self._lock:
            updated: List[int] = []
            for slot in range(self.n_runs):
                run = record.counters[slot]
                if run == 0 or run in updated:
                    continue
                arun = self.active_runs.get(run)
                if arun is None:
                    log.debug("slot %d carries untracked run %d", slot, run)
                    continue
                self._update_counters(arun, record)
                updated.append(run)

            stopped: List[int] = []
            for run_number, arun in list(self.active_runs.items()):
                if not arun.seen:
                    log.info("stopping run: %d", run_number)
                    self.stop_run(run_number)
                    stopped.append(run_number)
                else:
                    arun.seen = False
            return ObserveResult(True, timestamp=record.timestamp, updated=updated, stopped=stopped)

    def _update_counters(self, arun: ActiveRun, record: ScalerRecord) -> None:
        arun.scalers.add(record)
        arun.seen = True
        log.debug("Updating counters for run: %d records: %d", arun.run_number, len(arun.scalers.records))

    # ---------- queries ----------
    def is_live(self, run_number: int) -> bool:
        with self._lock:
            return int(run_number) in self.active_runs

    def get_run(self, run_number: int) -> Optional[ActiveRun]:
        with self._lock:
            return self.active_runs.get(int(run_number))

    def active_run_numbers(self) -> List[int]:
        with self._lock:
            return sorted(self.active_runs)

    def counter_position(self, name: str) -> Optional[int]:
        return self.counter_positions.get(name)

    def latest_counter(self, run_number: int, name: str) -> Optional[int]:
        """Most recent value of a named counter for a live run."""
        pos = self.counter_positions.get(name)
        arun = self.get_run(run_number)
        if pos is None or arun is None or arun.scalers.latest is None:
            return None
        return arun.scalers.latest.counters[pos]

    def describe_active_runs(self) -> str:
        with self._lock:
            return "Active runs: " + " ".join(str(r) for r in sorted(self.active_runs))

    def close(self) -> None:
        """Release the store (the HTTP store holds a client); live runs are not stored."""
        close = getattr(self.store, "close", None)
        if close is not None:
            close()


# ----------------------------- factory -----------------------------
def make_manager(cfg: Optional[dict] = None, registry: Optional[DetectorRegistry] = None,
                 store: Optional[ObjectStore] = None) -> RunManager:
    """Build a RunManager from the YAML config (defaults: config/config.yaml)."""
    counters = get_counter_cfg(cfg)
    if store is None:
        store = make_store(get_store_cfg(cfg), db_path=get_db_path(cfg))
    return RunManager(
        registry or StaticDetectorRegistry(get_detector_names(cfg)),
        store,
        n_counters=counters["n_counters"],
        n_runs=counters["n_runs"],
        counter_names=counters["names"],
    )
