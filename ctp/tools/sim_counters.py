#!/usr/bin/env python3
"""
CTP counter feed simulator.

- Starts the given runs on a RunManager (config text from --config or a
  small built-in demo).
- Emits one snapshot per cycle: active run numbers in the first n_runs
  slots, random monotonically increasing counters after them.
- --drop RUN:CYCLE removes RUN from the feed from CYCLE on, which makes the
  manager retire it at the end of that cycle.

    python -m ctp.tools.sim_counters --runs 42 43 --cycles 5 --drop 43:2 --db /tmp/ctp.sqlite
"""

from __future__ import annotations

import argparse
import logging
import random
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ctp.config_loader import get_counter_cfg, get_log_level
from ctp.detectors import default_registry
from ctp.run_manager import RunManager
from ctp.store import SqliteObjectStore

DEMO_CONFIG = """\
LTG its
its_mode
0x1 cl cluster_ph ITS TPC
0 cl_ph 1
"""


def make_snapshot(ts: float, runs: Sequence[int], counters: List[int], n_runs: int) -> str:
    """Render one feed line; `counters` holds the non-run counters."""
    slots = list(runs)[:n_runs] + [0] * max(0, n_runs - len(runs))
    return " ".join([f"{ts:.3f}"] + [str(r) for r in slots] + [str(c) for c in counters])


def _parse_drops(items: Sequence[str]) -> Dict[int, int]:
    drops: Dict[int, int] = {}
    for item in items:
        run, _, cycle = item.partition(":")
        try:
            drops[int(run)] = int(cycle)
        except ValueError:
            raise SystemExit(f"bad --drop value {item!r}, expected RUN:CYCLE") from None
    return drops


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    counters = get_counter_cfg()
    p = argparse.ArgumentParser(description="CTP counter feed simulator")
    p.add_argument("--runs", type=int, nargs="+", default=[42])
    p.add_argument("--cycles", type=int, default=5)
    p.add_argument("--drop", nargs="*", default=[], help="RUN:CYCLE, run disappears from the feed at CYCLE")
    p.add_argument("--config", type=Path, default=None, help="inferred-section config text for every run")
    p.add_argument("--db", type=Path, default=Path("./ctp_sim.sqlite"))
    p.add_argument("--n-counters", type=int, default=counters["n_counters"])
    p.add_argument("--n-runs", type=int, default=counters["n_runs"])
    p.add_argument("--period", type=float, default=0.0, help="seconds to sleep between cycles")
    p.add_argument("--seed", type=int, default=42)
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, get_log_level("INFO"), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    rng = random.Random(args.seed)
    config_text = args.config.read_text(encoding="utf-8") if args.config else DEMO_CONFIG

    store = SqliteObjectStore(args.db)
    mgr = RunManager(default_registry(), store, n_counters=args.n_counters, n_runs=args.n_runs)
    for run in args.runs:
        res = mgr.start_run(run, config_text)
        if not res.ok:
            print(f"run {run} not started: {res.reason}", file=sys.stderr)

    drops = _parse_drops(args.drop)
    counters = [0] * (args.n_counters - args.n_runs)
    ts = time.time()
    for cycle in range(args.cycles):
        live_in_feed = [r for r in args.runs if drops.get(r, args.cycles) > cycle]
        counters = [c + rng.randint(0, 1000) for c in counters]
        result = mgr.observe_counters(make_snapshot(ts + cycle, live_in_feed, counters, args.n_runs))
        print(f"cycle {cycle}: updated={result.updated} stopped={result.stopped} {mgr.describe_active_runs()}")
        if args.period > 0:
            time.sleep(args.period)

    for run in store.list_runs():
        print(f"stored run {run['run_number']}: {run['n_records']} records "
              f"[{run['start_ms']}, {run['end_ms']}]")
    mgr.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
