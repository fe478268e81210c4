"""Tests for the run lifecycle tracker."""

from __future__ import annotations

import threading

import pytest

from ctp.run_manager import RunManager, make_manager
from ctp.store import CONFIG_PATH, SCALERS_PATH

from conftest import ExplodingStore, RecordingStore, RejectingStore

RUN42_CONFIG = "LTG ITS\nits_mode\n0 cl_ph 1\n"


def test_run_42_end_to_end(manager, store, make_snapshot):
    res = manager.start_run(42, RUN42_CONFIG)
    assert res.ok
    arun = manager.get_run(42)
    assert arun.config.run_number == 42
    assert [(d.name, d.det_id, d.mode) for d in arun.config.detectors] == [("ITS", 0, "its_mode")]

    obs = manager.observe_counters(make_snapshot(1.0, [42]))
    assert obs.ok and obs.updated == [42] and obs.stopped == []
    assert len(manager.get_run(42).scalers.records) == 1

    obs = manager.observe_counters(make_snapshot(2.0, [42]))
    assert obs.updated == [42]
    assert manager.is_live(42)

    # 42 disappears from the feed: it is finished at the end of that cycle
    obs = manager.observe_counters(make_snapshot(3.0, []))
    assert obs.ok and obs.updated == [] and obs.stopped == [42]
    assert not manager.is_live(42)

    assert store.paths() == [CONFIG_PATH, SCALERS_PATH]
    cfg_call, scalers_call = store.calls
    assert cfg_call["metadata"] == {"runNumber": "42"}
    assert cfg_call["valid_from"] == 1000 and cfg_call["valid_until"] == 2000
    assert cfg_call["payload"]["run_number"] == 42
    assert [r["timestamp"] for r in scalers_call["payload"]["records"]] == [1.0, 2.0]


def test_new_run_survives_first_cycle_without_counters(manager, make_snapshot):
    manager.start_run(7, "")
    obs = manager.observe_counters(make_snapshot(1.0, []))
    assert obs.stopped == []
    obs = manager.observe_counters(make_snapshot(2.0, []))
    assert obs.stopped == [7]


def test_stop_happens_exactly_once(manager, make_snapshot, monkeypatch):
    calls = []
    real_stop = manager.stop_run

    def counting_stop(run_number):
        calls.append(run_number)
        return real_stop(run_number)

    monkeypatch.setattr(manager, "stop_run", counting_stop)
    manager.start_run(42, RUN42_CONFIG)
    manager.start_run(43, "")
    for ts in range(1, 6):
        manager.observe_counters(make_snapshot(float(ts), [43]))
    assert calls == [42]
    assert manager.active_run_numbers() == [43]


def test_malformed_snapshot_changes_nothing(manager, store, make_snapshot):
    manager.start_run(42, RUN42_CONFIG)
    manager.observe_counters(make_snapshot(1.0, [42]))
    before = list(manager.get_run(42).scalers.records)

    obs = manager.observe_counters("1.0 42 0 0")
    assert not obs.ok and obs.reason == "bad_token_count"
    obs = manager.observe_counters(make_snapshot(2.0, [42]).replace("7", "x"))
    assert not obs.ok and obs.reason == "bad_token"

    # seen flags untouched: the run is still tracked and nothing was stored
    assert manager.get_run(42).scalers.records == before
    assert manager.active_run_numbers() == [42]
    assert store.calls == []


def test_untracked_and_repeated_slots(manager, make_snapshot):
    manager.start_run(42, "")
    obs = manager.observe_counters(make_snapshot(1.0, [99, 42, 42]))
    assert obs.updated == [42]
    assert len(manager.get_run(42).scalers.records) == 1


def test_duplicate_start_is_rejected(manager):
    assert manager.start_run(42, RUN42_CONFIG).ok
    res = manager.start_run(42, "LTG TPC\n")
    assert not res.ok and res.reason == "run_conflict"
    assert [d.name for d in manager.get_run(42).config.detectors] == ["ITS"]


def test_declared_run_number_must_match(manager):
    res = manager.start_run(42, "run 43\n")
    assert not res.ok and res.reason == "run_number_mismatch"
    assert not manager.is_live(42)
    assert manager.start_run(42, "run 42\n").ok


def test_run_zero_is_invalid(manager):
    res = manager.start_run(0, "")
    assert not res.ok and res.reason == "invalid_run_number"
    assert manager.active_run_numbers() == []


def test_stop_unknown_run(manager):
    res = manager.stop_run(5)
    assert not res.ok and res.reason == "run_not_found"


def test_explicit_stop(manager, store):
    manager.start_run(42, RUN42_CONFIG)
    res = manager.stop_run(42)
    assert res.ok and res.stored is True
    assert not manager.is_live(42)
    assert manager.stop_run(42).reason == "run_not_found"


@pytest.mark.parametrize("failing_store", [RejectingStore(), ExplodingStore()])
def test_store_failure_still_retires_run(registry, clock, failing_store, make_snapshot):
    mgr = RunManager(registry, failing_store, n_counters=8, n_runs=3, clock=clock)
    mgr.start_run(42, RUN42_CONFIG)
    res = mgr.stop_run(42)
    assert res.ok and res.stored is False
    assert not mgr.is_live(42)


def test_counter_names_and_latest_value(registry, store, make_snapshot):
    names = ["r0", "r1", "r2", "orbit", "l0a", "l0b", "l1a", "l1b"]
    mgr = RunManager(registry, store, n_counters=8, n_runs=3, counter_names=names)
    assert mgr.counter_position("l0a") == 4
    assert mgr.counter_position("nope") is None
    with pytest.raises(TypeError):
        mgr.counter_positions["x"] = 1

    mgr.start_run(42, "")
    assert mgr.latest_counter(42, "l0a") is None
    mgr.observe_counters("5.0 42 0 0 100 200 300 400 500")
    assert mgr.latest_counter(42, "l0a") == 200
    assert mgr.latest_counter(42, "r0") == 42


def test_geometry_validation(registry, store):
    with pytest.raises(ValueError):
        RunManager(registry, store, n_counters=2, n_runs=3)
    with pytest.raises(ValueError):
        RunManager(registry, store, n_counters=0, n_runs=0)
    with pytest.raises(RuntimeError):
        RunManager(registry, store, n_counters=4, n_runs=2, counter_names=["a", "b"])


def test_concurrent_starts_are_serialized(manager):
    results = []

    def start():
        results.append(manager.start_run(42, RUN42_CONFIG).ok)

    threads = [threading.Thread(target=start) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(results) == [False] * 7 + [True]


def test_describe_active_runs(manager):
    manager.start_run(9, "")
    manager.start_run(3, "")
    assert manager.describe_active_runs() == "Active runs: 3 9"


def test_make_manager_from_config(store):
    cfg = {"ctp": {"counters": {"n_counters": 10, "n_runs": 2}, "detectors": ["its", "tpc"]}}
    mgr = make_manager(cfg, store=store)
    assert mgr.n_counters == 10 and mgr.n_runs == 2
    assert mgr.registry.resolve("TPC") == (1, 0x2)
    assert mgr.counter_names[:3] == ("runn0", "runn1", "cnt2")


def test_close_releases_store(registry):
    class ClosableStore(RecordingStore):
        closed = False

        def close(self) -> None:
            self.closed = True

    st = ClosableStore()
    mgr = RunManager(registry, st, n_counters=8, n_runs=3)
    mgr.close()
    assert st.closed


def test_close_without_store_close(manager):
    manager.close()
