"""Tests for counter names and snapshot parsing."""

from __future__ import annotations

import pytest

from ctp.scalers import (
    RunScalers, ScalerRecord, SnapshotError,
    build_counter_positions, default_counter_names, parse_snapshot,
)


def test_default_counter_names():
    names = default_counter_names(6, 2)
    assert names == ["runn0", "runn1", "cnt2", "cnt3", "cnt4", "cnt5"]
    with pytest.raises(ValueError):
        default_counter_names(2, 3)


def test_counter_positions_require_matching_length():
    assert build_counter_positions(["a", "b", "c"], 3) == {"a": 0, "b": 1, "c": 2}
    with pytest.raises(RuntimeError):
        build_counter_positions(["a", "b"], 3)
    with pytest.raises(RuntimeError):
        build_counter_positions(["a", "a", "b"], 3)


def test_parse_snapshot():
    rec = parse_snapshot("1700000000.5 42 0 0x10 9", 4)
    assert rec == ScalerRecord(1700000000.5, (42, 0, 16, 9))


@pytest.mark.parametrize(
    ("text", "reason"),
    [
        ("1.0 1 2 3", "bad_token_count"),
        ("1.0 1 2 3 4 5", "bad_token_count"),
        ("", "bad_token_count"),
        ("now 1 2 3 4", "bad_token"),
        ("1.0 1 2 -3 4", "bad_token"),
        ("1.0 1 2 three 4", "bad_token"),
        ("nan 1 2 3 4", "bad_token"),
        ("inf 1 2 3 4", "bad_token"),
        ("-inf 1 2 3 4", "bad_token"),
    ],
)
def test_bad_snapshots(text: str, reason: str):
    with pytest.raises(SnapshotError) as exc:
        parse_snapshot(text, 4)
    assert exc.value.reason == reason


def test_run_scalers_history():
    rs = RunScalers(42)
    assert rs.latest is None
    rs.add(ScalerRecord(1.0, (42, 5)))
    rs.add(ScalerRecord(2.0, (42, 9)))
    assert rs.latest.counters == (42, 9)
    d = rs.to_dict(["runn0", "cnt1"])
    assert d["run_number"] == 42
    assert d["names"] == ["runn0", "cnt1"]
    assert [r["timestamp"] for r in d["records"]] == [1.0, 2.0]
