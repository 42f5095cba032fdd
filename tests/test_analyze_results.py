import math
import sys

import pandas as pd
import pytest

import analyze_results
from analyze_results import (
    _find_summary_csvs,
    _read_csvs,
    apply_filters,
    plot_e_by_policy,
    plot_write_cost_by_policy,
    plot_write_cost_vs_fill,
    summarize_by_policy,
)


def _df():
    return pd.DataFrame({
        "policy": ["greedy", "greedy", "greedy", "lru", "lru"],
        "fill_factor": [0.5, 0.5, 0.8, 0.5, 0.8],
        "workload": ["uniform"] * 5,
        "write_cost": [2.0, 3.0, 4.0, float("inf"), 5.0],
        "E": [1.0, 0.66, 0.5, 0.0, 0.4],
    })


def test_summarize_by_policy_drops_inf():
    s = summarize_by_policy(_df()).set_index("policy")
    assert s.loc["greedy", "runs"] == 3
    assert s.loc["greedy", "write_cost_med"] == pytest.approx(3.0)
    assert s.loc["greedy", "write_cost_p25"] == pytest.approx(2.5)
    assert s.loc["greedy", "write_cost_p75"] == pytest.approx(3.5)
    assert s.loc["lru", "runs"] == 2, "inf run still counted"
    assert s.loc["lru", "write_cost_med"] == pytest.approx(5.0)
    assert "gc_cost_med" not in s.columns


def test_summarize_by_multiple_keys_and_missing_key():
    s = summarize_by_policy(_df(), by=("policy", "fill_factor"))
    assert len(s) == 4
    with pytest.raises(ValueError):
        summarize_by_policy(_df(), by=("seed",))


def test_apply_filters():
    df = _df()
    assert len(apply_filters(df, policy="lru")) == 2
    assert len(apply_filters(df, fill_factor=0.8)) == 2
    assert len(apply_filters(df, max_write_cost=3.0)) == 2
    assert len(apply_filters(df, workload="zipf")) == 0
    assert len(df) == 5, "original untouched"


def test_read_csvs_merges_columns(tmp_path):
    (tmp_path / "a").mkdir()
    (tmp_path / "b").mkdir()
    pa = tmp_path / "a" / "summary.csv"
    pb = tmp_path / "b" / "summary.csv"
    pa.write_text("policy,write_cost\ngreedy,3.0\n", encoding="utf-8")
    pb.write_text("policy,write_cost,ml_lines\nmulti_log,2.5,4\n", encoding="utf-8")

    paths = _find_summary_csvs(str(tmp_path), merge_subdirs=True)
    assert len(paths) == 2
    assert _find_summary_csvs(str(tmp_path), merge_subdirs=False) == []

    df = _read_csvs(paths)
    assert set(df.columns) == {"policy", "write_cost", "ml_lines", "__source__"}
    assert math.isnan(df.loc[df["policy"] == "greedy", "ml_lines"].iloc[0])


def test_read_csvs_all_missing(tmp_path):
    with pytest.raises(RuntimeError):
        _read_csvs([str(tmp_path / "nope.csv")])


def test_plots_written(tmp_path):
    df = _df()
    assert plot_write_cost_by_policy(df, str(tmp_path / "p" / "wc.png"))
    assert plot_e_by_policy(df, str(tmp_path / "p" / "e.png"))
    assert plot_write_cost_vs_fill(df, str(tmp_path / "p" / "fill.png"))
    assert (tmp_path / "p" / "wc.png").exists()
    assert (tmp_path / "p" / "fill.png").exists()
    assert not plot_write_cost_by_policy(df.drop(columns=["write_cost"]), str(tmp_path / "skip.png"))


def test_main_writes_summary(tmp_path, monkeypatch):
    _df().to_csv(tmp_path / "summary.csv", index=False)
    out = tmp_path / "out" / "policy_summary.csv"
    monkeypatch.setattr(sys, "argv", ["analyze_results.py", "--base", str(tmp_path),
                                      "--summary_csv", str(out), "--plots_dir", str(tmp_path / "plots")])
    analyze_results.main()
    s = pd.read_csv(out)
    assert list(s["policy"]) == ["greedy", "lru"]
    assert (tmp_path / "plots" / "write_cost_by_policy.png").exists()
