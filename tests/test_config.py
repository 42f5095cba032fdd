import pytest

from config import POLICY_PRESETS, SimConfig


def test_prepare_resolves_preset_and_keeps_overrides():
    cfg = SimConfig(policy="min_decline", sorter="closed_ts")
    cfg.prepare()
    assert cfg.score_computer == "min_decline"
    assert cfg.write_buffer == "sort"
    assert cfg.sorter == "closed_ts", "explicit field beats the preset"
    assert cfg.multi_log is False
    assert cfg._validated


def test_derived_values():
    cfg = SimConfig(num_blocks=100, pages_per_block=10, fill_factor=0.5,
                    gc_free_block_threshold=0.05, batch_blocks=4, ops=None, scale_factor=3)
    assert cfg.total_pages == 1000
    assert cfg.user_total_pages == 500
    assert cfg.free_block_threshold_abs == 5
    assert cfg.sort_buffer_pages == 40, "buffer defaults to batch_blocks blocks"
    assert cfg.total_ops == 3000
    assert SimConfig(ops=7).total_ops == 7


def test_line_bound_follows_selector():
    assert SimConfig(policy="greedy").line_bound == 1
    assert SimConfig(block_selector="hotcold").line_bound == 2
    assert SimConfig(policy="multi_log", max_lines=5).line_bound == 5


def test_every_preset_validates_with_defaults():
    for name in POLICY_PRESETS:
        cfg = SimConfig(policy=name, gc_free_block_threshold=0.05, max_lines=8)
        cfg.prepare()


@pytest.mark.parametrize("kw", [
    dict(fill_factor=1.0),
    dict(fill_factor=0.0),
    dict(batch_blocks=0),
    dict(hot_skew=100),
    dict(workload="pareto"),
    dict(num_blocks=0),
    dict(policy="multi_log", gc_free_block_threshold=0.01),
    dict(fill_factor=0.95),
])
def test_validate_rejects(kw):
    """잘못된 설정은 시뮬레이션 전에 ValueError."""
    with pytest.raises(ValueError):
        SimConfig(**kw).prepare()


def test_unknown_preset():
    with pytest.raises(ValueError):
        SimConfig(policy="fifo").prepare()


def test_to_dict_drops_internal_flag():
    cfg = SimConfig()
    cfg.prepare()
    d = cfg.to_dict()
    assert "_validated" not in d
    assert d["policy"] == "greedy" and d["score_computer"] == "max_avail"
