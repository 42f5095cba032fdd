from types import SimpleNamespace

import pytest

from block_selectors import (
    HotColdBlockSelector,
    MultiLogBlockSelector,
    NoBlockSelector,
    OptBlockSelector,
    make_block_selector,
)
from models import Block, Line
from workload import HotColdGenerator, UniformGenerator, ZipfGenerator


class _FakeSim:
    """셀렉터가 읽는 부분(generator / max_lpid / lines / add_line)만 가진 가짜 시뮬레이터."""

    def __init__(self, gen, max_lpid):
        self.generator = gen
        self.max_lpid = max_lpid
        self.lines = []

    def add_line(self):
        self.lines.append(Line(len(self.lines)))
        return len(self.lines) - 1


def _block_on(line, freq_sum=0.0, valid=1):
    blk = Block(0, 4)
    blk.line = line
    blk.count = valid
    blk.update_freq_sum = freq_sum
    return blk


def test_none_selector_single_line():
    sel = NoBlockSelector()
    assert sel.init(None) == 1
    assert sel.select_user(5, None) == 0
    assert sel.select_gc([1, 2], _block_on(0)) == 0
    with pytest.raises(AssertionError):
        sel.select_gc([], _block_on(0))


def test_hotcold_routes_by_probability():
    gen = HotColdGenerator(1000, hot_skew=20)
    sim = _FakeSim(gen, 1000)
    sel = HotColdBlockSelector()
    assert sel.init(sim) == 2
    assert sel.select_user(1, None) == sel.HOT, "hot id goes to line 0"
    assert sel.select_user(999, None) == sel.COLD
    assert sel.select_gc([999], _block_on(0, freq_sum=gen.cold_prob)) == sel.COLD, \
        "GC uses the source block's mean update frequency"
    assert sel.update_freq(sel.HOT) == gen.get_max_prob()


def test_opt_ladder_orders_lines_by_probability():
    """
    Zipf(shuffle 없음)에서는 lpid가 작을수록 hot → 라인 번호는 lpid에 대해 단조 증가.
    """
    gen = ZipfGenerator(1000, exp=1.0)
    sim = _FakeSim(gen, 1000)
    sel = OptBlockSelector(max_lines=6)
    n = sel.init(sim)
    assert 1 < n <= 6, "ladder capped by max_lines"
    lines = [sel.select_user(lpid, None) for lpid in range(1, 1001)]
    assert lines[0] == 0, "hottest id on line 0"
    assert lines[-1] == n - 1, "coldest id on the last line"
    assert all(a <= b for a, b in zip(lines, lines[1:])), "monotone in probability"
    assert sel.select_gc([1, 2], _block_on(3)) == lines[0], "GC keeps the oracle line"


def test_opt_uniform_collapses_to_one_line():
    sel = OptBlockSelector()
    assert sel.init(_FakeSim(UniformGenerator(100), 100)) == 1


def test_opt_rejects_inverted_bounds():
    gen = SimpleNamespace(get_min_prob=lambda: 0.5, get_max_prob=lambda: 0.1, get_prob=lambda i: 0.1)
    with pytest.raises(ValueError):
        OptBlockSelector().init(_FakeSim(gen, 10))


def test_multilog_new_write_goes_to_line_zero():
    sim = _FakeSim(UniformGenerator(100), 100)
    sel = MultiLogBlockSelector(max_lines=4, rng_seed=1)
    for _ in range(sel.init(sim)):
        sim.add_line()
    assert sel.select_user(10, None) == 0
    assert sel.counters()["ml_user_total"] == 1


def test_multilog_gc_demotes_and_grows_ladder_up_to_cap():
    """
    유효 페이지가 없는 라인의 valid_prob = 0 → 강등 확률 1.
    """
    sim = _FakeSim(UniformGenerator(100), 100)
    sel = MultiLogBlockSelector(max_lines=2, rng_seed=1)
    for _ in range(sel.init(sim)):
        sim.add_line()

    assert sel.select_gc([1, 2], _block_on(0)) == 1, "demote one line colder"
    assert len(sim.lines) == 2 and sel.intervals == [1, 2], "new line with doubled interval"
    assert sel.update_freq(1) == pytest.approx(0.5)

    assert sel.select_gc([3], _block_on(1)) == 1, "last line at the cap does not demote"
    assert len(sim.lines) == 2
    c = sel.counters()
    assert c["ml_gc_total"] == 3 and c["ml_gc_demoted"] == 2


def test_multilog_user_write_promotes_when_rewritten_early():
    sim = _FakeSim(UniformGenerator(100), 100)
    sel = MultiLogBlockSelector(max_lines=4, rng_seed=3)
    for _ in range(sel.init(sim)):
        sim.add_line()
    sel.select_gc([42], _block_on(0))
    assert len(sim.lines) == 2

    line1 = sim.lines[1]
    line1.pages_per_block = 100
    line1.push(7)
    line1.open_block = 8
    line1.valid_pages = 100
    # elapsed 0 < expected → 승격 확률 1
    assert sel.select_user(42, _block_on(1)) == 0, "rewritten early, promoted one line hotter"
    c = sel.counters()
    assert c["ml_user_intended"] == 1 and c["ml_user_promoted"] == 1


def test_factory():
    assert isinstance(make_block_selector("hot_cold"), HotColdBlockSelector)
    assert isinstance(make_block_selector("multilog", max_lines=3), MultiLogBlockSelector)
    with pytest.raises(ValueError):
        make_block_selector("lru")
