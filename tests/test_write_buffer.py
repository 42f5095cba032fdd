from types import SimpleNamespace

import pytest

from write_buffer import NoWriteBuffer, SortWriteBuffer, make_write_buffer


class _Recorder:
    """commit_write 호출만 기록하는 가짜 시뮬레이터."""

    def __init__(self):
        self.commits = []

    def commit_write(self, lpid, ts=None):
        self.commits.append((lpid, ts))


def _prev(prior):
    return SimpleNamespace(prior_ts=lambda: prior)


def test_pass_through_commits_immediately():
    sim = _Recorder()
    buf = NoWriteBuffer()
    buf.write(sim, 3, 10, None)
    assert sim.commits == [(3, 10)]
    assert len(buf) == 0


def test_sort_buffer_orders_and_alternates_direction():
    """
    capacity 4, 서로 다른 미매핑 lpid 4개 → 첫 flush는 (key, lpid) 오름차순,
    다음 4개는 역순으로 순회.
    """
    sim = _Recorder()
    buf = SortWriteBuffer(4)
    for ts, lpid in enumerate((9, 3, 7, 1)):
        buf.write(sim, lpid, ts, None)
    assert [l for l, _ in sim.commits] == [1, 3, 7, 9], "ascending on the first flush"
    assert len(buf) == 0, "auto flush at capacity"

    sim.commits.clear()
    for ts, lpid in enumerate((8, 2, 6, 4), start=4):
        buf.write(sim, lpid, ts, None)
    assert [l for l, _ in sim.commits] == [8, 6, 4, 2], "direction reverses on the next flush"


def test_sort_key_is_previous_block_prior_ts():
    sim = _Recorder()
    buf = SortWriteBuffer(3)
    buf.write(sim, 1, 0, _prev(30.0))
    buf.write(sim, 2, 1, _prev(10.0))
    buf.write(sim, 3, 2, None)
    assert [l for l, _ in sim.commits] == [3, 2, 1], "unmapped key 0 sorts first"
    assert sim.commits[0] == (3, 2), "submission ts travels with the entry"


def test_explicit_flush_and_empty_flush():
    sim = _Recorder()
    buf = SortWriteBuffer(8)
    buf.flush(sim)
    assert sim.commits == [] and buf.reverse is False, "empty flush does not toggle"
    buf.write(sim, 5, 0, None)
    buf.write(sim, 4, 1, None)
    buf.flush(sim)
    assert [l for l, _ in sim.commits] == [4, 5]


def test_dedup_keeps_last_write():
    sim = _Recorder()
    buf = SortWriteBuffer(4, dedup=True)
    buf.write(sim, 1, 0, None)
    buf.write(sim, 2, 1, None)
    buf.write(sim, 1, 2, None)
    buf.write(sim, 3, 3, None)
    assert sim.commits == [(1, 2), (2, 1), (3, 3)], "one commit per lpid, latest ts"
    assert buf.absorbed == 1


def test_reentrant_flush_raises():
    buf = SortWriteBuffer(2)

    class _Reentrant:
        def commit_write(self, lpid, ts=None):
            buf.flush(self)

    sim = _Reentrant()
    buf.write(sim, 1, 0, None)
    with pytest.raises(RuntimeError):
        buf.write(sim, 2, 1, None)
    assert buf._flushing is False, "flag cleared after failure"


def test_factory():
    assert isinstance(make_write_buffer("none"), NoWriteBuffer)
    assert make_write_buffer("sort", capacity=16).capacity == 16
    with pytest.raises(ValueError):
        make_write_buffer("sort", capacity=0)
    with pytest.raises(ValueError):
        make_write_buffer("lru")
