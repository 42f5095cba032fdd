import math

import pytest

from models import INVALID_SLOT, VALID_PROB_CAP, AddressMap, Block, BlockState, Line


def _open_block(capacity=4):
    blk = Block(0, capacity)
    blk.state = BlockState.OPEN
    blk.line = 0
    return blk


def test_block_add_and_invalidate():
    """
    append 후 무효화하면 avail/valid_count 와 합계가 맞게 움직이는지.
    """
    blk = _open_block()
    off0 = blk.add(7, ts=10, prior_ts=2, update_freq=0.25, newest_ts=10)
    off1 = blk.add(8, ts=20, prior_ts=4, update_freq=0.5, newest_ts=20)
    assert (off0, off1) == (0, 1), "append-only offsets"
    assert blk.agg_ts() == 15.0, "mean write ts"
    assert blk.prior_ts() == 3.0, "mean prior ts"
    assert blk.newest_ts == 20, "newest ts"

    lpid = blk.invalidate(30, off0, 0.25)
    assert lpid == 7, "invalidate returns the slot's lpid"
    assert blk.lpids[off0] == INVALID_SLOT, "slot marked invalid"
    assert blk.avail == 1 and blk.valid_count == 1, "avail increments by one"
    assert blk.update_freq() == pytest.approx(0.5), "freq sum covers only live pages"


def test_block_invalidate_twice_is_assertion():
    """이미 무효인 슬롯을 다시 무효화하면 assert."""
    blk = _open_block()
    blk.add(1, 0, 0, 0.1, 0)
    blk.invalidate(1, 0, 0.1)
    with pytest.raises(AssertionError):
        blk.invalidate(2, 0, 0.1)


def test_block_full_and_reset():
    blk = _open_block(capacity=2)
    blk.add(1, 0, 0, 0.1, 0)
    blk.add(2, 1, 0, 0.1, 1)
    assert blk.is_full, "capacity reached"
    with pytest.raises(AssertionError):
        blk.add(3, 2, 0, 0.1, 2)

    blk.reset()
    assert blk.state is BlockState.FREE and blk.line == -1, "reset returns to FREE"
    assert blk.count == 0 and blk.avail == 0, "counters cleared"
    assert blk.agg_ts() == 0.0 and blk.update_freq() == 0.0, "empty means are zero"
    assert list(blk.valid_slots()) == [], "no valid slots after reset"


def test_line_alpha_and_valid_prob():
    """유효 페이지가 없으면 alpha=inf, valid_prob=0 (sentinel)."""
    line = Line(0, pages_per_block=10)
    assert math.isinf(line.alpha), "alpha sentinel"
    assert line.valid_prob == 0.0, "valid_prob sentinel"

    for idx in range(9):
        line.push(idx)
    line.open_block = 9
    assert line.capacity == 100

    line.valid_pages = 50
    line.written_pages = 92
    assert line.alpha == pytest.approx(1.0), "free slots of the open block count as capacity"
    assert line.valid_prob == pytest.approx(math.exp(-0.9))
    assert line.size_ratio(200) == pytest.approx(0.25)
    assert line.beta(200) == pytest.approx(0.25)

    line.valid_pages = 100
    assert line.valid_prob == VALID_PROB_CAP, "valid_prob is capped below 1"


def test_line_sealed_queue_is_fifo():
    line = Line(1)
    for idx in (5, 3, 9):
        line.push(idx)
    line.open_block = 11
    assert line.num_blocks == 4, "sealed + open"
    line.discard(3)
    assert line.pop_oldest() == 5, "oldest sealed first"
    assert line.pop_oldest() == 9
    assert line.pop_oldest() is None, "empty queue"


def test_address_map_roundtrip_and_count():
    amap = AddressMap(max_lpid=10, pages_per_block=4)
    assert amap.lookup(3) is None, "unmapped"
    amap.update(3, 2, 1)
    amap.update(3, 5, 0)
    amap.update(4, 0, 3)
    assert amap.lookup(3) == (5, 0), "latest location wins"
    assert amap.mapped_count == 2, "remap does not double count"
    assert sorted(amap.items()) == [(3, 5, 0), (4, 0, 3)]

    amap.clear(3)
    amap.clear(3)
    assert not amap.is_mapped(3) and len(amap) == 1, "clear is idempotent"


def test_address_map_rejects_out_of_range():
    amap = AddressMap(max_lpid=10, pages_per_block=4)
    with pytest.raises(ValueError):
        amap.update(0, 0, 0)
    with pytest.raises(ValueError):
        amap.lookup(11)
