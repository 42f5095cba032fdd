import io

import pytest

from config import SimConfig
from simulator import make_simulator
from trace_io import (
    DELETE,
    WRITE,
    FileMapper,
    TraceRecord,
    encode_trace,
    iter_trace,
    read_trace,
    read_vint,
    replay_trace,
    train_generator,
    write_trace,
    write_vint,
)


def test_vint_known_encodings():
    """7 bit 그룹 little-endian, 상위 bit = continuation."""
    out = bytearray()
    for v in (0, 127, 128, 300, 2 ** 32 - 1):
        write_vint(out, v)
    assert bytes(out) == b"\x00\x7f\x80\x01\xac\x02\xff\xff\xff\xff\x0f"

    pos, values = 0, []
    while pos < len(out):
        v, pos = read_vint(bytes(out), pos)
        values.append(v)
    assert values == [0, 127, 128, 300, 2 ** 32 - 1]


def test_vint_errors():
    with pytest.raises(ValueError):
        read_vint(b"\x80", 0)
    with pytest.raises(ValueError):
        read_vint(b"\xff\xff\xff\xff\x1f", 0)
    with pytest.raises(ValueError):
        write_vint(bytearray(), -1)


def test_trace_file_roundtrip(tmp_path):
    records = [TraceRecord(WRITE, 1, 0), TraceRecord(WRITE, 1, 200), TraceRecord(DELETE, 1)]
    path = str(tmp_path / "run.trace")
    n = write_trace(path, records)
    assert n == len(encode_trace(records))
    assert read_trace(path) == records


def test_unknown_op_is_rejected():
    with pytest.raises(ValueError):
        list(iter_trace(io.BytesIO(b"\x07\x01")))
    with pytest.raises(ValueError):
        encode_trace([(9, 1, 1)])


def test_file_mapper_reuses_and_recycles_lpids():
    m = FileMapper(3)
    a = m.write(10, 0)
    assert m.write(10, 0) == a, "same page keeps its lpid"
    b = m.write(10, 1)
    c = m.write(11, 0)
    assert (a, b, c) == (1, 2, 3)
    assert m.used_lpids == 3 and m.num_files == 2
    with pytest.raises(RuntimeError):
        m.write(12, 0)

    assert m.delete(10) == 2
    assert m.write(12, 0) == 1, "recycled lpids come back in FIFO order"
    with pytest.raises(KeyError):
        m.delete(99)


def test_train_generator_uses_replay_mapping():
    records = [(WRITE, 5, 0), (WRITE, 5, 0), (WRITE, 5, 1), (DELETE, 5), (WRITE, 6, 0)]
    gen = train_generator(records, 4)
    assert gen.get_prob(1) == pytest.approx(0.5)
    assert gen.get_prob(2) == pytest.approx(0.25)
    assert gen.get_prob(3) == pytest.approx(0.25), "file 6 gets the next free lpid"


def _workload_records():
    recs = []
    for f in range(20):
        recs += [(WRITE, f, p) for p in range(50)]
    recs += [(DELETE, f) for f in range(10)]
    for _ in range(2):
        for f in range(10, 20):
            recs += [(WRITE, f, p) for p in range(50)]
    return recs


def _trace_sim(records):
    cfg = SimConfig(num_blocks=64, pages_per_block=32, fill_factor=0.5, rng_seed=1)
    cfg.prepare()
    gen = train_generator(records, cfg.user_total_pages)
    return make_simulator(cfg, gen, max_lpid=cfg.user_total_pages)


def test_replay_applies_writes_and_deletes():
    records = _workload_records()
    sim = _trace_sim(records)
    mapper = FileMapper(sim.max_lpid)
    n = replay_trace(sim, records, mapper, warmup_lpids=800)
    assert n == len(records)
    assert mapper.used_lpids == 500
    assert sim.address_map.mapped_count == 500, "deleted files are unmapped"
    assert sim.stats.user_writes == 200 + 1000, "window reset when 800 lpids were live"
    assert sim.stats.deleted_pages == 500
    assert sim.check_invariants() == []


def test_replay_stops_at_fill():
    records = _workload_records()
    sim = _trace_sim(records)
    mapper = FileMapper(sim.max_lpid)
    assert replay_trace(sim, records, mapper, stop_lpids=100) == 100
    assert sim.address_map.mapped_count == 100
