import pytest

from workload import (
    HotColdGenerator,
    TrainedGenerator,
    UniformGenerator,
    ZipfGenerator,
    make_generator,
    make_load_sequence,
)


def test_uniform_range_and_prob():
    gen = UniformGenerator(50, rng_seed=1)
    ids = [gen.generate() for _ in range(2000)]
    assert min(ids) >= 1 and max(ids) <= 50, "ids in [1, max_lpid]"
    assert gen.get_prob(7) == pytest.approx(1 / 50)
    assert gen.get_min_prob() == gen.get_max_prob()


def test_zipf_probabilities_sum_to_one_and_skew():
    """
    Zipf 확률 합은 1, rank 1 이 가장 hot.
    """
    gen = ZipfGenerator(1000, exp=0.99, rng_seed=3)
    total = sum(gen.get_prob(i) for i in range(1, 1001))
    assert total == pytest.approx(1.0), "probabilities sum to one"
    assert gen.get_prob(1) == gen.get_max_prob(), "rank 1 is hottest without shuffle"
    assert gen.get_prob(1000) == gen.get_min_prob()

    ids = [gen.generate() for _ in range(20000)]
    assert min(ids) >= 1 and max(ids) <= 1000
    share = sum(1 for x in ids if x <= 10) / len(ids)
    assert share > 0.2, "top ranks receive a large share"


def test_zipf_is_reproducible_and_shuffle_permutes():
    a = ZipfGenerator(500, exp=1.0, shuffle=True, rng_seed=9)
    b = ZipfGenerator(500, exp=1.0, shuffle=True, rng_seed=9)
    assert [a.generate() for _ in range(100)] == [b.generate() for _ in range(100)], "same seed, same sequence"
    hottest = max(range(1, 501), key=a.get_prob)
    assert a.get_prob(hottest) == pytest.approx(a.get_max_prob())


def test_zipf_exp_zero_falls_back_to_uniform():
    gen = make_generator("zipf", 100, zipf_exp=0.0)
    assert isinstance(gen, UniformGenerator)


def test_hotcold_split():
    """hot_skew=20: id 1..N/5 가 접근의 80%."""
    gen = HotColdGenerator(1000, hot_skew=20, rng_seed=5)
    assert gen.num_hot == 200 and gen.num_cold == 800
    assert gen.get_prob(1) == pytest.approx(0.8 / 200)
    assert gen.get_prob(999) == pytest.approx(0.2 / 800)
    ids = [gen.generate() for _ in range(20000)]
    hot_share = sum(1 for x in ids if gen.is_hot(x)) / len(ids)
    assert 0.75 < hot_share < 0.85, f"hot share ~0.8, got {hot_share}"


def test_hotcold_requires_enough_ids():
    with pytest.raises(ValueError):
        HotColdGenerator(50, hot_skew=20)


def test_trained_generator():
    gen = TrainedGenerator(5)
    for lpid in (1, 1, 1, 2):
        gen.add(lpid)
    with pytest.raises(RuntimeError):
        gen.get_prob(1)
    gen.compute()
    assert gen.get_prob(1) == pytest.approx(0.75)
    assert gen.get_prob(3) == 0.0, "unseen id has zero probability"
    assert gen.get_min_prob() == pytest.approx(0.25)
    assert gen.get_max_prob() == pytest.approx(0.75)
    with pytest.raises(NotImplementedError):
        gen.generate()


def test_make_generator_unknown_name():
    with pytest.raises(ValueError):
        make_generator("pareto", 100)


def test_load_sequence_is_a_seeded_permutation():
    a = make_load_sequence(100, rng_seed=1)
    b = make_load_sequence(100, rng_seed=2)
    assert sorted(a) == list(range(1, 101)), "every lpid exactly once"
    assert a != b, "seed changes only the order"
    assert a == make_load_sequence(100, rng_seed=1)
