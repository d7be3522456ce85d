import pytest

from points_derby.engine.rng import (
    MASK_32,
    SeededRandom,
    hash_seed,
    index_from_hash,
    next_float,
    seed,
)


def _sequence(value, count=20):
    state = seed(value)
    out = []
    for _ in range(count):
        number, state = next_float(state)
        out.append(number)
    return out


def test_same_seed_reproduces_sequence():
    assert _sequence("race-42") == _sequence("race-42")
    assert _sequence(1234) == _sequence(1234)


def test_different_seeds_diverge():
    assert _sequence("race-42") != _sequence("race-43")


def test_next_float_is_pure_and_in_unit_interval():
    state = seed("purity")
    first = next_float(state)
    assert next_float(state) == first

    for value in _sequence("bounds", 500):
        assert 0.0 <= value < 1.0


def test_hash_seed_matches_fnv1a():
    assert hash_seed("") == 2166136261
    assert hash_seed("a") == 0xE40C292C


def test_hash_seed_uses_utf16_code_units():
    # "é" is one code unit but two UTF-8 bytes
    assert hash_seed("é") != hash_seed("Ã©")
    assert 0 <= hash_seed("경마") <= MASK_32


def test_hash_seed_accepts_lone_surrogates():
    # a single unpaired code unit hashes like any other
    expected = ((2166136261 ^ 0xD800) * 16777619) & MASK_32
    assert hash_seed("\ud800") == expected
    assert seed("race-\udfff") == hash_seed("race-\udfff")


def test_integer_seed_reduced_to_32_bits():
    assert seed(2 ** 32 + 5) == 5
    assert seed(-1) == MASK_32


def test_seed_rejects_other_types():
    with pytest.raises(TypeError):
        seed(True)
    with pytest.raises(TypeError):
        seed(1.5)


def test_index_from_hash_is_stable_and_in_range():
    for race_id in ("u1:1:aa", "u2:2:bb", "u3:3:cc", ""):
        index = index_from_hash(race_id, 5)
        assert 1 <= index <= 5
        assert index_from_hash(race_id, 5) == index

    with pytest.raises(ValueError):
        index_from_hash("x", 0)


def test_seeded_random_helpers():
    rng = SeededRandom.from_seed("helpers")
    for _ in range(200):
        assert 3 <= rng.randint(3, 7) <= 7
        assert 0.5 <= rng.uniform(0.5, 0.75) < 0.75
        assert rng.choice("abc") in "abc"

    items = list(range(10))
    rng.shuffle(items)
    assert sorted(items) == list(range(10))

    with pytest.raises(IndexError):
        rng.choice([])


def test_seeded_random_shuffle_is_reproducible():
    left, right = list(range(8)), list(range(8))
    SeededRandom.from_seed("mix").shuffle(left)
    SeededRandom.from_seed("mix").shuffle(right)
    assert left == right
