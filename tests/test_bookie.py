import pytest

from points_derby.bookie import MAX_ODDS, MIN_ODDS, Bookie, vectorized_distances
from points_derby.config import RaceSettings
from points_derby.engine.data_models import CURVE_FAMILIES
from points_derby.engine.generator import random_curve
from points_derby.engine.motion import distance_at
from points_derby.engine.rng import SeededRandom


def test_vectorized_distances_match_scalar_integration():
    rng = SeededRandom.from_seed("vector")
    curves = [random_curve(rng) for _ in range(12)]
    vector = vectorized_distances(curves, 9.0)
    for curve, value in zip(curves, vector):
        assert value == pytest.approx(distance_at(curve, 9.0), rel=1e-9)


def test_monte_carlo_reports_every_family():
    bookie = Bookie(RaceSettings(), house_vig=0.08)
    odds = bookie.run_monte_carlo(simulations=40, seed="test")

    assert set(odds) == {family.value for family in CURVE_FAMILIES}
    for entry in odds.values():
        assert 0.0 <= entry["probability"] <= 1.0
        assert entry["odds"] == 999.0 or MIN_ODDS <= entry["odds"] <= MAX_ODDS


def test_monte_carlo_is_seeded():
    first = Bookie(RaceSettings()).run_monte_carlo(simulations=20, seed="same")
    second = Bookie(RaceSettings()).run_monte_carlo(simulations=20, seed="same")
    assert first == second


def test_odds_pricing():
    bookie = Bookie(RaceSettings(), house_vig=0.08)
    assert bookie._calculate_odds_from_win_rate(0) == 999.0
    assert bookie._calculate_odds_from_win_rate(0.5) == pytest.approx(0.92)
    assert bookie._calculate_odds_from_win_rate(1.0) == MIN_ODDS


def test_simulations_must_be_positive():
    with pytest.raises(ValueError):
        Bookie(RaceSettings()).run_monte_carlo(simulations=0)
