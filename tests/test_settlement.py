import pytest

from points_derby.engine.data_models import Curve, CurveFamily, RacePhase, RaceSpec, RaceState
from points_derby.engine.rng import index_from_hash
from points_derby.settlement import (
    WINNER_COMPUTED,
    WINNER_HASHED,
    WINNER_STORED,
    payout_delta,
    record_settlement,
    resolve_winner,
    settlement_credit,
    stored_result,
)


def _state(winner=None, entities=True):
    specs = []
    if entities:
        specs = [RaceSpec(id=i, curve=Curve(CurveFamily.CONSTANT, {"c": 0.01 * i})) for i in range(1, 6)]
    return RaceState(
        race_id="settle-me",
        owner_id="owner",
        pick=3,
        bet=500,
        created_at=0,
        race_starts_at=0,
        race_ends_at=9000,
        entities=specs,
        phase=RacePhase.FINISHED,
        winner=winner,
    )


def test_payout_policy():
    assert payout_delta(500, True) == 500
    assert payout_delta(500, False) == -500
    assert payout_delta(500, True, win_multiplier=1.5) == 250
    assert payout_delta(333, True, win_multiplier=1.5) == 166
    assert payout_delta(500, False, win_multiplier=3.0) == -500


def test_credit_returns_stake_plus_delta():
    assert settlement_credit(500, 500) == 1000
    assert settlement_credit(500, -500) == 0


def test_stored_winner_wins():
    assert resolve_winner(_state(winner=2), 5) == (2, WINNER_STORED)


def test_out_of_range_stored_winner_is_recomputed():
    # entity 5 has the largest constant acceleration
    assert resolve_winner(_state(winner=9), 5) == (5, WINNER_COMPUTED)


def test_hash_fallback_without_entities():
    state = _state(entities=False)
    winner, source = resolve_winner(state, 5)
    assert source == WINNER_HASHED
    assert winner == index_from_hash("settle-me", 5)
    assert resolve_winner(state, 5) == (winner, source)


def test_record_settlement_only_once():
    state = _state()
    record_settlement(state, 3, 500, 10500)
    assert state.settled
    assert (state.winner, state.delta, state.after_points) == (3, 500, 10500)

    with pytest.raises(ValueError):
        record_settlement(state, 1, -500, 9500)

    result = stored_result(state)
    assert result.already_settled
    assert result.win
    assert result.to_dict()["ok"] is True
