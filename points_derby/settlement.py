from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Tuple

from points_derby.engine.data_models import RaceState
from points_derby.engine.motion import compute_winner
from points_derby.engine.rng import index_from_hash

WINNER_STORED = "stored"
WINNER_COMPUTED = "computed"
WINNER_HASHED = "hashed"


@dataclass(frozen=True)
class SettlementResult:
    race_id: str
    winner: int
    win: bool
    delta: int
    after_points: int
    already_settled: bool = False

    def to_dict(self) -> dict:
        return {"ok": True, **asdict(self)}


def _valid_ids(state: RaceState, entity_count: int):
    ids = state.entity_ids()
    return ids if ids else list(range(1, entity_count + 1))


def resolve_winner(state: RaceState, entity_count: int) -> Tuple[int, str]:
    """
    Winner resolution order: a stored winner in range, then the integrated
    distances, then a hash of the race id so retries stay reproducible.
    Returns ``(winner, source)``.
    """
    valid = _valid_ids(state, entity_count)
    if state.winner is not None and state.winner in valid:
        return state.winner, WINNER_STORED

    computed = None
    if state.entities:
        try:
            computed = compute_winner(state)
        except (ArithmeticError, KeyError, ValueError):
            computed = None
    if computed is not None:
        return computed, WINNER_COMPUTED

    return valid[index_from_hash(state.race_id, len(valid)) - 1], WINNER_HASHED


def payout_delta(bet: int, win: bool, win_multiplier: float = 2.0) -> int:
    """
    Net change against the stake. ``win_multiplier`` is the gross return on a
    win, so the default 2.0 gives ``+bet`` and a loss is always ``-bet``.
    """
    if not win:
        return -bet
    return int(math.floor(bet * win_multiplier)) - bet


def settlement_credit(bet: int, delta: int) -> int:
    """Points to give back at settlement; the stake was escrowed at creation."""
    return bet + delta


def record_settlement(state: RaceState, winner: int, delta: int, after_points: int) -> RaceState:
    if state.settled:
        raise ValueError(f"Race {state.race_id} is already settled")
    state.winner = winner
    state.delta = delta
    state.after_points = after_points
    state.settled = True
    return state


def stored_result(state: RaceState) -> SettlementResult:
    return SettlementResult(
        race_id=state.race_id,
        winner=state.winner,
        win=state.pick == state.winner,
        delta=state.delta,
        after_points=state.after_points,
        already_settled=True,
    )
