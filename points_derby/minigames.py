"""
Single-shot side games: the colour-strip spinner and the pachinko slot drop.

Both settle instantly inside one locked store session. Each round draws from
the seeded generator keyed on a fresh round id, which is returned so the
outcome can be reproduced later.
"""
from __future__ import annotations

import math
import uuid
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Sequence

from points_derby.auth import CallerContext
from points_derby.config import RaceSettings, get_config
from points_derby.database.store import BalanceStore, user_key
from points_derby.engine.rng import SeededRandom
from points_derby.errors import InsufficientPoints, InvalidWager

DEFAULT_STRIP = (
    "red", "red", "red", "red", "red",
    "orange", "orange", "yellow", "green", "yellow", "orange", "orange",
    "red", "red", "red", "red", "red",
)
DEFAULT_COLOR_MULTIPLIERS = {"red": 0.0, "orange": 1.0, "yellow": 1.5, "green": 2.0}

STRIP = tuple(get_config("minigames.color_strip.strip", DEFAULT_STRIP))
COLOR_MULTIPLIERS: Dict[str, float] = {
    color: float(mult)
    for color, mult in get_config("minigames.color_strip.multipliers", DEFAULT_COLOR_MULTIPLIERS).items()
}

SLOT_COUNT = int(get_config("minigames.slot_drop.slots", 6))
EXACT_PAYOUT = float(get_config("minigames.slot_drop.exact_payout", 2))
SIMPLE_PAYOUT = float(get_config("minigames.slot_drop.simple_payout", 1.5))
BET_TYPES = ("EXACT", "ODD", "EVEN", "LEFT", "RIGHT")


@dataclass(frozen=True)
class SpinResult:
    round_id: str
    index: int
    color: str
    multiplier: float
    delta: int
    points: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DropResult:
    round_id: str
    bet_type: str
    final_slot: int
    win: bool
    delta: int
    points: int

    def to_dict(self) -> dict:
        return asdict(self)


def _check_amount(amount: int, settings: RaceSettings) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidWager("Bet amount must be a whole number of points.")
    if amount < settings.min_bet or amount > settings.max_bet:
        raise InvalidWager(f"Bet must be between {settings.min_bet:,} and {settings.max_bet:,} points.")


def _new_round_id(prefix: str, user_id: str) -> str:
    return f"{prefix}:{user_id}:{uuid.uuid4().hex[:12]}"


def strip_outcome(round_id: str, strip: Sequence[str] = STRIP):
    index = int(SeededRandom.from_seed(round_id).random() * len(strip))
    color = strip[index]
    return index, color, COLOR_MULTIPLIERS.get(color, 0.0)


def slot_outcome(round_id: str, slots: int = SLOT_COUNT) -> int:
    return SeededRandom.from_seed(round_id).randint(1, slots)


def slot_reward(bet_type: str, bet_slot: Optional[int], final_slot: int, amount: int, slots: int = SLOT_COUNT) -> int:
    half = slots // 2
    if bet_type == "EXACT":
        return int(amount * EXACT_PAYOUT) if bet_slot == final_slot else 0
    hit = {
        "ODD": final_slot % 2 == 1,
        "EVEN": final_slot % 2 == 0,
        "LEFT": final_slot <= half,
        "RIGHT": final_slot > half,
    }[bet_type]
    return math.floor(amount * SIMPLE_PAYOUT) if hit else 0


def spin_color_strip(
    store: BalanceStore,
    caller: CallerContext,
    amount: int,
    settings: Optional[RaceSettings] = None,
    round_id: Optional[str] = None,
) -> SpinResult:
    settings = settings or RaceSettings.load()
    _check_amount(amount, settings)
    round_id = round_id or _new_round_id("spin", caller.user_id)

    with store.session(user_key(caller.user_id)) as session:
        points = session.get_balance(caller.user_id)
        if points < amount:
            raise InsufficientPoints(f"You need {amount:,} points but have {points:,}.")
        index, color, multiplier = strip_outcome(round_id)
        reward = math.floor(amount * multiplier)
        new_points = points - amount + reward
        session.set_balance(caller.user_id, new_points)

    print(f"  -> Spin {round_id}: {color} x{multiplier} for {caller.user_id}, delta {new_points - points:+,}")
    return SpinResult(round_id, index, color, multiplier, new_points - points, new_points)


def drop_slot(
    store: BalanceStore,
    caller: CallerContext,
    bet_type: str,
    amount: int,
    bet_slot: Optional[int] = None,
    settings: Optional[RaceSettings] = None,
    round_id: Optional[str] = None,
) -> DropResult:
    settings = settings or RaceSettings.load()
    bet_type = (bet_type or "").upper()
    if bet_type not in BET_TYPES:
        raise InvalidWager(f"Bet type must be one of {', '.join(BET_TYPES)}.")
    _check_amount(amount, settings)
    if bet_type == "EXACT" and (bet_slot is None or bet_slot < 1 or bet_slot > SLOT_COUNT):
        raise InvalidWager(f"Pick a slot between 1 and {SLOT_COUNT} for an exact bet.")
    round_id = round_id or _new_round_id("drop", caller.user_id)

    with store.session(user_key(caller.user_id)) as session:
        points = session.get_balance(caller.user_id)
        if points < amount:
            raise InsufficientPoints(f"You need {amount:,} points but have {points:,}.")
        final_slot = slot_outcome(round_id)
        reward = slot_reward(bet_type, bet_slot, final_slot, amount)
        new_points = points - amount + reward
        session.set_balance(caller.user_id, new_points)

    print(f"  -> Drop {round_id}: slot {final_slot} for {caller.user_id} ({bet_type}), delta {new_points - points:+,}")
    return DropResult(round_id, bet_type, final_slot, reward > 0, new_points - points, new_points)
