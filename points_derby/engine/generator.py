from __future__ import annotations

import uuid
from typing import Dict, Optional, Tuple

from points_derby.config import RaceSettings, get_config
from points_derby.errors import InvalidWager

from .data_models import CURVE_FAMILIES, CURVE_PARAM_KEYS, Curve, CurveFamily, RacePhase, RaceSpec, RaceState
from .rng import SeededRandom

# All bounds positive so no curve can slow a horse down on its own.
DEFAULT_CURVE_RANGES: Dict[CurveFamily, Dict[str, Tuple[float, float]]] = {
    CurveFamily.CONSTANT: {"c": (0.05, 0.09)},
    CurveFamily.LINEAR: {"a": (0.010, 0.018), "b": (0.05, 0.08)},
    CurveFamily.QUADRATIC: {"a": (0.0015, 0.0025), "b": (0.010, 0.018), "c": (0.05, 0.08)},
    CurveFamily.LOGARITHMIC: {"a": (0.08, 0.12), "b": (0.04, 0.07)},
    CurveFamily.EXPONENTIAL: {"a": (0.03, 0.05), "k": (0.9, 1.3), "b": (0.03, 0.05)},
}


def _configured_ranges() -> Dict[CurveFamily, Dict[str, Tuple[float, float]]]:
    ranges = {}
    for family, fallback in DEFAULT_CURVE_RANGES.items():
        entry = get_config(f"curve_ranges.{family.value}", {})
        family_ranges = {}
        for key, (lo, hi) in fallback.items():
            bounds = entry.get(key) if isinstance(entry, dict) else None
            if bounds and len(bounds) == 2:
                lo, hi = float(bounds[0]), float(bounds[1])
            if lo < 0 or hi < lo:
                raise ValueError(f"Invalid range for {family.value}.{key}: {lo}..{hi}")
            family_ranges[key] = (lo, hi)
        ranges[family] = family_ranges
    return ranges


CURVE_RANGES = _configured_ranges()


def new_race_id(owner_id: str, now_ms: int) -> str:
    return f"{owner_id}:{now_ms}:{uuid.uuid4().hex[:8]}"


def pick_family(rng: SeededRandom) -> CurveFamily:
    return rng.choice(CURVE_FAMILIES)


def generate_curve(family: CurveFamily, rng: SeededRandom) -> Curve:
    bounds = CURVE_RANGES[family]
    params = {key: rng.uniform(*bounds[key]) for key in CURVE_PARAM_KEYS[family]}
    return Curve(family=family, params=params)


def random_curve(rng: SeededRandom) -> Curve:
    return generate_curve(pick_family(rng), rng)


def validate_wager(pick: int, bet: int, settings: RaceSettings, entity_count: Optional[int] = None) -> None:
    count = entity_count if entity_count is not None else settings.horses
    if isinstance(pick, bool) or not isinstance(pick, int) or pick < 1 or pick > count:
        raise InvalidWager(f"Pick must be a horse number between 1 and {count}.")
    if isinstance(bet, bool) or not isinstance(bet, int) or bet < settings.min_bet or bet > settings.max_bet:
        raise InvalidWager(f"Bet must be between {settings.min_bet:,} and {settings.max_bet:,} points.")


def create_race(
    owner_id: str,
    pick: int,
    bet: int,
    settings: RaceSettings,
    now_ms: int,
    entity_count: Optional[int] = None,
    race_id: Optional[str] = None,
) -> RaceState:
    """
    Deals a fresh field. The RNG is seeded from the race id, which is unique per
    race, so replaying the same id reproduces the same curves.
    """
    count = entity_count if entity_count is not None else settings.horses
    validate_wager(pick, bet, settings, count)

    race_id = race_id or new_race_id(owner_id, now_ms)
    rng = SeededRandom.from_seed(race_id)
    entities = [RaceSpec(id=entity_id, curve=random_curve(rng)) for entity_id in range(1, count + 1)]

    starts_at = now_ms + settings.countdown_ms
    return RaceState(
        race_id=race_id,
        owner_id=owner_id,
        pick=pick,
        bet=bet,
        created_at=now_ms,
        race_starts_at=starts_at,
        race_ends_at=starts_at + settings.race_ms,
        entities=entities,
        phase=RacePhase.COUNTDOWN if settings.countdown_ms > 0 else RacePhase.RUNNING,
    )
