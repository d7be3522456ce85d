"""
Race engine package: seeded randomness, the acceleration-curve motion model,
race generation, item effects and the race phase state machine.

Everything here is pure computation over ``RaceState`` snapshots; storage and
balances live in the service layer.
"""

from .data_models import (  # noqa: F401
    Curve,
    CurveFamily,
    EffectRecord,
    EffectType,
    RacePhase,
    RaceSpec,
    RaceState,
)
from .generator import create_race, generate_curve, validate_wager  # noqa: F401
from .items import ITEM_CATALOG, ItemDefinition, apply_effect, get_item  # noqa: F401
from .motion import acceleration_at, compute_winner, distance_at, standings  # noqa: F401
from .rng import SeededRandom, hash_seed, next_float, seed  # noqa: F401
from .state_machine import advance, finish, phase_at  # noqa: F401

__all__ = [
    "Curve",
    "CurveFamily",
    "EffectRecord",
    "EffectType",
    "RacePhase",
    "RaceSpec",
    "RaceState",
    "create_race",
    "generate_curve",
    "validate_wager",
    "ITEM_CATALOG",
    "ItemDefinition",
    "apply_effect",
    "get_item",
    "acceleration_at",
    "compute_winner",
    "distance_at",
    "standings",
    "SeededRandom",
    "hash_seed",
    "next_float",
    "seed",
    "advance",
    "finish",
    "phase_at",
]
