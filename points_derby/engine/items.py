from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from points_derby.config import get_config
from points_derby.errors import PolicyViolation

from .data_models import EffectRecord, EffectType, RacePhase, RaceState
from .generator import random_curve
from .rng import SeededRandom
from .state_machine import phase_at


@dataclass(frozen=True)
class ItemDefinition:
    key: str
    effect_type: EffectType
    cost: int
    duration_ms: int = 0
    factor: float = 1.0
    once_per_race: bool = False

    @property
    def targets_single_entity(self) -> bool:
        return self.effect_type is not EffectType.SHUFFLE

    @property
    def lasts_until_finish(self) -> bool:
        return self.effect_type in (EffectType.CHANGE_GRAPH, EffectType.SHUFFLE)


DEFAULT_ITEMS = {
    "mud": ItemDefinition("mud", EffectType.SPEED_MULTIPLY, cost=8000, duration_ms=2000, factor=0.5),
    "stop": ItemDefinition("stop", EffectType.STOP, cost=15000, duration_ms=1500),
    "reverse": ItemDefinition("reverse", EffectType.REVERSE, cost=12000, duration_ms=1500),
    "change_graph": ItemDefinition("change_graph", EffectType.CHANGE_GRAPH, cost=20000),
    "shuffle": ItemDefinition("shuffle", EffectType.SHUFFLE, cost=30000, once_per_race=True),
}


def load_catalog() -> Dict[str, ItemDefinition]:
    configured = get_config("items", None)
    if not isinstance(configured, dict) or not configured:
        return dict(DEFAULT_ITEMS)
    catalog = {}
    for key, entry in configured.items():
        fallback = DEFAULT_ITEMS.get(key)
        effect = EffectType.from_str(entry.get("effect", fallback.effect_type.value if fallback else ""))
        cost = int(entry.get("cost", fallback.cost if fallback else 0))
        if cost <= 0:
            raise ValueError(f"Item '{key}' must have a positive cost")
        catalog[key] = ItemDefinition(
            key=key,
            effect_type=effect,
            cost=cost,
            duration_ms=int(entry.get("duration_ms", fallback.duration_ms if fallback else 0)),
            factor=float(entry.get("factor", fallback.factor if fallback else 1.0)),
            once_per_race=bool(entry.get("once_per_race", fallback.once_per_race if fallback else False)),
        )
    return catalog


ITEM_CATALOG = load_catalog()


def get_item(key: str, catalog: Optional[Dict[str, ItemDefinition]] = None) -> ItemDefinition:
    catalog = catalog if catalog is not None else ITEM_CATALOG
    item = catalog.get((key or "").lower())
    if item is None:
        raise PolicyViolation(f"Unknown item '{key}'. Available: {', '.join(sorted(catalog))}.")
    return item


def check_item_allowed(state: RaceState, item: ItemDefinition, caller_id: str, target_id: Optional[int], now_ms: int) -> None:
    """Raises PolicyViolation for any rule the purchase would break. Never mutates."""
    if now_ms >= state.race_ends_at or phase_at(state, now_ms) is RacePhase.FINISHED:
        raise PolicyViolation("The race is already over.")
    if phase_at(state, now_ms) is not RacePhase.RUNNING:
        raise PolicyViolation("Items can only be used while the race is running.")

    if item.targets_single_entity:
        if target_id is None or target_id not in state.entity_ids():
            raise PolicyViolation(f"Target must be a horse number between 1 and {len(state.entities)}.")
        if target_id == state.pick:
            raise PolicyViolation("Items cannot target the race's own pick.")

    if item.once_per_race:
        for effect in state.applied_effects:
            if effect.item_key == item.key and effect.caller_id == caller_id:
                raise PolicyViolation(f"'{item.key}' can only be used once per race.")


def _effect_rng(state: RaceState) -> SeededRandom:
    # Keyed on the effect's position so replays of the same race agree
    return SeededRandom.from_seed(f"{state.race_id}:effect:{len(state.applied_effects)}")


def apply_effect(
    state: RaceState,
    item: ItemDefinition,
    caller_id: str,
    target_id: Optional[int],
    now_ms: int,
) -> EffectRecord:
    """
    Validates and appends one effect record to ``state``. Charging the caller is
    the service's job; this only touches the race.
    """
    check_item_allowed(state, item, caller_id, target_id, now_ms)

    params: Dict[str, object] = {}
    expires_at = now_ms + item.duration_ms
    if item.lasts_until_finish:
        expires_at = state.race_ends_at

    if item.effect_type is EffectType.SPEED_MULTIPLY:
        params["factor"] = item.factor
    elif item.effect_type is EffectType.CHANGE_GRAPH:
        params.update(random_curve(_effect_rng(state)).to_dict())
    elif item.effect_type is EffectType.SHUFFLE:
        target_id = None
        others = [entity_id for entity_id in state.entity_ids() if entity_id != state.pick]
        bag = list(others)
        _effect_rng(state).shuffle(bag)
        params["mapping"] = {str(dest): src for dest, src in zip(others, bag)}

    record = EffectRecord(
        target_id=target_id,
        effect_type=item.effect_type,
        applied_at=now_ms,
        expires_at=expires_at,
        caller_id=caller_id,
        item_key=item.key,
        params=params,
    )
    state.applied_effects.append(record)
    return record
