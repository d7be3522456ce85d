from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

from points_derby.config import get_config

from .data_models import Curve, CurveFamily, EffectRecord, EffectType, RaceSpec, RaceState

# Every entity leaves the gate at the same speed; curves only add to it.
BASE_SPEED = float(get_config("motion.base_speed", 2.2))
STEP_SECONDS = float(get_config("motion.step_seconds", 0.02))

CurveLike = Union[Curve, RaceSpec]


def _curve_of(spec: CurveLike) -> Curve:
    return spec.curve if isinstance(spec, RaceSpec) else spec


def acceleration_at(spec: CurveLike, t: float) -> float:
    """Evaluates the curve at ``t`` seconds after the start, floored at zero."""
    curve = _curve_of(spec)
    p = curve.params
    family = curve.family

    if family is CurveFamily.CONSTANT:
        value = p["c"]
    elif family is CurveFamily.LINEAR:
        value = p["a"] * t + p["b"]
    elif family is CurveFamily.QUADRATIC:
        value = p["a"] * t * t + p["b"] * t + p["c"]
    elif family is CurveFamily.LOGARITHMIC:
        value = p["a"] * math.log1p(t) + p["b"]
    else:
        value = p["a"] * math.exp(p["k"] * t) + p["b"]
    return max(0.0, value)


@dataclass(frozen=True)
class _Window:
    start: float
    end: float
    effect: EffectRecord

    def active(self, t: float) -> bool:
        return self.start <= t < self.end


class EntityTimeline:
    """
    Everything that shapes one entity's run: the curve in force over time and
    the timed modifiers aimed at it. Times are seconds since the race start.
    """

    def __init__(self, curve_epochs: Sequence[Tuple[float, Curve]], windows: Sequence[_Window] = ()):
        if not curve_epochs:
            raise ValueError("An entity needs at least one curve")
        self.curve_epochs = sorted(curve_epochs, key=lambda item: item[0])
        self.windows = list(windows)

    @classmethod
    def plain(cls, spec: CurveLike) -> "EntityTimeline":
        return cls([(0.0, _curve_of(spec))])

    def curve_at(self, t: float) -> Curve:
        current = self.curve_epochs[0][1]
        for start, curve in self.curve_epochs:
            if start <= t:
                current = curve
            else:
                break
        return current

    def step(self, v: float, x: float, t: float, dt: float) -> Tuple[float, float]:
        a = acceleration_at(self.curve_at(t), t)
        factor = 1.0
        scaled = False
        stopped = False
        reversed_ = False
        for window in self.windows:
            if not window.active(t):
                continue
            kind = window.effect.effect_type
            if kind is EffectType.STOP:
                stopped = True
            elif kind is EffectType.REVERSE:
                reversed_ = True
            elif kind is EffectType.SPEED_MULTIPLY:
                factor *= float(window.effect.params.get("factor", 1.0))
                scaled = True

        if stopped:
            return v, x
        if reversed_:
            a = -a
        v += a * dt
        if v < 0:
            v = 0.0
        if scaled:
            x += v * factor * dt
        else:
            x += v * dt
        return v, x

    def distance_at(self, t_seconds: float, base_speed: float = BASE_SPEED, step: float = STEP_SECONDS) -> float:
        """Fixed-step forward Euler from ``base_speed``; a partial step covers the remainder."""
        n = max(0, math.floor(t_seconds / step))
        v = base_speed
        x = 0.0
        for i in range(n):
            v, x = self.step(v, x, i * step, step)
        rem = t_seconds - n * step
        if rem > 0:
            v, x = self.step(v, x, n * step, rem)
        return x


def distance_at(spec: CurveLike, t_seconds: float, base_speed: float = BASE_SPEED, step: float = STEP_SECONDS) -> float:
    """Cumulative distance of an unmodified entity after ``t_seconds``."""
    return EntityTimeline.plain(spec).distance_at(t_seconds, base_speed, step)


def _elapsed(state: RaceState, at_ms: int) -> float:
    return (at_ms - state.race_starts_at) / 1000


def curve_schedule(state: RaceState) -> Dict[int, List[Tuple[float, Curve]]]:
    """
    Replays curve-changing effects in the order they were applied and returns,
    per entity, the list of ``(start_seconds, curve)`` epochs.
    """
    current = {entity.id: entity.curve for entity in state.entities}
    schedule = {entity.id: [(0.0, entity.curve)] for entity in state.entities}
    changes = [
        effect for effect in state.applied_effects
        if effect.effect_type in (EffectType.CHANGE_GRAPH, EffectType.SHUFFLE)
    ]
    # sorted() is stable, so same-millisecond effects keep their append order
    for effect in sorted(changes, key=lambda item: item.applied_at):
        start = max(0.0, _elapsed(state, effect.applied_at))
        if effect.effect_type is EffectType.CHANGE_GRAPH:
            if effect.target_id not in current:
                continue
            updated = {effect.target_id: Curve.from_dict(effect.params)}
        else:
            mapping = {int(dest): int(src) for dest, src in effect.params.get("mapping", {}).items()}
            updated = {dest: current[src] for dest, src in mapping.items() if dest in current and src in current}
        for entity_id, curve in updated.items():
            current[entity_id] = curve
            schedule[entity_id].append((start, curve))
    return schedule


def build_timelines(state: RaceState) -> Dict[int, EntityTimeline]:
    schedule = curve_schedule(state)
    windows: Dict[int, List[_Window]] = {entity_id: [] for entity_id in schedule}
    for effect in state.applied_effects:
        if effect.effect_type not in (EffectType.SPEED_MULTIPLY, EffectType.STOP, EffectType.REVERSE):
            continue
        if effect.target_id not in windows:
            continue
        windows[effect.target_id].append(
            _Window(_elapsed(state, effect.applied_at), _elapsed(state, effect.expires_at), effect)
        )
    return {
        entity_id: EntityTimeline(epochs, windows[entity_id])
        for entity_id, epochs in schedule.items()
    }


def race_distances(state: RaceState, t_seconds: float) -> Dict[int, float]:
    return {
        entity_id: timeline.distance_at(t_seconds)
        for entity_id, timeline in build_timelines(state).items()
    }


def compute_winner(state: RaceState) -> Optional[int]:
    """
    Entity with the strictly greatest distance at the end of the race, lowest id
    on ties. Returns None when nothing can be evaluated.
    """
    best_id = None
    best_dist = -math.inf
    for entity_id, dist in sorted(race_distances(state, state.duration_seconds).items()):
        if math.isnan(dist):
            continue
        if dist > best_dist:
            best_dist = dist
            best_id = entity_id
    return best_id


def standings(state: RaceState, now_ms: int) -> List[Tuple[int, float]]:
    """Current order of the field: distance descending, entity id ascending."""
    elapsed = min(max(0.0, _elapsed(state, now_ms)), state.duration_seconds)
    distances = race_distances(state, elapsed)
    return sorted(distances.items(), key=lambda item: (-item[1], item[0]))
