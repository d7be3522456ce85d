from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class CurveFamily(Enum):
    """Functional forms an entity's acceleration can follow."""

    CONSTANT = "constant"
    LINEAR = "linear"
    QUADRATIC = "quadratic"
    LOGARITHMIC = "logarithmic"
    EXPONENTIAL = "exponential"

    @classmethod
    def from_str(cls, value: str) -> "CurveFamily":
        try:
            return cls(value.lower())
        except ValueError as exc:
            raise ValueError(f"Unknown curve family: {value}") from exc


CURVE_FAMILIES = (
    CurveFamily.CONSTANT,
    CurveFamily.LINEAR,
    CurveFamily.QUADRATIC,
    CurveFamily.LOGARITHMIC,
    CurveFamily.EXPONENTIAL,
)

CURVE_PARAM_KEYS = {
    CurveFamily.CONSTANT: ("c",),
    CurveFamily.LINEAR: ("a", "b"),
    CurveFamily.QUADRATIC: ("a", "b", "c"),
    CurveFamily.LOGARITHMIC: ("a", "b"),
    CurveFamily.EXPONENTIAL: ("a", "k", "b"),
}


class RacePhase(Enum):
    COUNTDOWN = "countdown"
    RUNNING = "running"
    FINISHED = "finished"

    @classmethod
    def from_str(cls, value: str) -> "RacePhase":
        try:
            return cls(value.lower())
        except ValueError as exc:
            raise ValueError(f"Unknown race phase: {value}") from exc


class EffectType(Enum):
    SPEED_MULTIPLY = "speed_multiply"
    STOP = "stop"
    REVERSE = "reverse"
    CHANGE_GRAPH = "change_graph"
    SHUFFLE = "shuffle"

    @classmethod
    def from_str(cls, value: str) -> "EffectType":
        try:
            return cls(value.lower())
        except ValueError as exc:
            raise ValueError(f"Unknown effect type: {value}") from exc


@dataclass(frozen=True)
class Curve:
    family: CurveFamily
    params: Dict[str, float]

    def __post_init__(self) -> None:
        expected = CURVE_PARAM_KEYS[self.family]
        missing = [key for key in expected if key not in self.params]
        if missing:
            raise ValueError(f"{self.family.value} curve missing params: {', '.join(missing)}")

    def to_dict(self) -> Dict[str, Any]:
        return {"curveFamily": self.family.value, "curveParams": dict(self.params)}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Curve":
        return cls(
            family=CurveFamily.from_str(payload["curveFamily"]),
            params={key: float(value) for key, value in payload["curveParams"].items()},
        )


@dataclass(frozen=True)
class RaceSpec:
    """One competing entity and the curve it was dealt at creation."""

    id: int
    curve: Curve

    @property
    def curve_family(self) -> CurveFamily:
        return self.curve.family

    @property
    def curve_params(self) -> Dict[str, float]:
        return self.curve.params

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, **self.curve.to_dict()}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "RaceSpec":
        return cls(id=int(payload["id"]), curve=Curve.from_dict(payload))


@dataclass(frozen=True)
class EffectRecord:
    """
    An applied item. Times are epoch milliseconds.

    ``target_id`` is None for effects that touch several entities (shuffle).
    ``params`` carries the effect payload: ``factor`` for speed multiply,
    ``curveFamily``/``curveParams`` for change_graph, ``mapping`` for shuffle.
    """

    target_id: Optional[int]
    effect_type: EffectType
    applied_at: int
    expires_at: int
    caller_id: str = ""
    item_key: str = ""
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targetId": self.target_id,
            "effectType": self.effect_type.value,
            "appliedAt": self.applied_at,
            "expiresAt": self.expires_at,
            "callerId": self.caller_id,
            "itemKey": self.item_key,
            "params": self.params,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "EffectRecord":
        target = payload.get("targetId")
        return cls(
            target_id=int(target) if target is not None else None,
            effect_type=EffectType.from_str(payload["effectType"]),
            applied_at=int(payload["appliedAt"]),
            expires_at=int(payload["expiresAt"]),
            caller_id=str(payload.get("callerId", "")),
            item_key=str(payload.get("itemKey", "")),
            params=dict(payload.get("params") or {}),
        )


@dataclass
class RaceState:
    """Serializable snapshot of one race, persisted between calls."""

    race_id: str
    owner_id: str
    pick: int
    bet: int
    created_at: int
    race_starts_at: int
    race_ends_at: int
    entities: List[RaceSpec]
    phase: RacePhase = RacePhase.COUNTDOWN
    applied_effects: List[EffectRecord] = field(default_factory=list)
    settled: bool = False
    winner: Optional[int] = None
    delta: Optional[int] = None
    after_points: Optional[int] = None

    @property
    def duration_seconds(self) -> float:
        return (self.race_ends_at - self.race_starts_at) / 1000

    def entity_ids(self) -> List[int]:
        return [entity.id for entity in self.entities]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "raceId": self.race_id,
            "ownerId": self.owner_id,
            "pick": self.pick,
            "bet": self.bet,
            "createdAt": self.created_at,
            "raceStartsAt": self.race_starts_at,
            "raceEndsAt": self.race_ends_at,
            "phase": self.phase.value,
            "entities": [entity.to_dict() for entity in self.entities],
            "appliedEffects": [effect.to_dict() for effect in self.applied_effects],
            "settled": self.settled,
            "winner": self.winner,
            "delta": self.delta,
            "afterPoints": self.after_points,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "RaceState":
        created_at = int(payload["createdAt"])
        winner = payload.get("winner")
        delta = payload.get("delta")
        after_points = payload.get("afterPoints")
        return cls(
            race_id=str(payload["raceId"]),
            owner_id=str(payload["ownerId"]),
            pick=int(payload["pick"]),
            bet=int(payload["bet"]),
            created_at=created_at,
            race_starts_at=int(payload.get("raceStartsAt", created_at)),
            race_ends_at=int(payload["raceEndsAt"]),
            entities=[RaceSpec.from_dict(item) for item in payload.get("entities", [])],
            phase=RacePhase.from_str(payload.get("phase", RacePhase.COUNTDOWN.value)),
            applied_effects=[EffectRecord.from_dict(item) for item in payload.get("appliedEffects", [])],
            settled=bool(payload.get("settled", False)),
            winner=int(winner) if winner is not None else None,
            delta=int(delta) if delta is not None else None,
            after_points=int(after_points) if after_points is not None else None,
        )
