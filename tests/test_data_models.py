import json

import pytest

from points_derby.engine.data_models import (
    Curve,
    CurveFamily,
    EffectRecord,
    EffectType,
    RacePhase,
    RaceSpec,
    RaceState,
)


def test_serialized_snapshot_uses_string_tags_and_ms():
    state = RaceState(
        race_id="u1:1700000000000:abcd1234",
        owner_id="u1",
        pick=2,
        bet=500,
        created_at=1_700_000_000_000,
        race_starts_at=1_700_000_005_000,
        race_ends_at=1_700_000_014_000,
        entities=[RaceSpec(1, Curve(CurveFamily.EXPONENTIAL, {"a": 0.04, "k": 1.1, "b": 0.04}))],
        phase=RacePhase.RUNNING,
        applied_effects=[EffectRecord(1, EffectType.STOP, 1_700_000_006_000, 1_700_000_007_500, "u9", "stop")],
    )
    payload = json.loads(json.dumps(state.to_dict()))

    assert payload["phase"] == "running"
    assert payload["entities"][0]["curveFamily"] == "exponential"
    assert payload["appliedEffects"][0]["effectType"] == "stop"
    assert payload["raceEndsAt"] == 1_700_000_014_000
    assert payload["settled"] is False
    assert RaceState.from_dict(payload) == state


def test_curve_requires_family_params():
    with pytest.raises(ValueError):
        Curve(CurveFamily.QUADRATIC, {"a": 1.0, "b": 1.0})


def test_unknown_tags_rejected():
    with pytest.raises(ValueError):
        CurveFamily.from_str("sinusoidal")
    with pytest.raises(ValueError):
        EffectType.from_str("teleport")
    assert RacePhase.from_str("FINISHED") is RacePhase.FINISHED
