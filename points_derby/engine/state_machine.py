from __future__ import annotations

from typing import Dict, Tuple

from .data_models import RacePhase, RaceState

PHASE_ORDER = (RacePhase.COUNTDOWN, RacePhase.RUNNING, RacePhase.FINISHED)

ALLOWED_TRANSITIONS: Dict[RacePhase, Tuple[RacePhase, ...]] = {
    RacePhase.COUNTDOWN: (RacePhase.RUNNING, RacePhase.FINISHED),
    RacePhase.RUNNING: (RacePhase.FINISHED,),
    RacePhase.FINISHED: (),
}


class InvalidTransition(ValueError):
    pass


def clock_phase(state: RaceState, now_ms: int) -> RacePhase:
    """Phase implied by the wall clock alone."""
    if state.settled or now_ms >= state.race_ends_at:
        return RacePhase.FINISHED
    if now_ms >= state.race_starts_at:
        return RacePhase.RUNNING
    return RacePhase.COUNTDOWN


def phase_at(state: RaceState, now_ms: int) -> RacePhase:
    """
    Effective phase: the later of the stored phase and the clock phase, so an
    explicitly finished race never reads as running again.
    """
    clock = clock_phase(state, now_ms)
    if PHASE_ORDER.index(state.phase) > PHASE_ORDER.index(clock):
        return state.phase
    return clock


def transition(state: RaceState, target: RacePhase) -> RaceState:
    if target is state.phase:
        return state
    if target not in ALLOWED_TRANSITIONS[state.phase]:
        raise InvalidTransition(f"Race {state.race_id} cannot move from {state.phase.value} to {target.value}")
    state.phase = target
    return state


def advance(state: RaceState, now_ms: int) -> RaceState:
    """Polled transition: brings the stored phase up to date with the clock."""
    return transition(state, phase_at(state, now_ms))


def finish(state: RaceState) -> RaceState:
    """Explicit finish trigger. Settlement still waits for ``race_ends_at``."""
    return transition(state, RacePhase.FINISHED)


def is_running(state: RaceState, now_ms: int) -> bool:
    return phase_at(state, now_ms) is RacePhase.RUNNING
