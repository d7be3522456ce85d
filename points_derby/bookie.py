from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence

import numpy as np

from points_derby.config import RaceSettings, get_config
from points_derby.engine.data_models import CURVE_FAMILIES, Curve, CurveFamily
from points_derby.engine.generator import random_curve
from points_derby.engine.motion import BASE_SPEED, STEP_SECONDS
from points_derby.engine.rng import SeededRandom

HOUSE_VIG = float(get_config("bookie.house_vig", 0.08))
MIN_ODDS = 0.1
MAX_ODDS = 1257.0


def vectorized_distances(curves: Sequence[Curve], t_seconds: float,
                         base_speed: float = BASE_SPEED, step: float = STEP_SECONDS) -> np.ndarray:
    """
    The plain Euler integration run over many curves at once. Same step
    order as ``motion.distance_at``; last-ulp differences from numpy's
    transcendental functions are acceptable here because odds are advisory.
    """
    count = len(curves)
    codes = np.array([CURVE_FAMILIES.index(curve.family) for curve in curves])
    a = np.array([curve.params.get("a", 0.0) for curve in curves])
    b = np.array([curve.params.get("b", 0.0) for curve in curves])
    c = np.array([curve.params.get("c", 0.0) for curve in curves])
    k = np.array([curve.params.get("k", 0.0) for curve in curves])

    def accel(t: float) -> np.ndarray:
        values = np.select(
            [codes == 0, codes == 1, codes == 2, codes == 3, codes == 4],
            [c, a * t + b, a * t * t + b * t + c, a * np.log1p(t) + b, a * np.exp(k * t) + b],
        )
        return np.maximum(values, 0.0)

    v = np.full(count, base_speed)
    x = np.zeros(count)
    n = max(0, math.floor(t_seconds / step))
    for i in range(n):
        v = np.maximum(v + accel(i * step) * step, 0.0)
        x = x + v * step
    rem = t_seconds - n * step
    if rem > 0:
        v = np.maximum(v + accel(n * step) * rem, 0.0)
        x = x + v * rem
    return x


class Bookie:
    """
    Estimates how often each curve family wins a freshly dealt race by
    running Monte Carlo simulations, and prices family odds from that.
    """

    def __init__(self, settings: Optional[RaceSettings] = None, house_vig: float = HOUSE_VIG):
        self.settings = settings or RaceSettings.load()
        self.house_vig = house_vig
        self.win_probabilities: Dict[CurveFamily, float] = {}
        self.family_odds: Dict[str, Dict[str, float]] = {}

    def run_monte_carlo(self, simulations: int = 500, seed="bookie") -> Dict[str, Dict[str, float]]:
        if simulations <= 0:
            raise ValueError("simulations must be positive")
        horses = self.settings.horses
        rng = SeededRandom.from_seed(seed)

        curves: List[Curve] = [random_curve(rng) for _ in range(simulations * horses)]
        duration = self.settings.race_ms / 1000
        distances = vectorized_distances(curves, duration).reshape(simulations, horses)
        families = np.array([CURVE_FAMILIES.index(curve.family) for curve in curves]).reshape(simulations, horses)

        # argmax returns the first maximum, i.e. the lowest horse number on ties
        winner_cols = np.argmax(distances, axis=1)
        winner_families = families[np.arange(simulations), winner_cols]

        wins = np.bincount(winner_families, minlength=len(CURVE_FAMILIES))
        entries = np.bincount(families.ravel(), minlength=len(CURVE_FAMILIES))

        for code, family in enumerate(CURVE_FAMILIES):
            rate = float(wins[code] / entries[code]) if entries[code] else 0.0
            self.win_probabilities[family] = rate
        self._calculate_all_odds()
        return self.family_odds

    def _calculate_odds_from_win_rate(self, win_rate: float) -> float:
        if win_rate == 0:
            return 999.0
        fair_odds = (1 / win_rate) - 1
        final_odds = fair_odds * (1 - self.house_vig)
        return float(np.clip(final_odds, MIN_ODDS, MAX_ODDS))

    def _calculate_all_odds(self) -> None:
        for family, probability in self.win_probabilities.items():
            self.family_odds[family.value] = {
                "probability": probability,
                "odds": self._calculate_odds_from_win_rate(probability),
            }
