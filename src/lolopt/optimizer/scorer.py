"""Monte Carlo evaluation of a built lineup under correlated outcomes.

Each slot's relative noise is decomposed into a team factor shared by
teammates, a slate-wide factor, and an idiosyncratic term::

    z_i = alpha * tau[team(i)] + beta * gamma + sqrt(1 - alpha^2 - beta^2) * eta_i

The TEAM slot follows its team factor directly. Trials run in batches so a
cancel signal is observed between batches.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from lolopt.models import Lineup, Player, Slot
from lolopt.schemas import ScoreWeights, StrategyProfile


logger = logging.getLogger(__name__)

LEVERAGE_FLOOR = 0.6
LEVERAGE_CEILING = 1.5
OWNERSHIP_EPSILON = 0.01
TRIAL_BATCH = 1000


def leverage_factor(ownership: float) -> float:
    """Inverse-ownership multiplier, clamped to ``[0.6, 1.5]``."""

    return min(LEVERAGE_CEILING, max(LEVERAGE_FLOOR, 1.0 / max(ownership, OWNERSHIP_EPSILON)))


@dataclass(frozen=True)
class ScoreResult:
    mean: float
    stdev: float
    ceiling: float
    floor: float
    boom_rate: float
    leverage: float
    average_ownership: float
    score: float
    trials: int
    degenerate: bool = False
    cancelled: bool = False

    @classmethod
    def cancelled_result(cls) -> "ScoreResult":
        nan = float("nan")
        return cls(
            mean=nan,
            stdev=nan,
            ceiling=nan,
            floor=nan,
            boom_rate=nan,
            leverage=nan,
            average_ownership=nan,
            score=nan,
            trials=0,
            cancelled=True,
        )


class MonteCarloScorer:
    def __init__(self, profile: StrategyProfile, *, batch_size: int = TRIAL_BATCH):
        alpha = profile.correlation.alpha
        beta = profile.correlation.beta
        self.profile = profile
        self.trials = profile.trials
        self.alpha = alpha
        self.beta = beta
        self.residual = math.sqrt(max(0.0, 1.0 - alpha * alpha - beta * beta))
        self.batch_size = max(1, batch_size)

    def relative_sigma(self, player: Player) -> float:
        """Empirical stdev relative to projection when supplied, else the position default."""

        if player.stdev is not None and player.projection > 0:
            return player.stdev / player.projection
        return float(self.profile.position_sigma.get(player.position, 0.0))

    def score(
        self,
        lineup: Lineup,
        rng: np.random.Generator,
        *,
        weights: Optional[ScoreWeights] = None,
        cancel=None,
    ) -> ScoreResult:
        weights = weights or self.profile.weights
        assignments = lineup.assignments
        means = np.array([a.projection for a in assignments], dtype=np.float64)
        sigmas = np.array([self.relative_sigma(a.player) for a in assignments], dtype=np.float64)

        leverage = float(sum(leverage_factor(a.player.ownership) for a in assignments))
        average_ownership = 100.0 * float(np.mean([a.player.ownership for a in assignments])) if assignments else 0.0
        threshold = self.profile.boom_threshold

        if not np.any(sigmas > 0.0):
            mean = float(means.sum())
            return self._result(
                totals=None,
                mean=mean,
                leverage=leverage,
                average_ownership=average_ownership,
                weights=weights,
                degenerate=True,
                boom_rate=1.0 if mean >= threshold else 0.0,
            )

        totals = self._simulate(lineup, means, sigmas, rng, cancel)
        if totals is None:
            return ScoreResult.cancelled_result()
        return self._result(
            totals=totals,
            mean=float(totals.mean()),
            leverage=leverage,
            average_ownership=average_ownership,
            weights=weights,
            boom_rate=float(np.mean(totals >= threshold)),
        )

    def _simulate(
        self,
        lineup: Lineup,
        means: np.ndarray,
        sigmas: np.ndarray,
        rng: np.random.Generator,
        cancel,
    ) -> Optional[np.ndarray]:
        team_index: Dict[str, int] = {}
        slot_team = np.array(
            [team_index.setdefault(a.player.team, len(team_index)) for a in lineup.assignments],
            dtype=np.intp,
        )
        team_slot = np.array([a.slot is Slot.TEAM for a in lineup.assignments], dtype=bool)
        n_slots = len(lineup.assignments)
        n_teams = len(team_index)

        batches: List[np.ndarray] = []
        remaining = self.trials
        while remaining > 0:
            if cancel is not None and cancel.is_set():
                logger.debug("Scorer cancelled with %s trials left", remaining)
                return None
            size = min(self.batch_size, remaining)
            tau = rng.standard_normal((size, n_teams))
            gamma = rng.standard_normal((size, 1))
            eta = rng.standard_normal((size, n_slots))
            team_draw = tau[:, slot_team]
            z = self.alpha * team_draw + self.beta * gamma + self.residual * eta
            z[:, team_slot] = team_draw[:, team_slot]
            batches.append((means * (1.0 + sigmas * z)).sum(axis=1))
            remaining -= size
        return np.concatenate(batches)

    def _result(
        self,
        *,
        totals: Optional[np.ndarray],
        mean: float,
        leverage: float,
        average_ownership: float,
        weights: ScoreWeights,
        boom_rate: float,
        degenerate: bool = False,
    ) -> ScoreResult:
        if totals is None:
            stdev = 0.0
            ceiling = floor = mean
            trials = 0
        else:
            stdev = float(totals.std())
            ceiling = float(np.percentile(totals, 90))
            floor = float(np.percentile(totals, 10))
            trials = int(totals.size)
        if degenerate:
            score = mean
        else:
            score = mean + weights.ceiling * ceiling + weights.leverage * leverage - weights.ownership * average_ownership
        return ScoreResult(
            mean=mean,
            stdev=stdev,
            ceiling=ceiling,
            floor=floor,
            boom_rate=boom_rate,
            leverage=leverage,
            average_ownership=average_ownership,
            score=float(score),
            trials=trials,
            degenerate=degenerate,
        )
