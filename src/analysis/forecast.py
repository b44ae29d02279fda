"""
Forecast Engine - decay-weighted "due number" ranking

Ranks every outcome by a heuristic likelihood of appearing next, favouring
outcomes that are under-represented once recent spins are weighted more
heavily than old ones, with corrections from each outcome's color, column
and dozen.

Scoring, for a history of length N (position i, 0 = oldest):

    w_i          = decay ** (N - 1 - i)
    max_decay    = (1 - decay ** N) / (1 - decay)
    freq[v]      = sum(w_i for entries == v) / max_decay
    score[v]     = 1 - freq[v]
                   * long_term_penalty      if freq[v] > 1/38
                   + sector_weight * sum(1 - group[g] / max_group for g in groups(v))
    probability  = score / sum(score)

The engine is a pure function of the history. Callers that show the ranking
usually hide it below 5 entries; the engine itself is defined for any N
(N = 0 gives the uniform distribution).

Usage:
    engine = ForecastEngine()
    entries = engine.forecast([17, 0, 32, 17, 5])
    entries[0].value, entries[0].probability
"""

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from models.outcome import (
    ALL_OUTCOMES,
    NATURAL_ORDER,
    OutcomeValue,
    groups_of,
    outcome_key,
    parse_outcome,
)

UNIFORM_SHARE = 1 / len(ALL_OUTCOMES)

# Membership matrix: rows are outcomes in natural order, columns are groups
GROUP_NAMES: tuple[str, ...] = tuple(sorted({g for v in ALL_OUTCOMES for g in groups_of(v)}))
_GROUP_COLUMN = {name: j for j, name in enumerate(GROUP_NAMES)}
MEMBERSHIP = np.zeros((len(ALL_OUTCOMES), len(GROUP_NAMES)))
for _row, _value in enumerate(ALL_OUTCOMES):
    for _group in groups_of(_value):
        MEMBERSHIP[_row, _GROUP_COLUMN[_group]] = 1.0


class ForecastConfig(BaseModel):
    """Tuning constants for the forecast engine."""

    model_config = ConfigDict(frozen=True)

    decay: float = Field(0.97, gt=0.0, lt=1.0, description="Per-spin recency decay")
    sector_weight: float = Field(0.5, ge=0.0, description="Weight of the group corrections")
    long_term_penalty: float = Field(
        0.5, gt=0.0, le=1.0, description="Multiplier for outcomes above the uniform share"
    )
    # Exposed for configuration parity; not applied by the scoring formula
    long_term_bonus: float = Field(1.5, ge=1.0)
    min_score: float = Field(1e-9, gt=0.0, description="Floor keeping every probability > 0")


@dataclass(frozen=True)
class ForecastEntry:
    """One ranked outcome."""

    value: OutcomeValue
    probability: float

    @property
    def key(self) -> str:
        """Map key of the outcome."""
        return outcome_key(self.value)

    def to_dict(self) -> dict:
        """Serialize entry to dict."""
        return {"value": self.value, "probability": self.probability}


class ForecastEngine:
    """
    Decay-weighted frequency model over an outcome history.

    Stateless apart from its configuration: calling forecast() twice on the
    same history returns identical rankings.
    """

    def __init__(self, config: ForecastConfig | None = None):
        self.config = config or ForecastConfig()

    def scores(self, sequence: Sequence[OutcomeValue]) -> np.ndarray:
        """
        Raw (unnormalized) scores for every outcome in natural order.

        Args:
            sequence: Outcome history, oldest first

        Returns:
            Array of 38 positive scores
        """
        cfg = self.config
        n = len(sequence)

        rows = np.array([NATURAL_ORDER[outcome_key(parse_outcome(v))] for v in sequence], dtype=int)
        weights = cfg.decay ** np.arange(n - 1, -1, -1, dtype=float)

        value_weight = np.bincount(rows, weights=weights, minlength=len(ALL_OUTCOMES))
        group_weight = value_weight @ MEMBERSHIP

        max_decay = (1 - cfg.decay**n) / (1 - cfg.decay)
        if max_decay > 0:
            freq = value_weight / max_decay
        else:
            freq = np.zeros(len(ALL_OUTCOMES))

        base = 1.0 - freq
        base = np.where(freq > UNIFORM_SHARE, base * cfg.long_term_penalty, base)

        max_group = group_weight.max()
        if max_group > 0:
            group_ratio = group_weight / max_group
        else:
            group_ratio = np.zeros(len(GROUP_NAMES))

        correction = MEMBERSHIP @ (1.0 - group_ratio)
        score = base + cfg.sector_weight * correction

        return np.maximum(score, cfg.min_score)

    def forecast(self, sequence: Sequence[OutcomeValue]) -> list[ForecastEntry]:
        """
        Rank every outcome by normalized score.

        Args:
            sequence: Outcome history, oldest first

        Returns:
            38 entries, descending probability, ties in natural order
            (0, 1..36, "00"); probabilities sum to 1.0
        """
        score = self.scores(sequence)
        probability = score / score.sum()

        order = sorted(range(len(ALL_OUTCOMES)), key=lambda i: (-probability[i], i))
        return [ForecastEntry(ALL_OUTCOMES[i], float(probability[i])) for i in order]


def build_forecast(
    sequence: Sequence[OutcomeValue], config: ForecastConfig | None = None
) -> list[ForecastEntry]:
    """Convenience wrapper around ForecastEngine.forecast."""
    return ForecastEngine(config).forecast(sequence)
