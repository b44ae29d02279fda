"""
Streak and group statistics over an outcome history.

- find_repeats / repeat_indexes: runs of the same outcome back to back
- recent_series: newest runs first, for the "last series" panel
- group_age: spins since any member of a bet group hit
- number_stats: occurrences, recency and deviation from the fair share
"""

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from models.outcome import ALL_OUTCOMES, NATURAL_ORDER, OutcomeValue, outcome_key

# Fair share of a single pocket on a 37-pocket wheel, in percent
EXPECTED_PERCENTAGE = 2.7


@dataclass(frozen=True)
class RepeatSeries:
    """A run of identical consecutive outcomes."""

    value: OutcomeValue
    start: int  # 1-based position of the first entry
    length: int


@dataclass(frozen=True)
class NumberStats:
    """Per-outcome summary."""

    value: OutcomeValue
    occurrences: int
    last_seen: int | None  # spins ago, None if never
    percentage: float
    deviation: float

    def to_dict(self) -> dict:
        """Serialize stats to dict."""
        return {
            "value": self.value,
            "occurrences": self.occurrences,
            "last_seen": self.last_seen,
            "percentage": self.percentage,
            "deviation": self.deviation,
        }


def _runs(sequence: Sequence[OutcomeValue]) -> Iterable[tuple[int, int]]:
    """Yield (start, end) inclusive index pairs of runs longer than one."""
    i = 0
    n = len(sequence)
    while i < n - 1:
        j = i
        while j + 1 < n and outcome_key(sequence[j]) == outcome_key(sequence[j + 1]):
            j += 1
        if j > i:
            yield i, j
            i = j + 1
        else:
            i += 1


def find_repeats(sequence: Sequence[OutcomeValue]) -> list[RepeatSeries]:
    """Runs of identical consecutive outcomes, oldest first."""
    return [RepeatSeries(sequence[i], i + 1, j - i + 1) for i, j in _runs(sequence)]


def repeat_indexes(sequence: Sequence[OutcomeValue]) -> set[int]:
    """0-based indexes that belong to any run."""
    indexes: set[int] = set()
    for i, j in _runs(sequence):
        indexes.update(range(i, j + 1))
    return indexes


def recent_series(
    sequence: Sequence[OutcomeValue], limit: int = 5
) -> list[tuple[OutcomeValue, int]]:
    """
    Most recent runs, newest first.

    Args:
        sequence: Outcome history, oldest first
        limit: Maximum number of runs to return

    Returns:
        (outcome, run length) pairs for runs longer than one
    """
    series: list[tuple[OutcomeValue, int]] = []
    for i, j in reversed(list(_runs(sequence))):
        if len(series) >= limit:
            break
        series.append((sequence[i], j - i + 1))
    return series


def has_recent_repeat(sequence: Sequence[OutcomeValue]) -> bool:
    """True when the two newest outcomes are the same."""
    return len(sequence) >= 2 and outcome_key(sequence[-1]) == outcome_key(sequence[-2])


def group_age(sequence: Sequence[OutcomeValue], group: Iterable[OutcomeValue]) -> int:
    """
    Spins since any member of ``group`` last appeared.

    Returns:
        0 if the newest outcome is in the group, len(sequence) if none is
    """
    members = {outcome_key(v) for v in group}
    n = len(sequence)
    for i in range(n - 1, -1, -1):
        if outcome_key(sequence[i]) in members:
            return n - 1 - i
    return n


def number_stats(sequence: Sequence[OutcomeValue]) -> list[NumberStats]:
    """
    Occurrence statistics for every outcome, in natural order.

    Percentage is the outcome's share of the history; deviation is that share
    minus the fair single-pocket share (2.7%).
    """
    n = len(sequence)
    keys = [outcome_key(v) for v in sequence]
    counts = Counter(keys)

    last_index: dict[str, int] = {}
    for i, key in enumerate(keys):
        last_index[key] = i

    stats = []
    for value in ALL_OUTCOMES:
        key = outcome_key(value)
        occurrences = counts.get(key, 0)
        percentage = occurrences / n * 100 if n else 0.0
        last_seen = n - 1 - last_index[key] if key in last_index else None
        stats.append(
            NumberStats(
                value=value,
                occurrences=occurrences,
                last_seen=last_seen,
                percentage=percentage,
                deviation=percentage - EXPECTED_PERCENTAGE,
            )
        )
    return stats


def hottest(stats: Sequence[NumberStats], limit: int = 3) -> list[NumberStats]:
    """Most frequent outcomes (ties in natural order)."""
    ranked = sorted(stats, key=lambda s: (-s.occurrences, NATURAL_ORDER[outcome_key(s.value)]))
    return ranked[:limit]


def coldest(stats: Sequence[NumberStats], limit: int = 3) -> list[NumberStats]:
    """Least frequent outcomes (ties in natural order)."""
    ranked = sorted(stats, key=lambda s: (s.occurrences, NATURAL_ORDER[outcome_key(s.value)]))
    return ranked[:limit]
