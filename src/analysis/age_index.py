"""
Age Index - spins since each outcome last occurred

Pure function of the sequence. For every possible outcome, the age is the
number of entries after its last occurrence, counting back from the newest,
or the full sequence length if it never occurred.

    history = [1, 5, 1, 0]
    compute_age_index(history)
    # {"0": 0, "1": 1, "5": 2, everything else: 4}
"""

from collections.abc import Sequence

from models.outcome import NATURAL_ORDER, OUTCOME_KEYS, OutcomeValue, outcome_key


def compute_age_index(sequence: Sequence[OutcomeValue]) -> dict[str, int]:
    """
    Compute the age of every outcome in one reverse pass.

    O(n + 38): ages start at ``len(sequence)`` and the first match met while
    scanning newest to oldest records its reverse position. The scan stops as
    soon as all 38 outcomes have been seen.

    An empty sequence yields age 0 for every outcome.

    Args:
        sequence: Outcome history, oldest first

    Returns:
        Mapping of outcome key ("0".."36", "00") to age
    """
    n = len(sequence)
    ages = dict.fromkeys(OUTCOME_KEYS, n)
    seen: set[str] = set()

    for i in range(n):
        key = outcome_key(sequence[n - 1 - i])
        if key in seen or key not in ages:
            continue
        ages[key] = i
        seen.add(key)
        if len(seen) == len(OUTCOME_KEYS):
            break

    return ages


def oldest_outcomes(age_index: dict[str, int], limit: int = 3) -> list[tuple[str, int]]:
    """
    Outcomes that have gone longest without appearing.

    Args:
        age_index: Result of compute_age_index
        limit: Number of entries to return

    Returns:
        (outcome key, age) pairs, oldest first, ties in natural order
    """
    ranked = sorted(
        ((key, age_index.get(key, 0)) for key in OUTCOME_KEYS),
        key=lambda item: (-item[1], NATURAL_ORDER[item[0]]),
    )
    return ranked[:limit]
