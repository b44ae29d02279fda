"""
Tests for the age index
"""

from analysis.age_index import compute_age_index, oldest_outcomes
from models.outcome import OUTCOME_KEYS


class TestComputeAgeIndex:
    def test_reference_example(self):
        """[1, 5, 1, 0]: 0 is newest, 1 one back, 5 two back, the rest never seen."""
        ages = compute_age_index([1, 5, 1, 0])

        assert ages["0"] == 0
        assert ages["1"] == 1
        assert ages["5"] == 2
        for key in OUTCOME_KEYS:
            if key not in ("0", "1", "5"):
                assert ages[key] == 4

    def test_empty_sequence_all_zero(self):
        ages = compute_age_index([])

        assert set(ages) == set(OUTCOME_KEYS)
        assert set(ages.values()) == {0}

    def test_double_zero_distinct_from_zero(self):
        ages = compute_age_index(["00", 3])

        assert ages["00"] == 1
        assert ages["0"] == 2

    def test_every_age_within_bounds(self):
        sequence = [i % 38 if i % 38 < 37 else "00" for i in range(100)]
        ages = compute_age_index(sequence)

        assert all(0 <= age <= len(sequence) for age in ages.values())
        assert ages[str(sequence[-1])] == 0

    def test_only_last_occurrence_counts(self):
        ages = compute_age_index([7, 7, 2, 7, 2, 2])

        assert ages["7"] == 2
        assert ages["2"] == 0


class TestOldestOutcomes:
    def test_oldest_first_with_natural_tie_break(self):
        ages = compute_age_index([1, 5, 1, 0])

        assert oldest_outcomes(ages) == [("2", 4), ("3", 4), ("4", 4)]

    def test_limit(self):
        ages = compute_age_index([3, 2, 1])

        assert len(oldest_outcomes(ages, limit=5)) == 5
