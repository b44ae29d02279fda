"""Derived statistics over an outcome history."""

from analysis.age_index import compute_age_index, oldest_outcomes
from analysis.forecast import ForecastConfig, ForecastEngine, ForecastEntry, build_forecast
from analysis.streaks import (
    NumberStats,
    RepeatSeries,
    find_repeats,
    group_age,
    number_stats,
    recent_series,
)

__all__ = [
    "ForecastConfig",
    "ForecastEngine",
    "ForecastEntry",
    "NumberStats",
    "RepeatSeries",
    "build_forecast",
    "compute_age_index",
    "find_repeats",
    "group_age",
    "number_stats",
    "oldest_outcomes",
    "recent_series",
]
