"""
Dashboard categories and the predicate table that places a patient in them.

A patient can sit in several categories at once. ``MeetingTargets`` is the
complement of the five risk predicates, and ``DataIssues`` is reserved for
patients with no readings inside the summarized window.
"""
from __future__ import annotations

import re
from datetime import timedelta
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

import pandas as pd

from tidesim.core.summary import CGMSummary, TimestampLike, summarize_window
from tidesim.core.thresholds import CategoryThresholds, SensorSettings


class Category(str, Enum):
    BELOW_RANGE_1PCT = "BelowRange1pct"
    BELOW_RANGE_4PCT = "BelowRange4pct"
    TIR_DROP_15PCT = "TIRDrop15pct"
    TIME_IN_RANGE_LOW_70PCT = "TimeInRangeLow70pct"
    CGM_WEAR_LOW_70PCT = "CGMWearLow70pct"
    MEETING_TARGETS = "MeetingTargets"
    DATA_ISSUES = "DataIssues"

    @property
    def request_label(self) -> str:
        return _LABELS[self][0]

    @property
    def dashboard_label(self) -> str:
        return _LABELS[self][1]

    def __str__(self) -> str:
        return self.dashboard_label

    @classmethod
    def parse(cls, value: Union[str, "Category"]) -> "Category":
        """Resolve an enum name, value, request label or dashboard label."""
        if isinstance(value, Category):
            return value
        key = _normalize(str(value))
        try:
            return _LOOKUP[key]
        except KeyError:
            raise ValueError(f"Unknown category '{value}'") from None


# Order the dashboard lists its sections in.
DASHBOARD_ORDER: Tuple[Category, ...] = (
    Category.BELOW_RANGE_1PCT,
    Category.BELOW_RANGE_4PCT,
    Category.TIR_DROP_15PCT,
    Category.TIME_IN_RANGE_LOW_70PCT,
    Category.CGM_WEAR_LOW_70PCT,
    Category.MEETING_TARGETS,
    Category.DATA_ISSUES,
)

RISK_CATEGORIES: Tuple[Category, ...] = DASHBOARD_ORDER[:5]
BELOW_RANGE_CATEGORIES: FrozenSet[Category] = frozenset(
    {Category.BELOW_RANGE_1PCT, Category.BELOW_RANGE_4PCT}
)

_LABELS: Dict[Category, Tuple[str, str]] = {
    Category.BELOW_RANGE_1PCT: ("Time below 3.0 mmol/L > 1%", "Time below 54 mg/dL > 1%"),
    Category.BELOW_RANGE_4PCT: ("Time below 3.9 mmol/L > 4%", "Time below 70 mg/dL > 4%"),
    Category.TIR_DROP_15PCT: ("Drop in Time in Range > 15%", "Drop in Time in Range > 15%"),
    Category.TIME_IN_RANGE_LOW_70PCT: ("Time in Range < 70%", "Time in Range < 70%"),
    Category.CGM_WEAR_LOW_70PCT: ("CGM Wear Time <70%", "CGM Wear Time < 70%"),
    Category.MEETING_TARGETS: ("Meeting Targets", "Meeting Targets"),
    Category.DATA_ISSUES: ("Data Issues", "Data Issues"),
}


def _normalize(text: str) -> str:
    return re.sub(r"\s+", "", text).lower()


_LOOKUP: Dict[str, Category] = {}
for _category in Category:
    for _alias in (_category.name, _category.value, *_LABELS[_category]):
        _LOOKUP[_normalize(_alias)] = _category


Predicate = Callable[[CGMSummary, CategoryThresholds], bool]

PREDICATES: Dict[Category, Predicate] = {
    Category.BELOW_RANGE_1PCT: lambda s, t: s.very_low_pct > t.very_low_pct,
    Category.BELOW_RANGE_4PCT: lambda s, t: s.low_pct > t.low_pct,
    Category.TIR_DROP_15PCT: lambda s, t: s.tir_drop_pct is not None and s.tir_drop_pct > t.tir_drop_pct,
    Category.TIME_IN_RANGE_LOW_70PCT: lambda s, t: s.tir_pct < t.tir_low_pct,
    Category.CGM_WEAR_LOW_70PCT: lambda s, t: s.wear_pct < t.wear_low_pct,
}


def categorize(summary: CGMSummary, thresholds: Optional[CategoryThresholds] = None) -> FrozenSet[Category]:
    """Return every category a summarized window places the patient in."""
    thresholds = thresholds or CategoryThresholds()
    if summary.reading_count == 0:
        return frozenset({Category.DATA_ISSUES})
    matched = {category for category, predicate in PREDICATES.items() if predicate(summary, thresholds)}
    if not matched:
        matched.add(Category.MEETING_TARGETS)
    return frozenset(matched)


def sort_categories(categories: Iterable[Category]) -> List[Category]:
    return sorted(categories, key=DASHBOARD_ORDER.index)


def evaluate_membership(
    samples: pd.DataFrame,
    window_end: TimestampLike,
    period: timedelta,
    thresholds: Optional[CategoryThresholds] = None,
    sensor: Optional[SensorSettings] = None,
) -> FrozenSet[Category]:
    summary = summarize_window(samples, window_end, period, thresholds=thresholds, sensor=sensor)
    return categorize(summary, thresholds)
