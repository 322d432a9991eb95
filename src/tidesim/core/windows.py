"""
Offset / period window arithmetic.

Two independent questions decide what the dashboard shows for a patient:

* visibility: is the last upload recent enough for the data-recency filter?
  The boundary is inclusive, ``offset_minutes <= filter_minutes``.
* membership: which categories does the summarization window place the
  patient in? The window trails the patient's last upload, so a patient
  generated for 14 days but viewed over 7 only contributes its most recent
  7 days of readings, and a 30-day view of 14 days of data sees low wear.
  ``classify_overlap`` names that relation for each patient and window.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Tuple, Union

import pandas as pd

from tidesim.core.categories import DASHBOARD_ORDER, Category, evaluate_membership
from tidesim.core.summary import TimestampLike, as_utc
from tidesim.core.thresholds import CategoryThresholds, SensorSettings

logger = logging.getLogger("tidesim.windows")

MINUTES_PER_DAY = 24 * 60


class DataRecencyFilter(Enum):
    HOURS_24 = "24 hours"
    DAYS_2 = "2 days"
    DAYS_7 = "7 days"
    DAYS_14 = "14 days"
    DAYS_30 = "30 days"

    @property
    def minutes(self) -> int:
        return _RECENCY_MINUTES[self]

    @property
    def label(self) -> str:
        return f"Within {self.value}"

    @classmethod
    def parse(cls, value: Union[str, int, "DataRecencyFilter"]) -> "DataRecencyFilter":
        """Accept ``"7 days"``, ``"Within 7 days"``, ``"DAYS_7"`` or a minute count."""
        if isinstance(value, DataRecencyFilter):
            return value
        if isinstance(value, int):
            for member in cls:
                if member.minutes == value:
                    return member
            raise ValueError(f"No data recency filter of {value} minutes")
        text = re.sub(r"^within\s+", "", str(value).strip(), flags=re.IGNORECASE)
        for member in cls:
            if text.lower() in (member.value, member.name.lower()):
                return member
        raise ValueError(f"Unknown data recency filter '{value}'")


_RECENCY_MINUTES: Dict[DataRecencyFilter, int] = {
    DataRecencyFilter.HOURS_24: 1 * MINUTES_PER_DAY,
    DataRecencyFilter.DAYS_2: 2 * MINUTES_PER_DAY,
    DataRecencyFilter.DAYS_7: 7 * MINUTES_PER_DAY,
    DataRecencyFilter.DAYS_14: 14 * MINUTES_PER_DAY,
    DataRecencyFilter.DAYS_30: 30 * MINUTES_PER_DAY,
}


class SummarizationPeriod(Enum):
    HOURS_24 = "24 hours"
    DAYS_7 = "7 days"
    DAYS_14 = "14 days"
    DAYS_30 = "30 days"

    @property
    def days(self) -> int:
        return _PERIOD_DAYS[self]

    @property
    def duration(self) -> timedelta:
        return timedelta(days=self.days)

    @classmethod
    def parse(cls, value: Union[str, int, "SummarizationPeriod"]) -> "SummarizationPeriod":
        """Accept ``"14 days"``, ``"PERIOD_NAME"`` or a day count."""
        if isinstance(value, SummarizationPeriod):
            return value
        if isinstance(value, int):
            for member in cls:
                if member.days == value:
                    return member
            raise ValueError(f"No summarization period of {value} days")
        text = str(value).strip().lower()
        for member in cls:
            if text in (member.value, member.name.lower()):
                return member
        raise ValueError(f"Unknown summarization period '{value}'")


_PERIOD_DAYS: Dict[SummarizationPeriod, int] = {
    SummarizationPeriod.HOURS_24: 1,
    SummarizationPeriod.DAYS_7: 7,
    SummarizationPeriod.DAYS_14: 14,
    SummarizationPeriod.DAYS_30: 30,
}

_SUMMARIZING_RE = re.compile(r"Summarizing\s*(.+?)\s+of data", re.IGNORECASE)


def parse_summarizing_text(text: str) -> SummarizationPeriod:
    """Map the dashboard caption ``"Summarizing 24 hours of data"`` to its period."""
    match = _SUMMARIZING_RE.search(text or "")
    if not match:
        raise ValueError(f"No summarization period in '{text}'")
    return SummarizationPeriod.parse(match.group(1).strip())


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------

def is_visible(offset_minutes: float, recency: DataRecencyFilter) -> bool:
    if offset_minutes < 0:
        raise ValueError("offset_minutes must be >= 0")
    return offset_minutes <= recency.minutes


def effective_offset_minutes(last_upload: TimestampLike, now: TimestampLike) -> float:
    """Minutes between the last upload and *now* (never negative)."""
    delta = as_utc(now) - as_utc(last_upload)
    return max(delta / pd.Timedelta(minutes=1), 0.0)


# ---------------------------------------------------------------------------
# Generated range vs aggregation window
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Interval:
    """Half-open time interval ``(start, end]``."""
    start: pd.Timestamp
    end: pd.Timestamp

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("Interval end precedes start")

    @property
    def duration(self) -> timedelta:
        return (self.end - self.start).to_pytimedelta()

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end


class WindowOverlap(Enum):
    CONTAINED = "contained"
    PARTIAL = "partial"
    OUTSIDE = "outside"


def generated_range(last_upload: TimestampLike, period_length_days: float) -> Interval:
    end = as_utc(last_upload)
    return Interval(start=end - timedelta(days=period_length_days), end=end)


def aggregation_window(last_upload: TimestampLike, period: SummarizationPeriod) -> Interval:
    end = as_utc(last_upload)
    return Interval(start=end - period.duration, end=end)


def classify_overlap(generated: Interval, window: Interval) -> WindowOverlap:
    if generated.duration <= timedelta(0) or not window.overlaps(generated):
        return WindowOverlap.OUTSIDE
    if window.contains(generated):
        return WindowOverlap.CONTAINED
    return WindowOverlap.PARTIAL


def covered_range(patient: "PopulationMember", sensor: Optional[SensorSettings] = None) -> Interval:
    """Range a patient's readings were generated over, ending at its last upload."""
    days = getattr(patient, "period_length_days", None)
    if days is not None:
        return generated_range(patient.last_upload, days)
    end = as_utc(patient.last_upload)
    if patient.samples.empty:
        return Interval(start=end, end=end)
    interval = timedelta(minutes=(sensor or SensorSettings()).interval_minutes)
    first = as_utc(patient.samples["timestamp"].min())
    return Interval(start=min(first - interval, end), end=end)


# ---------------------------------------------------------------------------
# Expected counts
# ---------------------------------------------------------------------------

class PopulationMember(Protocol):
    name: str
    samples: pd.DataFrame
    last_upload: pd.Timestamp


def membership_by_period(
    patient: PopulationMember,
    thresholds: Optional[CategoryThresholds] = None,
    sensor: Optional[SensorSettings] = None,
) -> Dict[SummarizationPeriod, FrozenSet[Category]]:
    return {
        period: evaluate_membership(
            patient.samples, patient.last_upload, period.duration, thresholds=thresholds, sensor=sensor
        )
        for period in SummarizationPeriod
    }


CountKey = Tuple[Category, DataRecencyFilter, SummarizationPeriod]


@dataclass
class ExpectedCountTable:
    """Expected dashboard row counts per (category, recency, period)."""
    counts: Dict[CountKey, int] = field(default_factory=dict)
    visible: Dict[DataRecencyFilter, int] = field(default_factory=dict)
    # how each summarization window covers a visible patient's generated range
    overlaps: Dict[str, Dict[SummarizationPeriod, WindowOverlap]] = field(default_factory=dict)

    def get(self, category: Category, recency: DataRecencyFilter, period: SummarizationPeriod) -> int:
        return self.counts.get((category, recency, period), 0)

    def for_view(self, recency: DataRecencyFilter, period: SummarizationPeriod) -> Dict[Category, int]:
        return {category: self.get(category, recency, period) for category in DASHBOARD_ORDER}

    def visible_total(self, recency: DataRecencyFilter) -> int:
        return self.visible.get(recency, 0)

    def to_frame(self) -> pd.DataFrame:
        rows: List[Dict[str, object]] = []
        for period in SummarizationPeriod:
            for recency in DataRecencyFilter:
                row: Dict[str, object] = {"period": period.value, "recency": recency.value}
                for category in DASHBOARD_ORDER:
                    row[category.value] = self.get(category, recency, period)
                rows.append(row)
        return pd.DataFrame(rows)


def expected_counts(
    patients: Iterable[PopulationMember],
    now: TimestampLike,
    thresholds: Optional[CategoryThresholds] = None,
    sensor: Optional[SensorSettings] = None,
    memberships: Optional[Mapping[str, Mapping[SummarizationPeriod, FrozenSet[Category]]]] = None,
) -> ExpectedCountTable:
    """
    Predict dashboard counts for every (category, recency, period) triple.

    Args:
        patients: Generated patients (anything with ``name``, ``samples`` and
            ``last_upload``).
        now: Evaluation time; offsets are measured from here.
        memberships: Optional precomputed ``membership_by_period`` results
            keyed by patient name.

    Membership comes from the readings inside each window. The table also
    records, per visible patient, whether each window contains, cuts into or
    misses the generated range (``overlaps``).
    """
    table = ExpectedCountTable()
    counts = table.counts
    n_patients = 0
    for patient in patients:
        n_patients += 1
        offset = effective_offset_minutes(patient.last_upload, now)
        visible_under = [recency for recency in DataRecencyFilter if is_visible(offset, recency)]
        if not visible_under:
            continue
        if memberships is not None and patient.name in memberships:
            by_period = memberships[patient.name]
        else:
            by_period = membership_by_period(patient, thresholds, sensor)
        generated = covered_range(patient, sensor)
        overlaps = {
            period: classify_overlap(generated, aggregation_window(patient.last_upload, period))
            for period in SummarizationPeriod
        }
        table.overlaps[patient.name] = overlaps
        logger.debug(
            "%s: %s",
            patient.name,
            ", ".join(f"{period.value} {overlap.value}" for period, overlap in overlaps.items()),
        )
        for recency in visible_under:
            table.visible[recency] = table.visible.get(recency, 0) + 1
            for period, categories in by_period.items():
                for category in categories:
                    counts[(category, recency, period)] = counts.get((category, recency, period), 0) + 1
    logger.debug("Expected counts computed for %d patients", n_patients)
    return table
