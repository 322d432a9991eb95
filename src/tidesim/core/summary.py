"""
CGM summary statistics over a trailing window.

The dashboard summarizes each patient over ``(window_end - period, window_end]``
where ``window_end`` is the patient's last upload. Everything here is a pure
function of the samples and the window bounds; no wall clock is read.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Union

import numpy as np
import pandas as pd

from tidesim.core.thresholds import CategoryThresholds, SensorSettings

SAMPLE_COLUMNS = ("timestamp", "glucose")

TimestampLike = Union[pd.Timestamp, datetime, str]


def as_utc(value: TimestampLike) -> pd.Timestamp:
    """Coerce *value* to a tz-aware UTC timestamp (naive values are taken as UTC)."""
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def empty_samples() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "timestamp": pd.Series([], dtype="datetime64[ns, UTC]"),
            "glucose": pd.Series([], dtype=float),
        }
    )


@dataclass(frozen=True)
class CGMSummary:
    """Statistics for one summarization window."""
    window_start: pd.Timestamp
    window_end: pd.Timestamp
    reading_count: int
    expected_count: int
    wear_pct: float
    very_low_pct: float  # readings below the very-low threshold
    low_pct: float  # readings below the low threshold (very-low included)
    tir_pct: float
    mean_glucose: Optional[float]
    prior_tir_pct: Optional[float]
    recent_tir_pct: Optional[float]

    @property
    def tir_drop_pct(self) -> Optional[float]:
        """Percentage points lost between the prior and the recent half-window."""
        if self.prior_tir_pct is None or self.recent_tir_pct is None:
            return None
        return self.prior_tir_pct - self.recent_tir_pct

    def to_dict(self) -> Dict:
        return {
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "reading_count": self.reading_count,
            "expected_count": self.expected_count,
            "wear_pct": self.wear_pct,
            "very_low_pct": self.very_low_pct,
            "low_pct": self.low_pct,
            "tir_pct": self.tir_pct,
            "tir_drop_pct": self.tir_drop_pct,
            "mean_glucose": self.mean_glucose,
        }


def _percent(mask: pd.Series) -> float:
    if len(mask) == 0:
        return 0.0
    return float(mask.sum()) / len(mask) * 100


def _tir(glucose: pd.Series, thresholds: CategoryThresholds) -> Optional[float]:
    if len(glucose) == 0:
        return None
    return _percent((glucose >= thresholds.low_mgdl) & (glucose <= thresholds.high_mgdl))


def slice_window(samples: pd.DataFrame, start: pd.Timestamp, end: pd.Timestamp) -> pd.DataFrame:
    """Rows with ``start < timestamp <= end``."""
    if samples.empty:
        return samples
    ts = samples["timestamp"]
    return samples[(ts > start) & (ts <= end)]


def summarize_window(
    samples: pd.DataFrame,
    window_end: TimestampLike,
    period: timedelta,
    thresholds: Optional[CategoryThresholds] = None,
    sensor: Optional[SensorSettings] = None,
) -> CGMSummary:
    """
    Summarize *samples* over the trailing *period* ending at *window_end*.

    Args:
        samples: DataFrame with ``timestamp`` (UTC) and ``glucose`` (mg/dL).
        window_end: Inclusive end of the window, normally the last upload.
        period: Window length.
        thresholds: Glucose bands; defaults to :class:`CategoryThresholds`.
        sensor: Sensor cadence used for the expected reading count.

    Returns:
        CGMSummary for the window.
    """
    thresholds = thresholds or CategoryThresholds()
    sensor = sensor or SensorSettings()
    if period <= timedelta(0):
        raise ValueError("period must be positive")

    end = as_utc(window_end)
    start = end - period
    middle = end - period / 2

    window = slice_window(samples, start, end)
    glucose = window["glucose"].astype(float) if not window.empty else pd.Series([], dtype=float)

    expected_count = int(period / timedelta(minutes=sensor.interval_minutes))
    reading_count = int(len(glucose))
    wear_pct = min(100.0, reading_count / expected_count * 100) if expected_count else 0.0

    if reading_count:
        prior = window.loc[window["timestamp"] <= middle, "glucose"].astype(float)
        recent = window.loc[window["timestamp"] > middle, "glucose"].astype(float)
        mean_glucose: Optional[float] = float(np.mean(glucose.to_numpy()))
    else:
        prior = recent = glucose
        mean_glucose = None

    return CGMSummary(
        window_start=start,
        window_end=end,
        reading_count=reading_count,
        expected_count=expected_count,
        wear_pct=wear_pct,
        very_low_pct=_percent(glucose < thresholds.very_low_mgdl),
        low_pct=_percent(glucose < thresholds.low_mgdl),
        tir_pct=_tir(glucose, thresholds) or 0.0,
        mean_glucose=mean_glucose,
        prior_tir_pct=_tir(prior, thresholds),
        recent_tir_pct=_tir(recent, thresholds),
    )
