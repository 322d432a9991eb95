"""
Deterministic CGM reading patterns, one per category combination.

Patterns are keyed on the rank of each worn reading, so the share of very
low, low and high readings holds in any window of a day or more no matter
how many readings the sensor dropped:

* very low (45 mg/dL) every 50th reading, about 2 %;
* low (62 mg/dL) every 16th reading, about 6 %;
* high (240 mg/dL) on the first *k* of every 20 readings, with *k* chosen
  per half of the generated period so a drop in time in range shows up
  between the prior and the recent half.

Low-wear profiles keep alternating one-hour blocks (50 % wear). Below-range
profiles lose signal for the first eight hours of the final day; a 24 hour
summary therefore reports them under low wear while longer windows dilute
the gap.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import FrozenSet

import numpy as np
import pandas as pd

from tidesim.core.categories import BELOW_RANGE_CATEGORIES, Category
from tidesim.core.summary import TimestampLike, as_utc
from tidesim.core.thresholds import SensorSettings

VERY_LOW_MGDL = 45.0
LOW_MGDL = 62.0
HIGH_MGDL = 240.0
IN_RANGE_FLOOR_MGDL = 100.0
IN_RANGE_SPAN = 41  # in-range readings fall in [100, 140]

VERY_LOW_EVERY = 50
LOW_EVERY = 16
LOW_PHASE = 8
HIGH_CYCLE = 20

SIGNAL_LOSS = timedelta(hours=8)
WEAR_BLOCK = timedelta(hours=1)


@dataclass(frozen=True)
class GlucoseProfile:
    """Reading pattern that realizes one category combination."""
    categories: FrozenSet[Category]
    very_low: bool = False
    low: bool = False
    prior_high_per_cycle: int = 0
    recent_high_per_cycle: int = 0
    low_wear: bool = False
    signal_loss: bool = False


def profile_for(categories: FrozenSet[Category]) -> GlucoseProfile:
    """Build the pattern for a combination of categories.

    ``MeetingTargets`` alone yields clean in-range data. The caller is
    responsible for rejecting contradictory combinations.
    """
    drop = Category.TIR_DROP_15PCT in categories
    tir_low = Category.TIME_IN_RANGE_LOW_70PCT in categories
    if drop and tir_low:
        prior_high, recent_high = 4, 12
    elif tir_low:
        prior_high = recent_high = 9
    elif drop:
        prior_high, recent_high = 0, 5
    else:
        prior_high = recent_high = 0

    return GlucoseProfile(
        categories=frozenset(categories),
        very_low=Category.BELOW_RANGE_1PCT in categories,
        low=Category.BELOW_RANGE_4PCT in categories,
        prior_high_per_cycle=prior_high,
        recent_high_per_cycle=recent_high,
        low_wear=Category.CGM_WEAR_LOW_70PCT in categories,
        signal_loss=bool(BELOW_RANGE_CATEGORIES & categories),
    )


def build_samples(
    profile: GlucoseProfile,
    last_upload: TimestampLike,
    period_length_days: int,
    variant: int = 0,
    sensor: SensorSettings = SensorSettings(),
) -> pd.DataFrame:
    """
    Realize *profile* as readings ending exactly at *last_upload*.

    Args:
        profile: Pattern to realize.
        last_upload: Timestamp of the newest reading.
        period_length_days: Days of data to generate, counted back from
            *last_upload*.
        variant: Shifts the in-range values so patients sharing a profile
            still get distinct readings.
        sensor: CGM cadence.

    Returns:
        DataFrame with ``timestamp`` (UTC) and ``glucose`` columns, oldest
        reading first.
    """
    if period_length_days < 1:
        raise ValueError("period_length_days must be >= 1")
    interval = sensor.interval_minutes
    end = as_utc(last_upload)
    n_slots = period_length_days * sensor.readings_per_day

    # Slots counted back from the last upload, oldest first.
    slots_back = np.arange(n_slots - 1, -1, -1)

    worn = np.ones(n_slots, dtype=bool)
    if profile.low_wear:
        block = int(WEAR_BLOCK / timedelta(minutes=interval))
        worn &= (slots_back // block) % 2 == 0
    if profile.signal_loss:
        day = sensor.readings_per_day
        lost = int(SIGNAL_LOSS / timedelta(minutes=interval))
        worn &= ~((slots_back >= day - lost) & (slots_back < day))

    slots_back = slots_back[worn]
    rank = np.arange(len(slots_back))
    recent = slots_back < n_slots / 2

    glucose = IN_RANGE_FLOOR_MGDL + (rank * 7 + variant * 13) % IN_RANGE_SPAN
    high_per_cycle = np.where(recent, profile.recent_high_per_cycle, profile.prior_high_per_cycle)
    glucose = np.where(rank % HIGH_CYCLE < high_per_cycle, HIGH_MGDL, glucose)
    if profile.low:
        glucose = np.where(rank % LOW_EVERY == LOW_PHASE, LOW_MGDL, glucose)
    if profile.very_low:
        glucose = np.where(rank % VERY_LOW_EVERY == 0, VERY_LOW_MGDL, glucose)

    timestamps = end - pd.to_timedelta(slots_back * interval, unit="m")
    return pd.DataFrame({"timestamp": timestamps, "glucose": glucose.astype(float)})
