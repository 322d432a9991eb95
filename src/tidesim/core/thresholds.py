from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CategoryThresholds:
    """
    Clinical thresholds behind the dashboard categories.
    """
    # Glucose bands (mg/dL)
    very_low_mgdl: float = 54.0
    low_mgdl: float = 70.0
    high_mgdl: float = 180.0

    # Category cut-offs (percent)
    very_low_pct: float = 1.0
    low_pct: float = 4.0
    tir_drop_pct: float = 15.0
    tir_low_pct: float = 70.0
    wear_low_pct: float = 70.0


@dataclass(frozen=True)
class SensorSettings:
    """CGM cadence used both to generate readings and to measure wear."""
    interval_minutes: int = 5

    @property
    def readings_per_day(self) -> int:
        return (24 * 60) // self.interval_minutes
