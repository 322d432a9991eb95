"""
Synthetic Patient Generator
===========================
Turns a :class:`CategoryCountSpec` plus an :class:`OffsetSpec` into named
patients whose CGM samples land in exactly the intended dashboard
categories. Generation is deterministic: the same request at the same
``now`` yields the same samples.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

import pandas as pd

from tidesim.core.categories import (
    BELOW_RANGE_CATEGORIES,
    Category,
    evaluate_membership,
    sort_categories,
)
from tidesim.core.summary import TimestampLike, as_utc
from tidesim.core.thresholds import CategoryThresholds, SensorSettings
from tidesim.core.windows import ExpectedCountTable, expected_counts
from tidesim.errors import SpecConflict
from tidesim.population.profiles import build_samples, profile_for
from tidesim.validation.schemas import CategoryCountSpec, OffsetSpec

logger = logging.getLogger("tidesim.population")

EXCLUSIVE_CATEGORIES = frozenset({Category.MEETING_TARGETS, Category.DATA_ISSUES})


@dataclass
class GeneratedPatient:
    """A synthetic patient and the categories its samples realize."""
    name: str
    intended: FrozenSet[Category]
    realized: FrozenSet[Category]
    last_upload: pd.Timestamp
    offset_minutes: int
    period_length_days: int
    clinic_id: str = ""
    tag_id: str = ""
    samples: pd.DataFrame = field(default_factory=pd.DataFrame, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "intended": [category.value for category in sort_categories(self.intended)],
            "realized": [category.value for category in sort_categories(self.realized)],
            "last_upload": self.last_upload.isoformat(),
            "offset_minutes": self.offset_minutes,
            "period_length_days": self.period_length_days,
            "clinic_id": self.clinic_id,
            "tag_id": self.tag_id,
            "reading_count": int(len(self.samples)),
        }


def _combination_name(categories: Iterable[Category]) -> str:
    return "+".join(category.value for category in sort_categories(categories))


def plan_population(spec: CategoryCountSpec) -> List[Tuple[FrozenSet[Category], int]]:
    """
    Resolve a count request into ``(categories, n_patients)`` groups.

    Raises:
        SpecConflict: for requests no population can satisfy.
    """
    requested = spec.requested()
    if Category.DATA_ISSUES in requested:
        raise SpecConflict("DataIssues cannot be generated; it is derived from missing data")

    if spec.combination is None:
        return [(frozenset({category}), count) for category, count in requested.items()]

    members = spec.combination
    if len(members) > 1 and members & EXCLUSIVE_CATEGORIES:
        raise SpecConflict(
            f"Combination {_combination_name(members)} mixes "
            f"{_combination_name(members & EXCLUSIVE_CATEGORIES)} with other categories"
        )
    if Category.DATA_ISSUES in members:
        raise SpecConflict("DataIssues cannot be generated; it is derived from missing data")

    outside = {category: count for category, count in requested.items() if category not in members}
    if outside:
        raise SpecConflict(
            f"Categories outside combination {_combination_name(members)} have nonzero counts: "
            f"{_combination_name(outside)}"
        )
    missing = [category for category in members if spec.count(category) == 0]
    if missing:
        raise SpecConflict(f"Combination members have a zero count: {_combination_name(missing)}")
    distinct = {spec.count(category) for category in members}
    if len(distinct) > 1:
        raise SpecConflict(
            f"Combination {_combination_name(members)} has unequal counts "
            f"{sorted(distinct)}; its patients carry every member at once"
        )
    return [(frozenset(members), distinct.pop())]


def allowed_extra(intended: FrozenSet[Category], period_length_days: int) -> FrozenSet[Category]:
    """Categories a profile may realize beyond the intended ones."""
    if period_length_days <= 1 and intended & BELOW_RANGE_CATEGORIES:
        return frozenset({Category.CGM_WEAR_LOW_70PCT})
    return frozenset()


class PatientGenerator:
    """Builds synthetic patients for one clinic tag."""

    def __init__(
        self,
        thresholds: Optional[CategoryThresholds] = None,
        sensor: Optional[SensorSettings] = None,
    ) -> None:
        self.thresholds = thresholds or CategoryThresholds()
        self.sensor = sensor or SensorSettings()

    def generate(self, counts: CategoryCountSpec, offset: OffsetSpec, now: TimestampLike) -> List[GeneratedPatient]:
        """
        Generate every patient *counts* asks for, stale by *offset* at *now*.

        Args:
            counts: Patients wanted per category or per combination.
            offset: Staleness, period length, naming and clinic placement.
            now: Reference time; each patient's last upload is
                ``now - offset.offset_minutes``.

        Returns:
            Patients in dashboard order, numbered from 1 within each group.

        Raises:
            SpecConflict: if the request is contradictory or a profile fails
                to realize its categories under the configured thresholds.
        """
        groups = plan_population(counts)
        last_upload = as_utc(now) - timedelta(minutes=offset.offset_minutes)
        period = timedelta(days=offset.period_length_days)

        patients: List[GeneratedPatient] = []
        for categories, n in groups:
            profile = profile_for(categories)
            label = _combination_name(categories)
            extra_ok = allowed_extra(categories, offset.period_length_days)
            for index in range(1, n + 1):
                name = f"{offset.patient_name_prefix} {label} {index}"
                samples = build_samples(
                    profile,
                    last_upload,
                    offset.period_length_days,
                    variant=index,
                    sensor=self.sensor,
                )
                realized = evaluate_membership(
                    samples, last_upload, period, thresholds=self.thresholds, sensor=self.sensor
                )
                self._check_realized(name, categories, realized, extra_ok)
                logger.debug("Generated %s with %d readings: %s", name, len(samples), _combination_name(realized))
                patients.append(
                    GeneratedPatient(
                        name=name,
                        intended=categories,
                        realized=realized,
                        last_upload=last_upload,
                        offset_minutes=offset.offset_minutes,
                        period_length_days=offset.period_length_days,
                        clinic_id=offset.clinic_id,
                        tag_id=offset.tag_id,
                        samples=samples,
                    )
                )

        logger.info(
            "Generated %d patients with prefix '%s' at offset %d min over %d days",
            len(patients),
            offset.patient_name_prefix,
            offset.offset_minutes,
            offset.period_length_days,
        )
        return patients

    @staticmethod
    def _check_realized(
        name: str,
        intended: FrozenSet[Category],
        realized: FrozenSet[Category],
        extra_ok: FrozenSet[Category],
    ) -> None:
        missing = intended - realized
        extra = realized - intended - extra_ok
        if missing or extra:
            raise SpecConflict(
                f"{name} realizes {_combination_name(realized)} instead of {_combination_name(intended)} "
                "under the configured thresholds"
            )


class Population:
    """Every patient generated for one tag, across generation calls."""

    def __init__(self, generator: Optional[PatientGenerator] = None) -> None:
        self.generator = generator or PatientGenerator()
        self.patients: List[GeneratedPatient] = []

    def __len__(self) -> int:
        return len(self.patients)

    def __iter__(self):
        return iter(self.patients)

    def add(self, counts: CategoryCountSpec, offset: OffsetSpec, now: TimestampLike) -> List[GeneratedPatient]:
        created = self.generator.generate(counts, offset, now)
        names = {patient.name for patient in self.patients}
        clashes = sorted(patient.name for patient in created if patient.name in names)
        if clashes:
            raise SpecConflict(f"Patient names already generated: {', '.join(clashes[:5])}")
        self.patients.extend(created)
        return created

    def expected_counts(self, now: TimestampLike) -> ExpectedCountTable:
        return expected_counts(
            self.patients,
            now,
            thresholds=self.generator.thresholds,
            sensor=self.generator.sensor,
        )

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([patient.to_dict() for patient in self.patients])

    def samples_frame(self) -> pd.DataFrame:
        """All readings, one row per reading, tagged with the patient name."""
        frames = [patient.samples.assign(patient=patient.name) for patient in self.patients]
        if not frames:
            return pd.DataFrame(columns=["patient", "timestamp", "glucose"])
        return pd.concat(frames, ignore_index=True)[["patient", "timestamp", "glucose"]]
