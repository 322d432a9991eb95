"""
Scenario Runner
===============
Sets up a dashboard scenario end to end: removes the patients left under
the scenario's tag by earlier runs, generates every call of the scenario,
stores the patients and predicts what the dashboard must show.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd

from tidesim.config import ScenarioEnvironment
from tidesim.core.categories import Category
from tidesim.core.summary import TimestampLike, as_utc
from tidesim.core.windows import ExpectedCountTable
from tidesim.data.store import PatientStore
from tidesim.population.generator import PatientGenerator, Population
from tidesim.validation.schemas import ScenarioCheckModel, ScenarioModel
from tidesim.verification.verifier import CategorizationVerifier, VerificationResult

logger = logging.getLogger("tidesim.scenarios")


@dataclass
class ScenarioRun:
    """Outcome of setting up one scenario."""
    scenario: ScenarioModel
    now: pd.Timestamp
    population: Population
    expected: ExpectedCountTable
    patient_ids: List[str] = field(default_factory=list)
    deleted: int = 0
    scale_factor: float = 1.0

    def verifier(self, **kwargs) -> CategorizationVerifier:
        return CategorizationVerifier(self.expected, **kwargs)

    def verify_check(self, check: ScenarioCheckModel, observed: Dict[object, int]) -> VerificationResult:
        return self.verifier().verify(
            observed,
            check.recency_filter,
            check.summarization_period,
            categories=check.category_list(),
        )


@dataclass
class FixtureDifference:
    recency: str
    period: str
    category: Category
    documented: int
    computed: int


def fixture_differences(scenario: ScenarioModel, table: ExpectedCountTable) -> List[FixtureDifference]:
    """Documented check counts that disagree with the computed table."""
    differences: List[FixtureDifference] = []
    for check in scenario.checks:
        view = table.for_view(check.recency_filter, check.summarization_period)
        for category, documented in check.expected_counts().items():
            if view.get(category, 0) != documented:
                differences.append(
                    FixtureDifference(check.recency, check.period, category, documented, view.get(category, 0))
                )
    return differences


class ScenarioRunner:
    """Runs scenarios against a :class:`PatientStore`."""

    def __init__(
        self,
        store: PatientStore,
        environment: ScenarioEnvironment,
        generator: Optional[PatientGenerator] = None,
    ) -> None:
        self.store = store
        self.environment = environment
        self.generator = generator or PatientGenerator()

    def build(self, scenario: ScenarioModel, now: TimestampLike, scale_factor: Optional[float] = None) -> Population:
        """Generate every call of *scenario* without storing anything."""
        factor = self.environment.scale_factor if scale_factor is None else scale_factor
        population = Population(self.generator)
        for call in scenario.calls:
            counts = call.count_spec()
            if factor != 1.0:
                counts = counts.scaled(factor)
            offset = call.offset_spec(clinic_id=self.environment.clinic_id, tag_id=self.environment.tag_id)
            population.add(counts, offset, now)
        return population

    def cleanup(self, scenario: ScenarioModel) -> int:
        clinic_id = self.environment.require_clinic()
        tag_id = self.environment.require_tag()
        logger.info("Cleaning up patients of scenario %s (clinic %s, tag %s)", scenario.name, clinic_id, tag_id)
        credentials = self.environment.credentials() if self.environment.username else None
        return self.store.delete_patients(credentials, clinic_id, tag_id)

    def run(self, scenario: ScenarioModel, now: TimestampLike, setup: Optional[bool] = None) -> ScenarioRun:
        """
        Set up *scenario* and return the expected dashboard counts.

        With *setup* false (default: ``SETUP_DASHBOARD_DATA``) the stored
        patients are left alone and only the prediction is computed; the
        same *now* must then be the one the data was created with.
        """
        now_ts = as_utc(now)
        do_setup = self.environment.setup_dashboard_data if setup is None else setup
        population = self.build(scenario, now_ts)
        run = ScenarioRun(
            scenario=scenario,
            now=now_ts,
            population=population,
            expected=population.expected_counts(now_ts),
            scale_factor=self.environment.scale_factor,
        )
        if not do_setup:
            logger.info("Skipping data setup for scenario %s", scenario.name)
            return run

        run.deleted = self.cleanup(scenario)
        run.patient_ids = self.store.create_patients(population.patients)
        logger.info(
            "Scenario %s set up: %d patients deleted, %d created",
            scenario.name,
            run.deleted,
            len(run.patient_ids),
        )
        return run
