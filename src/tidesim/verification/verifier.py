"""
Categorization Verifier
=======================
Compares the per-category row counts a dashboard view shows with the
counts predicted for the population, after giving the upstream summary
computation time to settle.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from tidesim.core.categories import DASHBOARD_ORDER, Category
from tidesim.core.windows import DataRecencyFilter, ExpectedCountTable, SummarizationPeriod
from tidesim.errors import CountMismatch, NotSettledTimeout

logger = logging.getLogger("tidesim.verification")

ObservedCounts = Mapping[Category, int]

# DataIssues rows come from patients outside this population, so it is not checked by default.
DEFAULT_CHECKED: Sequence[Category] = tuple(c for c in DASHBOARD_ORDER if c is not Category.DATA_ISSUES)


@dataclass
class VerificationResult:
    recency: DataRecencyFilter
    period: SummarizationPeriod
    expected: Dict[Category, int]
    observed: Dict[Category, int]
    checked: List[Category] = field(default_factory=list)

    @property
    def mismatches(self) -> List[Category]:
        return [c for c in self.checked if self.expected.get(c, 0) != self.observed.get(c, 0)]

    @property
    def passed(self) -> bool:
        return not self.mismatches


def normalize_observed(observed: Mapping[object, int]) -> Dict[Category, int]:
    """Key observed counts by :class:`Category`, accepting labels or names."""
    normalized: Dict[Category, int] = {}
    for key, count in observed.items():
        normalized[Category.parse(key)] = int(count)  # type: ignore[arg-type]
    return normalized


class CategorizationVerifier:
    """
    Checks dashboard views against an :class:`ExpectedCountTable`.

    Clock and sleep are injectable so waiting can be tested without real time
    passing. The verifier never retries a failed comparison.
    """

    def __init__(
        self,
        table: ExpectedCountTable,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.table = table
        self.clock = clock
        self.sleep = sleep

    def compare(
        self,
        observed: Mapping[object, int],
        recency: DataRecencyFilter,
        period: SummarizationPeriod,
        categories: Optional[Iterable[Category]] = None,
    ) -> VerificationResult:
        checked = list(categories) if categories is not None else list(DEFAULT_CHECKED)
        return VerificationResult(
            recency=recency,
            period=period,
            expected=self.table.for_view(recency, period),
            observed=normalize_observed(observed),
            checked=checked,
        )

    def verify(
        self,
        observed: Mapping[object, int],
        recency: DataRecencyFilter,
        period: SummarizationPeriod,
        categories: Optional[Iterable[Category]] = None,
    ) -> VerificationResult:
        """
        Raise :class:`CountMismatch` for the first category whose count differs.

        Every mismatch is logged before the first one is raised. Categories
        missing from *observed* count as zero rows.
        """
        result = self.compare(observed, recency, period, categories)
        mismatches = result.mismatches
        for category in mismatches:
            logger.warning(
                "%s / %s: expected %d rows in '%s', found %d",
                recency.label,
                period.value,
                result.expected.get(category, 0),
                category.dashboard_label,
                result.observed.get(category, 0),
            )
        if mismatches:
            first = mismatches[0]
            raise CountMismatch(
                first,
                result.expected.get(first, 0),
                result.observed.get(first, 0),
                recency=recency.label,
                period=period.value,
                expected_counts=result.expected,
                observed=result.observed,
            )
        logger.info("%s / %s: %d categories match", recency.label, period.value, len(result.checked))
        return result

    def wait_until_settled(
        self,
        sample: Callable[[], Mapping[object, int]],
        ready: Optional[Callable[[Mapping[object, int]], bool]] = None,
        timeout: float = 60.0,
        poll_interval: float = 5.0,
        wait_budget: Optional[float] = None,
    ) -> Dict[Category, int]:
        """
        Wait for the upstream summaries, then return a fresh observation.

        With *ready* given, *sample* is polled every *poll_interval* seconds
        until ``ready(observed)`` holds; :class:`NotSettledTimeout` is raised
        once *timeout* seconds pass without that. Without *ready*, the
        verifier sleeps *wait_budget* (default *timeout*) seconds once.
        """
        if ready is None:
            budget = timeout if wait_budget is None else wait_budget
            logger.info("Waiting %.1fs for summary calculation to finish", budget)
            if budget > 0:
                self.sleep(budget)
            return normalize_observed(sample())

        start = self.clock()
        attempts = 0
        last: Optional[Dict[Category, int]] = None
        while True:
            attempts += 1
            last = normalize_observed(sample())
            if ready(last):
                logger.info("Dashboard settled after %d polls", attempts)
                return last
            waited = self.clock() - start
            if waited >= timeout:
                raise NotSettledTimeout(waited, attempts, last)
            self.sleep(min(poll_interval, max(timeout - waited, 0.0)))

    def verify_when_settled(
        self,
        sample: Callable[[], Mapping[object, int]],
        recency: DataRecencyFilter,
        period: SummarizationPeriod,
        categories: Optional[Iterable[Category]] = None,
        ready: Optional[Callable[[Mapping[object, int]], bool]] = None,
        timeout: float = 60.0,
        poll_interval: float = 5.0,
        wait_budget: Optional[float] = None,
    ) -> VerificationResult:
        observed = self.wait_until_settled(
            sample, ready=ready, timeout=timeout, poll_interval=poll_interval, wait_budget=wait_budget
        )
        return self.verify(observed, recency, period, categories)

    def matches_expected(
        self,
        recency: DataRecencyFilter,
        period: SummarizationPeriod,
        categories: Optional[Iterable[Category]] = None,
    ) -> Callable[[Mapping[object, int]], bool]:
        """A ``ready`` predicate that holds once the view shows the expected counts."""
        checked = list(categories) if categories is not None else list(DEFAULT_CHECKED)

        def _ready(observed: Mapping[object, int]) -> bool:
            return self.compare(observed, recency, period, checked).passed

        return _ready
