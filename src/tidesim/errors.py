from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


class TideSimError(RuntimeError):
    pass


class MissingConfiguration(TideSimError):
    """Required credentials or identifiers are absent. Not retryable."""


class InvalidConfiguration(TideSimError, ValueError):
    """A configuration value is present but cannot be used."""


class SpecConflict(TideSimError):
    """A category request is ambiguous or contradictory; the caller must fix it."""


class NotSettledTimeout(TideSimError):
    """Upstream summaries did not settle within the wait budget."""

    def __init__(self, waited_seconds: float, attempts: int, last_observed: Optional[Mapping[Any, int]] = None):
        self.waited_seconds = waited_seconds
        self.attempts = attempts
        self.last_observed = dict(last_observed) if last_observed is not None else None
        super().__init__(
            f"Dashboard counts not settled after {waited_seconds:.1f}s ({attempts} polls)"
        )


class CountMismatch(TideSimError):
    """Observed dashboard count differs from the predicted count."""

    def __init__(
        self,
        category: Any,
        expected: int,
        actual: int,
        recency: Any = None,
        period: Any = None,
        expected_counts: Optional[Mapping[Any, int]] = None,
        observed: Optional[Mapping[Any, int]] = None,
    ):
        self.category = category
        self.expected = expected
        self.actual = actual
        self.recency = recency
        self.period = period
        self.expected_counts: Dict[Any, int] = dict(expected_counts or {})
        self.observed: Dict[Any, int] = dict(observed or {})
        label = getattr(category, "dashboard_label", category)
        view = ""
        if recency is not None and period is not None:
            view = f" (recency {recency}, period {period})"
        super().__init__(
            f"Expected {expected} patient rows in {label} section, but found {actual}{view}"
        )
