"""Tests for the categorization verifier."""
import logging

import pytest

from tidesim.core.categories import Category
from tidesim.core.windows import DataRecencyFilter, ExpectedCountTable, SummarizationPeriod
from tidesim.errors import CountMismatch, NotSettledTimeout
from tidesim.verification.verifier import CategorizationVerifier

RECENCY = DataRecencyFilter.HOURS_24
PERIOD = SummarizationPeriod.HOURS_24


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def table():
    counts = {
        (Category.TIME_IN_RANGE_LOW_70PCT, RECENCY, PERIOD): 1,
        (Category.CGM_WEAR_LOW_70PCT, RECENCY, PERIOD): 3,
        (Category.MEETING_TARGETS, RECENCY, PERIOD): 1,
        (Category.BELOW_RANGE_1PCT, RECENCY, PERIOD): 1,
        (Category.BELOW_RANGE_4PCT, RECENCY, PERIOD): 1,
    }
    return ExpectedCountTable(counts=counts, visible={RECENCY: 5})


def _observed(**overrides):
    observed = {
        "Time below 54 mg/dL > 1%": 1,
        "Time below 70 mg/dL > 4%": 1,
        "Drop in Time in Range > 15%": 0,
        "Time in Range < 70%": 1,
        "CGM Wear Time < 70%": 3,
        "Meeting Targets": 1,
    }
    observed.update(overrides)
    return observed


class TestVerify:
    def test_matching_counts_pass(self, table):
        result = CategorizationVerifier(table).verify(_observed(), RECENCY, PERIOD)
        assert result.passed
        assert Category.DATA_ISSUES not in result.checked

    def test_mismatch_raises_first_in_dashboard_order(self, table, caplog):
        observed = _observed(**{"CGM Wear Time < 70%": 2, "Meeting Targets": 0})
        with caplog.at_level(logging.WARNING, logger="tidesim.verification"):
            with pytest.raises(CountMismatch) as excinfo:
                CategorizationVerifier(table).verify(observed, RECENCY, PERIOD)
        error = excinfo.value
        assert error.category is Category.CGM_WEAR_LOW_70PCT
        assert (error.expected, error.actual) == (3, 2)
        assert error.expected_counts[Category.MEETING_TARGETS] == 1
        assert error.observed[Category.MEETING_TARGETS] == 0
        assert "CGM Wear Time < 70%" in str(error)
        assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 2

    def test_missing_section_counts_as_zero(self, table):
        observed = _observed()
        del observed["Meeting Targets"]
        with pytest.raises(CountMismatch) as excinfo:
            CategorizationVerifier(table).verify(observed, RECENCY, PERIOD)
        assert excinfo.value.actual == 0

    def test_subset_of_categories(self, table):
        observed = {"Time in Range < 70%": 1, "CGM Wear Time < 70%": 3, "Meeting Targets": 1}
        checked = [Category.TIME_IN_RANGE_LOW_70PCT, Category.CGM_WEAR_LOW_70PCT, Category.MEETING_TARGETS]
        result = CategorizationVerifier(table).verify(observed, RECENCY, PERIOD, categories=checked)
        assert result.passed

    def test_data_issues_ignored_by_default(self, table):
        result = CategorizationVerifier(table).verify(_observed(**{"Data Issues": 7}), RECENCY, PERIOD)
        assert result.passed

    def test_unknown_section_rejected(self, table):
        with pytest.raises(ValueError):
            CategorizationVerifier(table).verify({"Unknown section": 1}, RECENCY, PERIOD)


class TestWaiting:
    def test_fixed_budget_sleeps_once(self, table):
        clock = FakeClock()
        verifier = CategorizationVerifier(table, clock=clock, sleep=clock.sleep)
        result = verifier.verify_when_settled(lambda: _observed(), RECENCY, PERIOD, wait_budget=60.0)
        assert clock.sleeps == [60.0]
        assert result.passed

    def test_polls_until_ready(self, table):
        clock = FakeClock()
        verifier = CategorizationVerifier(table, clock=clock, sleep=clock.sleep)
        snapshots = iter([_observed(**{"Meeting Targets": 0}), _observed(**{"Meeting Targets": 0}), _observed()])
        observed = verifier.wait_until_settled(
            lambda: next(snapshots),
            ready=verifier.matches_expected(RECENCY, PERIOD),
            timeout=60.0,
            poll_interval=5.0,
        )
        assert observed[Category.MEETING_TARGETS] == 1
        assert clock.sleeps == [5.0, 5.0]

    def test_timeout_raises_not_settled(self, table):
        clock = FakeClock()
        verifier = CategorizationVerifier(table, clock=clock, sleep=clock.sleep)
        with pytest.raises(NotSettledTimeout) as excinfo:
            verifier.wait_until_settled(
                lambda: _observed(**{"Meeting Targets": 0}),
                ready=verifier.matches_expected(RECENCY, PERIOD),
                timeout=10.0,
                poll_interval=5.0,
            )
        assert excinfo.value.attempts == 3
        assert excinfo.value.waited_seconds == pytest.approx(10.0)
        assert excinfo.value.last_observed[Category.MEETING_TARGETS] == 0

    def test_timeout_is_not_a_mismatch(self):
        assert not issubclass(NotSettledTimeout, CountMismatch)
