from .categories import Category, categorize, evaluate_membership
from .summary import CGMSummary, summarize_window
from .thresholds import CategoryThresholds, SensorSettings
from .windows import DataRecencyFilter, ExpectedCountTable, SummarizationPeriod, expected_counts

__all__ = [
    "Category",
    "categorize",
    "evaluate_membership",
    "CGMSummary",
    "summarize_window",
    "CategoryThresholds",
    "SensorSettings",
    "DataRecencyFilter",
    "ExpectedCountTable",
    "SummarizationPeriod",
    "expected_counts",
]
