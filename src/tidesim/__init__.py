# src/tidesim/__init__.py

__version__ = "0.1.0"

# Metric model
from .core.categories import Category, DASHBOARD_ORDER, categorize, evaluate_membership
from .core.summary import CGMSummary, summarize_window
from .core.thresholds import CategoryThresholds, SensorSettings

# Window calculator
from .core.windows import (
    DataRecencyFilter,
    ExpectedCountTable,
    SummarizationPeriod,
    expected_counts,
    is_visible,
    parse_summarizing_text,
)

# Inputs and generation
from .validation.schemas import CategoryCountSpec, OffsetSpec
from .population.generator import GeneratedPatient, PatientGenerator, Population

# Verification
from .verification.verifier import CategorizationVerifier

# Configuration and storage
from .config import Credentials, ScenarioEnvironment, load_environment
from .data.store import InMemoryPatientStore, PatientStore

from .errors import CountMismatch, InvalidConfiguration, MissingConfiguration, NotSettledTimeout, SpecConflict, TideSimError

__all__ = [
    "Category",
    "DASHBOARD_ORDER",
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
    "is_visible",
    "parse_summarizing_text",
    "CategoryCountSpec",
    "OffsetSpec",
    "GeneratedPatient",
    "PatientGenerator",
    "Population",
    "CategorizationVerifier",
    "Credentials",
    "ScenarioEnvironment",
    "load_environment",
    "InMemoryPatientStore",
    "PatientStore",
    "CountMismatch",
    "InvalidConfiguration",
    "MissingConfiguration",
    "NotSettledTimeout",
    "SpecConflict",
    "TideSimError",
]
