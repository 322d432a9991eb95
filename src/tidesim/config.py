"""
Run configuration read from the process environment.

Values are collected once into frozen dataclasses and passed explicitly to
the code that needs them. Variables whose name mentions a scenario
(``TAG_SCENARIO1_ID``) are only read for the scenario being run, so several
scenarios can share one ``.env`` file.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from tidesim.errors import InvalidConfiguration, MissingConfiguration

DEFAULT_BASE_URL = "https://qa2.development.tidepool.org"
DEFAULT_WAIT_SUMMARY_MS = 60000
DEFAULT_WAIT_AFTER_CLICK_MS = 1000
SCALE_DOWN_FACTOR = 0.1

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str = field(repr=False)
    base_url: str = DEFAULT_BASE_URL

    def __post_init__(self) -> None:
        if not self.username or not self.password:
            raise MissingConfiguration("TIDEPOOL_USERNAME and TIDEPOOL_PASSWORD must both be set")


@dataclass(frozen=True)
class ScenarioEnvironment:
    """Everything a scenario run reads from the environment."""
    scenario: Optional[str] = None
    username: str = ""
    password: str = field(default="", repr=False)
    base_url: str = DEFAULT_BASE_URL
    clinic_id: str = ""
    tag_id: str = ""
    setup_dashboard_data: bool = False
    scale_down_dataset: bool = False
    wait_summary_ms: int = DEFAULT_WAIT_SUMMARY_MS
    wait_after_click_ms: int = DEFAULT_WAIT_AFTER_CLICK_MS

    @property
    def scale_factor(self) -> float:
        return SCALE_DOWN_FACTOR if self.scale_down_dataset else 1.0

    @property
    def wait_summary_seconds(self) -> float:
        return self.wait_summary_ms / 1000.0

    @property
    def wait_after_click_seconds(self) -> float:
        return self.wait_after_click_ms / 1000.0

    def credentials(self) -> Credentials:
        return Credentials(username=self.username, password=self.password, base_url=self.base_url)

    def require_clinic(self) -> str:
        if not self.clinic_id:
            raise MissingConfiguration("CLINIC_ID is not set")
        return self.clinic_id

    def require_tag(self) -> str:
        if not self.tag_id:
            raise MissingConfiguration(f"No tag id set for scenario '{self.scenario or 'default'}'")
        return self.tag_id


def scenario_key(scenario: str) -> str:
    """``"scenario-1"`` -> ``"scenario1"``: the token matched in variable names."""
    return re.sub(r"[^a-z0-9]", "", scenario.lower())


def tag_variable(scenario: Optional[str]) -> str:
    if not scenario:
        return "TAG_ID"
    return f"TAG_{scenario_key(scenario).upper()}_ID"


def scoped_environment(environ: Mapping[str, str], scenario: Optional[str] = None) -> Dict[str, str]:
    """
    Drop empty values and variables that belong to another scenario.

    A variable belongs to a scenario when its lower-cased name contains
    ``"scenario"``; it is kept only if it also names *scenario*. The name
    must not run on into further digits, so ``TAG_SCENARIO10_ID`` does not
    belong to ``scenario1``.
    """
    pattern = re.compile(rf"{re.escape(scenario_key(scenario))}(?!\d)") if scenario else None
    scoped: Dict[str, str] = {}
    for key, value in environ.items():
        if not value:
            continue
        lowered = key.lower()
        if "scenario" in lowered and (pattern is None or not pattern.search(lowered.replace("_", ""))):
            continue
        scoped[key] = value
    return scoped


def _flag(values: Mapping[str, str], key: str) -> bool:
    return values.get(key, "").strip().lower() in _TRUE_VALUES


def _milliseconds(values: Mapping[str, str], key: str, default: int) -> int:
    raw = values.get(key)
    if raw is None:
        return default
    try:
        parsed = int(raw.strip())
    except ValueError:
        raise InvalidConfiguration(f"{key} must be a whole number of milliseconds, got '{raw}'") from None
    if parsed < 0:
        raise InvalidConfiguration(f"{key} must be >= 0, got {parsed}")
    return parsed


def load_environment(
    scenario: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    tag_variable_name: Optional[str] = None,
) -> ScenarioEnvironment:
    """
    Read the scenario-scoped environment.

    Args:
        scenario: Active scenario name; scenario-specific variables of other
            scenarios are ignored.
        environ: Mapping to read instead of ``os.environ``.
        tag_variable_name: Variable holding the tag id; defaults to
            ``TAG_<SCENARIO>_ID`` and falls back to ``TAG_ID``.
    """
    values = scoped_environment(os.environ if environ is None else environ, scenario)
    tag_key = tag_variable_name or tag_variable(scenario)
    return ScenarioEnvironment(
        scenario=scenario,
        username=values.get("TIDEPOOL_USERNAME", ""),
        password=values.get("TIDEPOOL_PASSWORD", ""),
        base_url=values.get("TIDEPOOL_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        clinic_id=values.get("CLINIC_ID", ""),
        tag_id=values.get(tag_key) or values.get("TAG_ID", ""),
        setup_dashboard_data=_flag(values, "SETUP_DASHBOARD_DATA"),
        scale_down_dataset=_flag(values, "SCALE_DOWN_DATASET"),
        wait_summary_ms=_milliseconds(values, "WAIT_SUMMARY_CALCULATION_FINISH", DEFAULT_WAIT_SUMMARY_MS),
        wait_after_click_ms=_milliseconds(values, "WAIT_AFTER_DASHBOARD_CLICK", DEFAULT_WAIT_AFTER_CLICK_MS),
    )
