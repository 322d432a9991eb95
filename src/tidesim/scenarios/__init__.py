"""Built-in dashboard scenarios."""

from __future__ import annotations

from importlib.resources import files
from typing import Dict, List

import yaml

from tidesim.validation import validate_scenario_file_dict
from tidesim.validation.schemas import ScenarioModel

from .runner import FixtureDifference, ScenarioRun, ScenarioRunner, fixture_differences


def load_scenarios() -> List[ScenarioModel]:
    content = files("tidesim.scenarios").joinpath("scenarios.yaml").read_text()
    return validate_scenario_file_dict(yaml.safe_load(content)).scenarios


def scenario_names() -> List[str]:
    return [scenario.name for scenario in load_scenarios()]


def get_scenario(name: str) -> ScenarioModel:
    scenarios: Dict[str, ScenarioModel] = {scenario.name: scenario for scenario in load_scenarios()}
    if name not in scenarios:
        raise KeyError(name)
    return scenarios[name]


__all__ = [
    "FixtureDifference",
    "ScenarioRun",
    "ScenarioRunner",
    "fixture_differences",
    "get_scenario",
    "load_scenarios",
    "scenario_names",
]
