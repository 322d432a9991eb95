from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml
from pydantic import ValidationError

from tidesim.validation.schemas import (
    CategoryCountSpec,
    OffsetSpec,
    ScenarioCallModel,
    ScenarioCheckModel,
    ScenarioFileModel,
    ScenarioModel,
)


def _read_mapping(path: Path) -> Any:
    text = path.read_text()
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def validate_count_spec_dict(data: Dict[str, Any]) -> CategoryCountSpec:
    # Bare {label: count} mappings are accepted alongside {"counts": ..., "combination": ...}.
    if "counts" not in data and "combination" not in data:
        data = {"counts": data}
    return CategoryCountSpec.model_validate(data)


def validate_offset_spec_dict(data: Dict[str, Any]) -> OffsetSpec:
    return OffsetSpec.model_validate(data)


def validate_scenario_dict(data: Dict[str, Any]) -> ScenarioModel:
    return ScenarioModel.model_validate(data)


def validate_scenario_file_dict(data: Any) -> ScenarioFileModel:
    if isinstance(data, list):
        data = {"scenarios": data}
    return ScenarioFileModel.model_validate(data or {})


def load_scenario_file(path: Union[str, Path]) -> ScenarioFileModel:
    return validate_scenario_file_dict(_read_mapping(Path(path)))


def load_count_spec(path: Union[str, Path]) -> CategoryCountSpec:
    return validate_count_spec_dict(_read_mapping(Path(path)))


def format_validation_error(error: ValidationError) -> List[str]:
    lines: List[str] = []
    for entry in error.errors():
        loc = ".".join(str(item) for item in entry.get("loc", []))
        msg = entry.get("msg", "Invalid value")
        lines.append(f"{loc}: {msg}")
    return lines


__all__ = [
    "CategoryCountSpec",
    "OffsetSpec",
    "ScenarioCallModel",
    "ScenarioCheckModel",
    "ScenarioFileModel",
    "ScenarioModel",
    "format_validation_error",
    "load_count_spec",
    "load_scenario_file",
    "validate_count_spec_dict",
    "validate_offset_spec_dict",
    "validate_scenario_dict",
    "validate_scenario_file_dict",
]
