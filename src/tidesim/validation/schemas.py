from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tidesim.core.categories import DASHBOARD_ORDER, Category
from tidesim.core.windows import DataRecencyFilter, SummarizationPeriod

LATEST_SCHEMA_VERSION = "1.0"


def _round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CategoryCountSpec(BaseModel):
    """Requested patients per category, optionally as one shared combination."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    counts: Dict[Category, int] = Field(default_factory=dict)
    combination: Optional[FrozenSet[Category]] = None

    @field_validator("counts", mode="before")
    @classmethod
    def _parse_count_keys(cls, value: Any) -> Dict[Category, int]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("counts must be a mapping of category to count")
        parsed: Dict[Category, int] = {}
        for key, count in value.items():
            category = Category.parse(key)
            if category in parsed:
                raise ValueError(f"category '{category.value}' given twice")
            if isinstance(count, bool) or not isinstance(count, int):
                raise ValueError(f"count for '{category.value}' must be an integer")
            if count < 0:
                raise ValueError(f"count for '{category.value}' must be >= 0")
            parsed[category] = count
        return parsed

    @field_validator("combination", mode="before")
    @classmethod
    def _parse_combination(cls, value: Any) -> Optional[FrozenSet[Category]]:
        if value is None:
            return None
        if isinstance(value, str):
            value = [part for part in value.split("+") if part.strip()]
        members = frozenset(Category.parse(item) for item in value)
        if not members:
            raise ValueError("combination must name at least one category")
        return members

    @classmethod
    def from_counts(cls, counts: Dict[Any, int], combination: Optional[Any] = None) -> "CategoryCountSpec":
        return cls.model_validate({"counts": counts, "combination": combination})

    def count(self, category: Category) -> int:
        return self.counts.get(category, 0)

    def requested(self) -> Dict[Category, int]:
        """Nonzero counts in dashboard order."""
        return {category: self.counts[category] for category in DASHBOARD_ORDER if self.counts.get(category)}

    def scaled(self, factor: float) -> "CategoryCountSpec":
        """Scale every count by *factor*, rounding half up."""
        if factor < 0:
            raise ValueError("factor must be >= 0")
        counts = {category: _round_half_up(count * factor) for category, count in self.counts.items()}
        return CategoryCountSpec(counts=counts, combination=self.combination)


class OffsetSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    offset_minutes: int = Field(ge=0)
    period_length_days: int = Field(ge=1)
    patient_name_prefix: str = Field(min_length=1)
    clinic_id: str = ""
    tag_id: str = ""


class ScenarioCallModel(BaseModel):
    """One generation call inside a scenario."""
    model_config = ConfigDict(extra="forbid")

    counts: Dict[str, int] = Field(default_factory=dict)
    combination: Optional[List[str]] = None
    offset_minutes: int = Field(default=0, ge=0)
    period_length_days: int = Field(ge=1)
    patient_name_prefix: str = Field(min_length=1)

    @field_validator("counts")
    @classmethod
    def _check_counts(cls, value: Dict[str, int]) -> Dict[str, int]:
        for key, count in value.items():
            Category.parse(key)
            if count < 0:
                raise ValueError(f"count for '{key}' must be >= 0")
        return value

    def count_spec(self) -> CategoryCountSpec:
        return CategoryCountSpec.from_counts(self.counts, self.combination)

    def offset_spec(self, clinic_id: str = "", tag_id: str = "") -> OffsetSpec:
        return OffsetSpec(
            offset_minutes=self.offset_minutes,
            period_length_days=self.period_length_days,
            patient_name_prefix=self.patient_name_prefix,
            clinic_id=clinic_id,
            tag_id=tag_id,
        )


class ScenarioCheckModel(BaseModel):
    """A dashboard view to verify, with the counts the fixture documents."""
    model_config = ConfigDict(extra="forbid")

    recency: str
    period: str
    categories: Optional[List[str]] = None
    expected: Dict[str, int] = Field(default_factory=dict)

    @field_validator("recency")
    @classmethod
    def _check_recency(cls, value: str) -> str:
        DataRecencyFilter.parse(value)
        return value

    @field_validator("period")
    @classmethod
    def _check_period(cls, value: str) -> str:
        SummarizationPeriod.parse(value)
        return value

    @field_validator("categories", "expected")
    @classmethod
    def _check_category_names(cls, value: Any) -> Any:
        if value:
            for key in value:
                Category.parse(key)
        return value

    @property
    def recency_filter(self) -> DataRecencyFilter:
        return DataRecencyFilter.parse(self.recency)

    @property
    def summarization_period(self) -> SummarizationPeriod:
        return SummarizationPeriod.parse(self.period)

    def category_list(self) -> Optional[List[Category]]:
        if self.categories is None:
            return None
        return [Category.parse(item) for item in self.categories]

    def expected_counts(self) -> Dict[Category, int]:
        return {Category.parse(key): count for key, count in self.expected.items()}


class ScenarioModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    schema_version: str = Field(default=LATEST_SCHEMA_VERSION, min_length=1)
    description: Optional[str] = None
    tag_variable: str = Field(default="TAG_ID", min_length=1)
    calls: List[ScenarioCallModel] = Field(min_length=1)
    checks: List[ScenarioCheckModel] = Field(default_factory=list)

    @field_validator("schema_version", mode="before")
    @classmethod
    def _normalize_schema_version(cls, value: Any) -> str:
        if isinstance(value, (int, float)):
            return str(value)
        if value is None:
            return LATEST_SCHEMA_VERSION
        return str(value)

    @model_validator(mode="after")
    def _check_unique_prefixes(self) -> "ScenarioModel":
        seen = set()
        for call in self.calls:
            key = (call.patient_name_prefix, call.offset_minutes)
            if key in seen:
                raise ValueError(
                    f"duplicate call for prefix '{call.patient_name_prefix}' at offset {call.offset_minutes}"
                )
            seen.add(key)
        return self


class ScenarioFileModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    scenarios: List[ScenarioModel] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_names(self) -> "ScenarioFileModel":
        names = [scenario.name for scenario in self.scenarios]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate scenario names: {', '.join(duplicates)}")
        return self
