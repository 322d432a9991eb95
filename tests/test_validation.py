import json

import pytest
from pydantic import ValidationError

from tidesim.core.categories import Category
from tidesim.validation import (
    format_validation_error,
    load_count_spec,
    load_scenario_file,
    validate_count_spec_dict,
    validate_offset_spec_dict,
    validate_scenario_dict,
)
from tidesim.validation.schemas import CategoryCountSpec


def _scenario(**overrides):
    data = {
        "name": "custom",
        "calls": [
            {
                "patient_name_prefix": "Custom",
                "period_length_days": 7,
                "counts": {"Meeting Targets": 2},
            }
        ],
        "checks": [{"recency": "24 hours", "period": "7 days", "expected": {"MeetingTargets": 2}}],
    }
    data.update(overrides)
    return data


class TestCategoryCountSpec:
    def test_labels_are_parsed(self):
        spec = validate_count_spec_dict({"Time below 3.0 mmol/L > 1%": 3, "CGM Wear Time <70%": 0})
        assert spec.count(Category.BELOW_RANGE_1PCT) == 3
        assert spec.requested() == {Category.BELOW_RANGE_1PCT: 3}

    def test_negative_count_rejected(self):
        with pytest.raises(ValidationError):
            CategoryCountSpec.from_counts({"MeetingTargets": -1})

    def test_unknown_label_rejected(self):
        with pytest.raises(ValidationError):
            CategoryCountSpec.from_counts({"Time above 250": 1})

    def test_duplicate_category_rejected(self):
        with pytest.raises(ValidationError):
            CategoryCountSpec.from_counts({"MeetingTargets": 1, "Meeting Targets": 2})

    def test_combination_from_string(self):
        spec = validate_count_spec_dict(
            {"counts": {"BelowRange1pct": 1, "CGMWearLow70pct": 1}, "combination": "BelowRange1pct+CGMWearLow70pct"}
        )
        assert spec.combination == frozenset({Category.BELOW_RANGE_1PCT, Category.CGM_WEAR_LOW_70PCT})

    def test_scaled_rounds_half_up(self):
        spec = CategoryCountSpec.from_counts({"BelowRange1pct": 50, "BelowRange4pct": 45, "MeetingTargets": 5})
        scaled = spec.scaled(0.1)
        assert scaled.count(Category.BELOW_RANGE_1PCT) == 5
        assert scaled.count(Category.BELOW_RANGE_4PCT) == 5
        assert scaled.count(Category.MEETING_TARGETS) == 1
        assert spec.scaled(1.0) == spec

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "counts.json"
        path.write_text(json.dumps({"Meeting Targets": 4}))
        assert load_count_spec(path).count(Category.MEETING_TARGETS) == 4


class TestOffsetSpec:
    def test_valid(self):
        spec = validate_offset_spec_dict(
            {"offset_minutes": 1440, "period_length_days": 14, "patient_name_prefix": "Test Patient"}
        )
        assert spec.offset_minutes == 1440
        assert spec.clinic_id == ""

    @pytest.mark.parametrize(
        "data",
        [
            {"offset_minutes": -1, "period_length_days": 14, "patient_name_prefix": "p"},
            {"offset_minutes": 0, "period_length_days": 0, "patient_name_prefix": "p"},
            {"offset_minutes": 0, "period_length_days": 1, "patient_name_prefix": ""},
            {"offset_minutes": 0, "period_length_days": 1, "patient_name_prefix": "p", "extra": 1},
        ],
    )
    def test_invalid(self, data):
        with pytest.raises(ValidationError):
            validate_offset_spec_dict(data)


class TestScenarioModel:
    def test_valid_scenario(self):
        model = validate_scenario_dict(_scenario())
        assert model.calls[0].count_spec().count(Category.MEETING_TARGETS) == 2
        check = model.checks[0]
        assert check.expected_counts() == {Category.MEETING_TARGETS: 2}
        assert check.category_list() is None

    def test_offset_spec_carries_clinic_and_tag(self):
        call = validate_scenario_dict(_scenario()).calls[0]
        spec = call.offset_spec(clinic_id="clinic", tag_id="tag")
        assert (spec.clinic_id, spec.tag_id, spec.period_length_days) == ("clinic", "tag", 7)

    def test_bad_recency_rejected(self):
        with pytest.raises(ValidationError):
            validate_scenario_dict(_scenario(checks=[{"recency": "3 days", "period": "7 days"}]))

    def test_duplicate_calls_rejected(self):
        call = _scenario()["calls"][0]
        with pytest.raises(ValidationError):
            validate_scenario_dict(_scenario(calls=[call, call]))

    def test_empty_calls_rejected(self):
        with pytest.raises(ValidationError):
            validate_scenario_dict(_scenario(calls=[]))

    def test_load_yaml_file(self, tmp_path):
        path = tmp_path / "scenarios.yaml"
        path.write_text(
            "scenarios:\n"
            "  - name: mine\n"
            "    calls:\n"
            "      - patient_name_prefix: Mine\n"
            "        period_length_days: 1\n"
            "        counts: {MeetingTargets: 1}\n"
        )
        scenarios = load_scenario_file(path).scenarios
        assert [s.name for s in scenarios] == ["mine"]

    def test_format_validation_error(self):
        with pytest.raises(ValidationError) as excinfo:
            validate_offset_spec_dict({"offset_minutes": -5, "period_length_days": 1, "patient_name_prefix": "p"})
        lines = format_validation_error(excinfo.value)
        assert lines and lines[0].startswith("offset_minutes:")
