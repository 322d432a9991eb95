import pytest

from tidesim.config import (
    DEFAULT_BASE_URL,
    Credentials,
    load_environment,
    scoped_environment,
    tag_variable,
)
from tidesim.errors import InvalidConfiguration, MissingConfiguration

ENV = {
    "TIDEPOOL_USERNAME": "clinician@example.com",
    "TIDEPOOL_PASSWORD": "secret",
    "CLINIC_ID": "clinic-1",
    "TAG_ID": "tag-default",
    "TAG_SCENARIO1_ID": "tag-s1",
    "TAG_SCENARIO4_ID": "tag-s4",
    "SETUP_DASHBOARD_DATA": "true",
}


def test_scenario_variables_scoped_to_active_scenario():
    scoped = scoped_environment(ENV, "scenario4")
    assert "TAG_SCENARIO4_ID" in scoped
    assert "TAG_SCENARIO1_ID" not in scoped
    assert scoped["CLINIC_ID"] == "clinic-1"


def test_scenario_number_matched_whole():
    env = {"TAG_SCENARIO1_ID": "tag-s1", "TAG_SCENARIO10_ID": "tag-s10", "TAG_SCENARIO12_ID": "tag-s12"}
    assert scoped_environment(env, "scenario1") == {"TAG_SCENARIO1_ID": "tag-s1"}
    assert scoped_environment(env, "scenario10") == {"TAG_SCENARIO10_ID": "tag-s10"}
    assert load_environment("scenario1", environ=env).tag_id == "tag-s1"


def test_no_scenario_drops_all_scenario_variables():
    scoped = scoped_environment(ENV)
    assert not any("SCENARIO" in key for key in scoped)


def test_empty_values_dropped():
    assert "CLINIC_ID" not in scoped_environment({"CLINIC_ID": ""})


def test_load_environment_defaults():
    env = load_environment("scenario1", environ=ENV)
    assert env.tag_id == "tag-s1"
    assert env.clinic_id == "clinic-1"
    assert env.base_url == DEFAULT_BASE_URL
    assert env.setup_dashboard_data is True
    assert env.scale_down_dataset is False
    assert env.scale_factor == 1.0
    assert env.wait_summary_ms == 60000
    assert env.wait_after_click_ms == 1000
    assert env.wait_summary_seconds == 60.0


def test_tag_falls_back_to_tag_id():
    env = load_environment("create-dashboard-offset", environ=ENV)
    assert env.tag_id == "tag-default"
    assert tag_variable("scenario-3") == "TAG_SCENARIO3_ID"
    assert tag_variable(None) == "TAG_ID"


def test_scale_and_waits_parsed():
    env = load_environment(
        environ={
            "SCALE_DOWN_DATASET": "TRUE",
            "WAIT_SUMMARY_CALCULATION_FINISH": "1500",
            "WAIT_AFTER_DASHBOARD_CLICK": "250",
            "TIDEPOOL_BASE_URL": "https://int-api.tidepool.org/",
        }
    )
    assert env.scale_factor == pytest.approx(0.1)
    assert env.wait_summary_ms == 1500
    assert env.wait_after_click_seconds == pytest.approx(0.25)
    assert env.base_url == "https://int-api.tidepool.org"


@pytest.mark.parametrize(
    "key, raw",
    [
        ("WAIT_SUMMARY_CALCULATION_FINISH", "soon"),
        ("WAIT_SUMMARY_CALCULATION_FINISH", "-5"),
        ("WAIT_AFTER_DASHBOARD_CLICK", "1.5s"),
    ],
)
def test_bad_wait_is_invalid_not_missing(key, raw):
    with pytest.raises(InvalidConfiguration) as excinfo:
        load_environment(environ={key: raw})
    assert not isinstance(excinfo.value, MissingConfiguration)
    assert isinstance(excinfo.value, ValueError)
    assert key in str(excinfo.value)


def test_credentials_required():
    env = load_environment(environ={"CLINIC_ID": "clinic-1"})
    with pytest.raises(MissingConfiguration):
        env.credentials()
    with pytest.raises(MissingConfiguration):
        env.require_tag()
    assert env.require_clinic() == "clinic-1"


def test_credentials_hide_password():
    creds = Credentials(username="u", password="p")
    assert "password" not in repr(creds)
    assert creds.base_url == DEFAULT_BASE_URL
