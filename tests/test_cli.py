import json

import pandas as pd
from typer.testing import CliRunner

from tidesim.cli.cli import app

runner = CliRunner()
NOW = "2025-03-01T12:00:00Z"


def _invoke(tmp_path, *args):
    return runner.invoke(app, ["--env-file", str(tmp_path / "missing.env"), *args])


def test_scenarios_list(tmp_path):
    result = _invoke(tmp_path, "scenarios", "list")
    assert result.exit_code == 0
    assert "scenario1" in result.output


def test_scenarios_show_unknown(tmp_path):
    result = _invoke(tmp_path, "scenarios", "show", "--name", "nope")
    assert result.exit_code == 1


def test_expected_writes_csv(tmp_path):
    output = tmp_path / "expected.csv"
    result = _invoke(tmp_path, "expected", "--scenario", "scenario4", "--now", NOW, "--output", str(output))
    assert result.exit_code == 0, result.output
    assert output.exists()
    assert "CGMWearLow70pct" in output.read_text().splitlines()[0]


def test_generate_from_counts_file(tmp_path):
    counts = tmp_path / "counts.json"
    counts.write_text(json.dumps({"Meeting Targets": 2, "CGM Wear Time <70%": 1}))
    out_dir = tmp_path / "population"
    result = _invoke(
        tmp_path,
        "generate",
        "--output-dir", str(out_dir),
        "--counts", str(counts),
        "--period-days", "1",
        "--now", NOW,
    )
    assert result.exit_code == 0, result.output
    manifest = json.loads((out_dir / "population.json").read_text())
    assert len(manifest["patients"]) == 3
    assert (out_dir / "samples.csv").exists()
    assert (out_dir / "expected_counts.csv").exists()


def test_generate_rejects_conflicting_request(tmp_path):
    counts = tmp_path / "counts.json"
    counts.write_text(json.dumps({"Data Issues": 1}))
    result = _invoke(tmp_path, "generate", "--output-dir", str(tmp_path / "out"), "--counts", str(counts))
    assert result.exit_code == 1


def test_generate_reports_invalid_counts(tmp_path):
    counts = tmp_path / "counts.json"
    counts.write_text(json.dumps({"Meeting Targets": -2}))
    result = _invoke(tmp_path, "generate", "--output-dir", str(tmp_path / "out"), "--counts", str(counts))
    assert result.exit_code == 1
    assert "Invalid input" in result.output


def test_verify_match_and_mismatch(tmp_path):
    observed = tmp_path / "observed.json"
    counts = {"Time in Range < 70%": 1, "CGM Wear Time < 70%": 3, "Meeting Targets": 1}
    observed.write_text(json.dumps(counts))
    args = [
        "verify",
        "--scenario", "scenario4",
        "--observed", str(observed),
        "--now", NOW,
        "--recency", "24 hours",
        "--period", "24 hours",
        "--categories", "TimeInRangeLow70pct",
        "--categories", "CGMWearLow70pct",
        "--categories", "MeetingTargets",
    ]
    assert _invoke(tmp_path, *args).exit_code == 0

    observed.write_text(json.dumps({**counts, "Meeting Targets": 0}))
    result = _invoke(tmp_path, *args)
    assert result.exit_code == 1
    assert "Meeting Targets" in result.output


def test_cleanup_requires_credentials(tmp_path, monkeypatch):
    for key in ("TIDEPOOL_USERNAME", "TIDEPOOL_PASSWORD"):
        monkeypatch.delenv(key, raising=False)
    result = _invoke(tmp_path, "cleanup", "--scenario", "scenario4")
    assert result.exit_code == 1


def _below_range_30d(csv_path):
    frame = pd.read_csv(csv_path)
    row = frame[(frame["period"] == "14 days") & (frame["recency"] == "30 days")].iloc[0]
    return int(row["BelowRange1pct"])


def test_scale_down_dataset_applies_to_every_command(tmp_path, monkeypatch):
    monkeypatch.setenv("SCALE_DOWN_DATASET", "true")
    expected_csv = tmp_path / "expected.csv"
    result = _invoke(tmp_path, "expected", "--scenario", "scenario1", "--now", NOW, "--output", str(expected_csv))
    assert result.exit_code == 0, result.output
    assert _below_range_30d(expected_csv) == 17

    out_dir = tmp_path / "population"
    result = _invoke(tmp_path, "generate", "--output-dir", str(out_dir), "--scenario", "scenario1", "--now", NOW)
    assert result.exit_code == 0, result.output
    assert _below_range_30d(out_dir / "expected_counts.csv") == 17
    assert len(json.loads((out_dir / "population.json").read_text())["patients"]) == 37


def test_scale_down_option_matches_environment(tmp_path, monkeypatch):
    monkeypatch.delenv("SCALE_DOWN_DATASET", raising=False)
    expected_csv = tmp_path / "expected.csv"
    result = _invoke(tmp_path, "expected", "--scenario", "scenario1", "--now", NOW, "--output", str(expected_csv))
    assert result.exit_code == 0, result.output
    assert _below_range_30d(expected_csv) == 170
    assert "documented" not in result.output

    result = _invoke(tmp_path, "expected", "--scenario", "scenario1", "--now", NOW, "--scale-down", "--output", str(expected_csv))
    assert result.exit_code == 0, result.output
    assert _below_range_30d(expected_csv) == 17


def test_verify_honours_scale_down_dataset(tmp_path, monkeypatch):
    monkeypatch.setenv("SCALE_DOWN_DATASET", "true")
    observed = tmp_path / "observed.json"
    observed.write_text(json.dumps({"Time below 3.0 mmol/L > 1%": 17}))
    args = [
        "verify",
        "--scenario", "scenario1",
        "--observed", str(observed),
        "--now", NOW,
        "--recency", "30 days",
        "--period", "14 days",
        "--categories", "BelowRange1pct",
    ]
    assert _invoke(tmp_path, *args).exit_code == 0

    monkeypatch.delenv("SCALE_DOWN_DATASET")
    assert _invoke(tmp_path, *args).exit_code == 1
    assert _invoke(tmp_path, *args, "--scale-down").exit_code == 0
