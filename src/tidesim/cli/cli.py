import typer  # type: ignore
import json
import logging
from pathlib import Path
from typing import Dict, List, NoReturn, Optional
from typing_extensions import Annotated

import pandas as pd
from dotenv import load_dotenv
from pydantic import ValidationError

from rich.console import Console  # type: ignore
from rich.table import Table  # type: ignore
from rich.panel import Panel  # type: ignore

from tidesim.config import SCALE_DOWN_FACTOR, ScenarioEnvironment, load_environment
from tidesim.core.categories import DASHBOARD_ORDER, Category
from tidesim.core.summary import as_utc
from tidesim.core.windows import DataRecencyFilter, ExpectedCountTable, SummarizationPeriod
from tidesim.data.store import InMemoryPatientStore
from tidesim.data.tidepool import TidepoolClient, TidepoolPatientStore
from tidesim.errors import TideSimError
from tidesim.population.generator import Population
from tidesim.scenarios import ScenarioRunner, fixture_differences, get_scenario, load_scenarios
from tidesim.validation import format_validation_error, load_count_spec
from tidesim.validation.schemas import OffsetSpec, ScenarioModel
from tidesim.verification.verifier import CategorizationVerifier


app = typer.Typer(help="tidesim - synthetic patient populations and expected counts for the TIDE dashboard.")
scenarios_app = typer.Typer(help="Built-in dashboard scenarios.")
app.add_typer(scenarios_app, name="scenarios")

SCALE_DOWN_HELP = "Scale counts by 0.1 (also on when SCALE_DOWN_DATASET is set)"


@app.callback()
def main(
    env_file: Annotated[Path, typer.Option(help="Environment file to load before reading settings")] = Path(".env"),
    log_level: Annotated[str, typer.Option(help="Logging level (DEBUG, INFO, WARNING)")] = "WARNING",
):
    """Load the environment file and configure logging."""
    if env_file.is_file():
        load_dotenv(env_file, override=False)
    logging.basicConfig(level=log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _fail(console: Console, message: str) -> NoReturn:
    console.print(f"[bold red]Error: {message}[/bold red]")
    raise typer.Exit(code=1)


def _load_scenario(name: str, console: Console) -> ScenarioModel:
    try:
        return get_scenario(name)
    except KeyError:
        _fail(console, f"Unknown scenario '{name}'.")


def _parse_now(now: Optional[str]) -> pd.Timestamp:
    return as_utc(now) if now else as_utc(pd.Timestamp.now(tz="UTC"))


def _scale_factor(env: ScenarioEnvironment, scale_down: bool) -> float:
    return SCALE_DOWN_FACTOR if scale_down else env.scale_factor


def _counts_table(table: ExpectedCountTable, period: SummarizationPeriod, title: str) -> Table:
    rich_table = Table(title=title)
    rich_table.add_column("Category", style="cyan")
    for recency in DataRecencyFilter:
        rich_table.add_column(recency.label, justify="right")
    for category in DASHBOARD_ORDER:
        rich_table.add_row(
            category.dashboard_label,
            *[str(table.get(category, recency, period)) for recency in DataRecencyFilter],
        )
    return rich_table


@scenarios_app.command("list")
def scenarios_list():
    """List the built-in scenarios."""
    console = Console()
    table = Table(title="Dashboard Scenarios", show_lines=False)
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Tag Variable")
    table.add_column("Calls", justify="right")
    table.add_column("Checks", justify="right")
    for scenario in load_scenarios():
        table.add_row(
            scenario.name,
            scenario.description or "",
            scenario.tag_variable,
            str(len(scenario.calls)),
            str(len(scenario.checks)),
        )
    console.print(table)


@scenarios_app.command("show")
def scenarios_show(
    name: Annotated[str, typer.Option(help="Scenario name (e.g., scenario1)")],
):
    """Show a scenario definition."""
    console = Console()
    scenario = _load_scenario(name, console)
    console.print_json(json.dumps(scenario.model_dump(mode="json"), indent=2))


@app.command()
def expected(
    scenario: Annotated[str, typer.Option(help="Scenario name")],
    period: Annotated[Optional[str], typer.Option(help="Summarization period to show (default: all)")] = None,
    now: Annotated[Optional[str], typer.Option(help="Reference time (ISO 8601, default: current time)")] = None,
    scale_down: Annotated[bool, typer.Option(help=SCALE_DOWN_HELP)] = False,
    output: Annotated[Optional[Path], typer.Option(help="Write the full table to this CSV file")] = None,
):
    """Predict dashboard counts for a scenario."""
    console = Console()
    model = _load_scenario(scenario, console)
    try:
        periods = [SummarizationPeriod.parse(period)] if period else list(SummarizationPeriod)
        reference = _parse_now(now)
        env = load_environment(model.name, tag_variable_name=model.tag_variable)
        factor = _scale_factor(env, scale_down)
        population = ScenarioRunner(InMemoryPatientStore(), env).build(model, reference, scale_factor=factor)
        table = population.expected_counts(reference)
    except (TideSimError, ValueError) as e:
        _fail(console, str(e))

    console.print(Panel(f"{len(population)} patients across {len(model.calls)} calls", title=model.name))
    for summarization in periods:
        console.print(_counts_table(table, summarization, f"Summarizing {summarization.value} of data"))

    if factor == 1.0:
        for diff in fixture_differences(model, table):
            console.print(
                f"[yellow]{diff.recency} / {diff.period}: documented {diff.documented} "
                f"for {diff.category.dashboard_label}, computed {diff.computed}[/yellow]"
            )
    if output:
        table.to_frame().to_csv(output, index=False)
        console.print(f"[green]Expected counts written to {output}[/green]")


@app.command()
def generate(
    output_dir: Annotated[Path, typer.Option(help="Directory to write patients, samples and expected counts")],
    scenario: Annotated[Optional[str], typer.Option(help="Scenario name")] = None,
    counts: Annotated[Optional[Path], typer.Option(help="YAML/JSON category counts (instead of --scenario)")] = None,
    offset_minutes: Annotated[int, typer.Option(help="Minutes since the last upload")] = 0,
    period_days: Annotated[int, typer.Option(help="Days of data per patient")] = 14,
    prefix: Annotated[str, typer.Option(help="Patient name prefix")] = "Test Patient",
    now: Annotated[Optional[str], typer.Option(help="Reference time (ISO 8601, default: current time)")] = None,
    scale_down: Annotated[bool, typer.Option(help=SCALE_DOWN_HELP)] = False,
):
    """Generate a synthetic population and write it to CSV/JSON."""
    console = Console()
    if (scenario is None) == (counts is None):
        _fail(console, "Pass exactly one of --scenario or --counts.")
    reference = _parse_now(now)
    try:
        if scenario is not None:
            model = _load_scenario(scenario, console)
            env = load_environment(model.name, tag_variable_name=model.tag_variable)
            population = ScenarioRunner(InMemoryPatientStore(), env).build(
                model, reference, scale_factor=_scale_factor(env, scale_down)
            )
        else:
            population = Population()
            offset = OffsetSpec(
                offset_minutes=offset_minutes,
                period_length_days=period_days,
                patient_name_prefix=prefix,
            )
            population.add(load_count_spec(counts), offset, reference)  # type: ignore[arg-type]
    except ValidationError as e:
        console.print("[bold red]Invalid input:[/bold red]")
        for line in format_validation_error(e):
            console.print(f"- {line}")
        raise typer.Exit(code=1)
    except TideSimError as e:
        _fail(console, str(e))

    output_dir.mkdir(parents=True, exist_ok=True)
    population.to_frame().to_csv(output_dir / "patients.csv", index=False)
    population.samples_frame().to_csv(output_dir / "samples.csv", index=False)
    table = population.expected_counts(reference)
    table.to_frame().to_csv(output_dir / "expected_counts.csv", index=False)
    manifest = {
        "now": reference.isoformat(),
        "scenario": scenario,
        "patients": [patient.to_dict() for patient in population.patients],
    }
    with open(output_dir / "population.json", "w") as f:
        json.dump(manifest, f, indent=2)
    console.print(f"[green]Generated {len(population)} patients in '{output_dir}'[/green]")


@app.command()
def run(
    scenario: Annotated[str, typer.Option(help="Scenario name")],
    now: Annotated[Optional[str], typer.Option(help="Reference time (ISO 8601, default: current time)")] = None,
    manifest: Annotated[Optional[Path], typer.Option(help="Write created ids and the reference time here")] = None,
):
    """Delete the scenario's tagged patients, then create the scenario in Tidepool."""
    console = Console()
    model = _load_scenario(scenario, console)
    reference = _parse_now(now)
    try:
        env = load_environment(model.name, tag_variable_name=model.tag_variable)
        store = TidepoolPatientStore(TidepoolClient(base_url=env.base_url), env.credentials())
        result = ScenarioRunner(store, env).run(model, reference, setup=True)
    except TideSimError as e:
        _fail(console, str(e))

    console.print(f"[green]Deleted {result.deleted} and created {len(result.patient_ids)} patients.[/green]")
    for check in model.checks:
        console.print(_counts_table(result.expected, check.summarization_period, f"Expected for {check.period}"))
    if manifest:
        with open(manifest, "w") as f:
            json.dump(
                {
                    "scenario": model.name,
                    "now": reference.isoformat(),
                    "scale_factor": result.scale_factor,
                    "patient_ids": result.patient_ids,
                },
                f,
                indent=2,
            )


@app.command()
def cleanup(
    scenario: Annotated[str, typer.Option(help="Scenario name")],
):
    """Delete every patient under the scenario's tag."""
    console = Console()
    model = _load_scenario(scenario, console)
    try:
        env = load_environment(model.name, tag_variable_name=model.tag_variable)
        store = TidepoolPatientStore(TidepoolClient(base_url=env.base_url), env.credentials())
        deleted = ScenarioRunner(store, env).cleanup(model)
    except TideSimError as e:
        _fail(console, str(e))
    console.print(f"[green]Deleted {deleted} patients.[/green]")


@app.command()
def verify(
    scenario: Annotated[str, typer.Option(help="Scenario name")],
    observed: Annotated[Path, typer.Option(help="JSON file mapping dashboard section to row count")],
    now: Annotated[str, typer.Option(help="Reference time the scenario was created with (ISO 8601)")],
    recency: Annotated[str, typer.Option(help="Data recency filter, e.g. '24 hours'")] = "24 hours",
    period: Annotated[str, typer.Option(help="Summarization period, e.g. '14 days'")] = "14 days",
    categories: Annotated[Optional[List[str]], typer.Option(help="Only check these categories")] = None,
    scale_down: Annotated[bool, typer.Option(help=SCALE_DOWN_HELP)] = False,
):
    """Compare observed dashboard counts with the scenario's expected counts."""
    console = Console()
    model = _load_scenario(scenario, console)
    if not observed.is_file():
        _fail(console, f"Observed counts file '{observed}' not found.")
    try:
        env = load_environment(model.name, tag_variable_name=model.tag_variable)
        with open(observed, "r") as f:
            observed_counts: Dict[str, int] = json.load(f)
        reference = _parse_now(now)
        population = ScenarioRunner(InMemoryPatientStore(), env).build(
            model, reference, scale_factor=_scale_factor(env, scale_down)
        )
        verifier = CategorizationVerifier(population.expected_counts(reference))
        checked = [Category.parse(item) for item in categories] if categories else None
        verifier.verify(
            observed_counts,
            DataRecencyFilter.parse(recency),
            SummarizationPeriod.parse(period),
            categories=checked,
        )
    except (TideSimError, ValueError) as e:
        _fail(console, str(e))
    console.print("[green]Dashboard counts match.[/green]")


if __name__ == "__main__":
    app()
