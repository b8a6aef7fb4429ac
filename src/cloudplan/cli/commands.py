"""CLI command implementations."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer

from cloudplan.cli import app
from cloudplan.cli.errors import handle_error

if TYPE_CHECKING:
    from cloudplan.config.schema import Config
    from cloudplan.engine.types import Plan, PlanFailure

DEFAULT_CONFIG = Path("cloudplan.yaml")

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the configuration file."),
]

VarOption = Annotated[
    list[str] | None,
    typer.Option(
        "--var",
        help="Set a parameter, NAME=VALUE. Can be given more than once.",
        metavar="NAME=VALUE",
    ),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]

NoRefresh = Annotated[
    bool,
    typer.Option("--no-refresh", help="Skip refreshing state from the cloud."),
]

AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", help="Skip interactive approval."),
]

JsonOutput = Annotated[
    bool,
    typer.Option("--json", help="Print machine-readable JSON."),
]


def _use_color(no_color: bool) -> bool:
    """Determine whether to use color output."""
    return not (no_color or os.environ.get("NO_COLOR"))


def _load(config: Path, var: list[str] | None) -> Config:
    from cloudplan.config import load
    from cloudplan.config.parameters import parse_assignments

    return load(config, overrides=parse_assignments(var or []))


def _echo_plan(plan_obj: Plan, *, color: bool) -> None:
    from cloudplan.cli.formatting import format_outputs, format_plan, format_plan_summary

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))
    if plan_obj.outputs:
        typer.echo()
        typer.echo(format_outputs(plan_obj.outputs, color=color, header="Changes to Outputs:"))


def _save_failure(
    out: Path,
    exc: Exception,
    cfg: Config | None,
    *,
    config_path: Path,
    destroy: bool,
    refresh: bool,
) -> None:
    """Leave a failure record at *out* so a pipeline artifact explains the error."""
    from cloudplan.engine.types import PlanFailure

    failure = PlanFailure.from_exception(
        exc, config=cfg, config_path=config_path, destroy=destroy, refresh=refresh
    )
    try:
        failure.save(out)
    except OSError as write_exc:
        typer.echo(f"Could not write failure record to {out}: {write_exc}", err=True)
        return
    typer.echo(f"\nFailure recorded in {out}", err=True)


def _echo_failure(failure: PlanFailure, *, color: bool) -> None:
    from cloudplan.cli.formatting import styler

    style = styler(color)
    where = "an unloaded configuration"
    if failure.workspace:
        where = f"workspace '{failure.workspace}'"
    typer.echo(f"Failed plan for {where} (created {failure.created_at.isoformat()})")
    if failure.config_path:
        typer.echo(f"Configuration: {failure.config_path}")
    typer.echo()
    if failure.errors:
        typer.echo(style(f"{failure.error}:", fg="red"))
        for e in failure.errors:
            typer.echo(style(f"  - {e}", fg="red"))
    else:
        typer.echo(style(f"{failure.error}: {failure.message}", fg="red"))


@app.command()
def init(
    config: ConfigPath = DEFAULT_CONFIG,
    var: VarOption = None,
    no_color: NoColor = False,
) -> None:
    """Prepare the working directory: check the configuration and create the state file."""
    from cloudplan.cli.formatting import styler
    from cloudplan.config import init as init_fn

    color = _use_color(no_color)
    try:
        cfg = _load(config, var)
        state, created = init_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if created:
        typer.echo(f"Created empty state for workspace '{state.workspace}' at {cfg.state_path}")
    else:
        count = len(state.resources)
        typer.echo(
            f"Using existing state at {cfg.state_path} "
            f"({count} resource{'s' if count != 1 else ''} tracked)"
        )
    typer.echo(styler(color)("cloudplan has been successfully initialized!", fg="green"))


@app.command()
def validate(
    config: ConfigPath = DEFAULT_CONFIG,
    var: VarOption = None,
    no_color: NoColor = False,
) -> None:
    """Validate the configuration file."""
    from cloudplan.cli.formatting import styler
    from cloudplan.config import validate as validate_fn

    color = _use_color(no_color)
    try:
        cfg = _load(config, var)
        validate_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(styler(color)("Configuration is valid.", fg="green"))


@app.command()
def plan(
    config: ConfigPath = DEFAULT_CONFIG,
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Save plan to file."),
    ] = None,
    var: VarOption = None,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
    destroy: Annotated[
        bool,
        typer.Option("--destroy", help="Plan the deletion of every resource in state."),
    ] = False,
    detailed_exitcode: Annotated[
        bool,
        typer.Option(
            "--detailed-exitcode",
            help="Exit with 2 when the plan has changes (0 = no changes, 1 = error).",
        ),
    ] = False,
) -> None:
    """Show changes required by the current configuration."""
    from cloudplan.config import plan as plan_fn

    color = _use_color(no_color)
    cfg: Config | None = None
    try:
        cfg = _load(config, var)
        plan_obj = plan_fn(cfg, destroy=destroy, refresh=not no_refresh)
        if out is not None:
            plan_obj.save(out)
    except Exception as exc:
        code = handle_error(exc, color=color)
        if out is not None:
            _save_failure(
                out, exc, cfg, config_path=config, destroy=destroy, refresh=not no_refresh
            )
        raise typer.Exit(code) from exc

    _echo_plan(plan_obj, color=color)
    if out is not None:
        typer.echo(f"\nPlan saved to {out}")

    if detailed_exitcode and plan_obj.has_changes():
        raise typer.Exit(2)


@app.command()
def show(
    plan_file: Annotated[Path, typer.Argument(help="Saved plan file to show.")],
    json_output: JsonOutput = False,
    no_color: NoColor = False,
) -> None:
    """Show a saved plan file.

    A failure record left by ``plan --out`` is shown too; the exit code is then 1.
    """
    from cloudplan.engine.types import PlanFailure, load_plan_file

    color = _use_color(no_color)
    try:
        plan_obj = load_plan_file(plan_file)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if json_output:
        typer.echo(plan_obj.model_dump_json(indent=2))
        if isinstance(plan_obj, PlanFailure):
            raise typer.Exit(1)
        return
    if isinstance(plan_obj, PlanFailure):
        _echo_failure(plan_obj, color=color)
        raise typer.Exit(1)

    meta = plan_obj.metadata
    typer.echo(
        f"Plan for workspace '{meta.workspace}' "
        f"(region {meta.region or 'unset'}, created {meta.created_at.isoformat()})"
    )
    typer.echo()
    _echo_plan(plan_obj, color=color)


@app.command(name="refresh")
def refresh_cmd(
    config: ConfigPath = DEFAULT_CONFIG,
    var: VarOption = None,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Refresh state from the live cloud resources."""
    from cloudplan.cli.formatting import changes_summary, format_changes, format_plan_summary
    from cloudplan.config import refresh as refresh_fn
    from cloudplan.config import save_state

    color = _use_color(no_color)
    try:
        cfg = _load(config, var)
        changes, state = refresh_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not changes:
        typer.echo("No changes. State is up-to-date with the cloud.")
        raise typer.Exit(0)

    typer.echo(format_changes(changes, color=color))
    typer.echo()
    typer.echo(format_plan_summary(changes_summary(changes), color=color, header="Refresh"))
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm("Do you want to update the state file?", abort=True)
        except typer.Abort as e:
            typer.echo("Refresh canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        save_state(cfg, state)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc
    count = len(state.resources)
    typer.echo(f"State refreshed. {count} resource{'s' if count != 1 else ''} tracked.")


@app.command()
def drift(
    config: ConfigPath = DEFAULT_CONFIG,
    var: VarOption = None,
    no_color: NoColor = False,
) -> None:
    """Show drift between state and the live cloud resources."""
    from cloudplan.cli.formatting import format_changes
    from cloudplan.config import drift as drift_fn

    color = _use_color(no_color)
    try:
        cfg = _load(config, var)
        changes = drift_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not changes:
        typer.echo("No drift detected. State is up-to-date with the cloud.")
        raise typer.Exit(0)

    typer.echo("Drift detected:\n")
    typer.echo(format_changes(changes, color=color))


@app.command()
def output(
    name: Annotated[str | None, typer.Argument(help="Name of a single output.")] = None,
    config: ConfigPath = DEFAULT_CONFIG,
    var: VarOption = None,
    json_output: JsonOutput = False,
    no_color: NoColor = False,
) -> None:
    """Show output values recorded in the state file."""
    from cloudplan.cli.formatting import format_outputs, outputs_to_json
    from cloudplan.config import ConfigError
    from cloudplan.config import outputs as outputs_fn

    color = _use_color(no_color)
    try:
        cfg = _load(config, var)
        values = outputs_fn(cfg)
        if name is not None and name not in values:
            raise ConfigError(f"Output '{name}' is not declared")
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if name is not None:
        value = values[name]
        if json_output:
            typer.echo(json.dumps(value.value, sort_keys=True, default=str))
        elif value.value is None:
            typer.echo("null")
        elif isinstance(value.value, str):
            typer.echo(value.value)
        else:
            typer.echo(json.dumps(value.value, sort_keys=True, default=str))
        return

    if json_output:
        typer.echo(outputs_to_json(values))
    elif values:
        typer.echo(format_outputs(values, color=color))
    else:
        typer.echo("No outputs declared.")


@app.command()
def graph(
    config: ConfigPath = DEFAULT_CONFIG,
    var: VarOption = None,
    no_color: NoColor = False,
) -> None:
    """Print the resource dependency graph in Graphviz DOT format."""
    from cloudplan.config import graph as graph_fn

    color = _use_color(no_color)
    try:
        cfg = _load(config, var)
        dep_graph = graph_fn(cfg)
        dep_graph.topological_order()
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(dep_graph.to_dot())
