"""``cloudplan pipeline`` commands: generate, check and run the CI pipeline locally."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer

from cloudplan.cli.errors import handle_error

if TYPE_CHECKING:
    from rich.console import Console

    from cloudplan.pipeline.runner import PipelineResult

pipeline_app = typer.Typer(
    name="pipeline",
    help="Generate, validate and run the plan pipeline.",
    no_args_is_help=True,
)

PipelinePath = Annotated[
    Path,
    typer.Option("--file", "-f", help="Path to the pipeline definition."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]

_DEFAULT_PIPELINE = Path(".cloudplan-ci.yml")

_STATUS_STYLES = {"success": "green", "failed": "red", "skipped": "bright_black"}


def _use_color(no_color: bool) -> bool:
    return not (no_color or os.environ.get("NO_COLOR"))


@pipeline_app.command("init")
def init_cmd(
    file: PipelinePath = _DEFAULT_PIPELINE,
    region: Annotated[
        str, typer.Option("--region", help="Value of the AWS_REGION pipeline variable.")
    ] = "us-east-1",
    branch: Annotated[
        str, typer.Option("--branch", help="Only run the plan job for pushes to this branch.")
    ] = "main",
    force: Annotated[bool, typer.Option("--force", help="Overwrite an existing file.")] = False,
) -> None:
    """Write the default plan pipeline."""
    from cloudplan.pipeline.defaults import write_pipeline

    if not write_pipeline(file, overwrite=force, region=region, branch=branch):
        typer.echo(f"{file} already exists (use --force to overwrite).", err=True)
        raise typer.Exit(1)
    typer.echo(f"Wrote {file}")


@pipeline_app.command("validate")
def validate_cmd(
    file: PipelinePath = _DEFAULT_PIPELINE,
    no_color: NoColor = False,
) -> None:
    """Validate the pipeline definition."""
    from cloudplan.cli.formatting import styler
    from cloudplan.pipeline.loader import load_pipeline

    color = _use_color(no_color)
    try:
        definition = load_pipeline(file)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    for stage in definition.stages:
        jobs = ", ".join(j.name for j in definition.jobs_in_stage(stage)) or "(no jobs)"
        typer.echo(f"{stage}: {jobs}")
    typer.echo(styler(color)("Pipeline is valid.", fg="green"))


def _print_summary(console: Console, result: PipelineResult) -> None:
    from rich.markup import escape
    from rich.table import Table

    table = Table(title=f"Pipeline for branch {result.branch}")
    table.add_column("Stage")
    table.add_column("Job")
    table.add_column("Status")
    table.add_column("Detail")
    table.add_column("Artifacts")
    for job in result.jobs:
        if job.failed_command is not None:
            detail = f"{job.failure_phase}: `{job.failed_command}` exited {job.exit_code}"
        else:
            detail = job.skip_reason or ""
        artifacts = [str(p) for p in job.retained]
        artifacts.extend(f"missing: {m}" for m in job.missing)
        table.add_row(
            job.stage,
            job.name,
            f"[{_STATUS_STYLES[job.status.value]}]{job.status.value}[/]",
            escape(detail),
            escape("\n".join(artifacts)),
        )
    console.print(table)


@pipeline_app.command("run")
def run_cmd(
    file: PipelinePath = _DEFAULT_PIPELINE,
    branch: Annotated[
        str | None,
        typer.Option("--branch", help="Branch of the simulated push (default: current branch)."),
    ] = None,
    artifacts_dir: Annotated[
        Path,
        typer.Option("--artifacts-dir", help="Where retained artifacts are written."),
    ] = Path("artifacts"),
    workdir: Annotated[
        Path | None,
        typer.Option("--workdir", help="Project directory copied into each build directory."),
    ] = None,
    no_color: NoColor = False,
) -> None:
    """Run the pipeline locally for a push to a branch."""
    from rich.console import Console
    from rich.markup import escape

    from cloudplan.pipeline.loader import load_pipeline
    from cloudplan.pipeline.runner import PipelineRunner
    from cloudplan.pipeline.triggers import PushEvent, current_commit, resolve_branch

    color = _use_color(no_color)
    console = Console(no_color=not color, highlight=False)
    project_dir = workdir if workdir is not None else file.resolve().parent
    try:
        definition = load_pipeline(file)
        event = PushEvent(
            branch=resolve_branch(project_dir, override=branch),
            commit_sha=current_commit(project_dir),
        )
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    console.rule(f"push to {escape(event.branch)}")
    runner = PipelineRunner(
        project_dir,
        artifacts_dir,
        echo=lambda text: console.print(escape(text)),
    )
    try:
        result = runner.run(definition, event)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    console.print()
    _print_summary(console, result)
    if result.exit_code:
        raise typer.Exit(result.exit_code)
