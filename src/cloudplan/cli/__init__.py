"""CLI application for cloudplan."""

from __future__ import annotations

import logging
import os
import sys

import typer

from cloudplan import __version__

app = typer.Typer(
    name="cloudplan",
    no_args_is_help=True,
    add_completion=False,
)

LOG_ENV_VAR = "CLOUDPLAN_LOG"

_LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
_VERBOSITY = {1: logging.INFO, 2: logging.DEBUG}
# boto's wire-level loggers only open up at -vvv.
_AWS_LOGGERS = ("boto3", "botocore", "urllib3")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cloudplan {__version__}")
        raise typer.Exit


def _level_from_env(raw: str) -> int:
    level = logging.getLevelName(raw.upper())
    if isinstance(level, int):
        return level
    typer.echo(
        f"WARNING: ignoring {LOG_ENV_VAR}={raw!r}, expected DEBUG, INFO, WARNING or ERROR",
        err=True,
    )
    return logging.INFO


def _configure_logging(verbose: int) -> None:
    """Route ``cloudplan.*`` log records to stderr.

    ``CLOUDPLAN_LOG`` wins over ``-v`` flags.  Without either, logging stays
    unconfigured and only warnings reach stderr.
    """
    env_value = os.environ.get(LOG_ENV_VAR, "")
    if env_value:
        level = _level_from_env(env_value)
    elif verbose:
        level = _VERBOSITY.get(verbose, logging.DEBUG)
    else:
        return

    logging.basicConfig(level=logging.WARNING, format=_LOG_FORMAT, stream=sys.stderr, force=True)
    logging.getLogger("cloudplan").setLevel(level)
    aws_level = logging.DEBUG if verbose >= 3 else logging.WARNING
    for name in _AWS_LOGGERS:
        logging.getLogger(name).setLevel(aws_level)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase log verbosity (-v info, -vv debug, -vvv include AWS SDK).",
    ),
) -> None:
    """Plan cloud infrastructure from YAML and run the plan pipeline locally."""
    _ = version
    _configure_logging(verbose)


# Commands register themselves on ``app`` at import time.
from cloudplan.cli import commands as _commands  # noqa: E402, F401
from cloudplan.cli.pipeline_commands import pipeline_app  # noqa: E402

app.add_typer(pipeline_app, name="pipeline")
