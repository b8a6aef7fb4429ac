"""The canonical plan pipeline."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap, CommentedSeq

from cloudplan import __version__

if TYPE_CHECKING:
    from pathlib import Path

PLAN_FILE = "plan.out"
PLAN_STAGE = "plan"
PLAN_JOB = "cloudplan_plan"


def _seq(*items: str) -> CommentedSeq:
    return CommentedSeq(items)


def default_pipeline(
    *,
    version: str = __version__,
    region: str = "us-east-1",
    branch: str = "main",
    plan_file: str = PLAN_FILE,
) -> CommentedMap:
    """Single-stage pipeline that installs a pinned cloudplan and saves a plan.

    The plan file is retained whether the plan succeeds or fails, and the
    job only runs for pushes to *branch*.
    """
    job = CommentedMap()
    job["stage"] = PLAN_STAGE
    job["script"] = _seq(
        'echo "Initializing cloudplan..."',
        "cloudplan init",
        'echo "Running cloudplan plan..."',
        f"cloudplan plan --no-refresh --out {plan_file}",
    )
    artifacts = CommentedMap()
    artifacts["paths"] = _seq(plan_file)
    artifacts["when"] = "always"
    job["artifacts"] = artifacts
    job["only"] = _seq(branch)

    pipeline = CommentedMap()
    pipeline["stages"] = _seq(PLAN_STAGE)
    variables = CommentedMap()
    variables["AWS_REGION"] = region
    pipeline["variables"] = variables
    pipeline["before_script"] = _seq(
        'echo "Setting up environment..."',
        f"pip install cloudplan=={version}",
        "cloudplan --version",
    )
    pipeline[PLAN_JOB] = job
    return pipeline


def _yaml() -> YAML:
    yaml = YAML()
    yaml.default_flow_style = False
    yaml.indent(mapping=2, sequence=4, offset=2)
    return yaml


def render_pipeline(**kwargs: str) -> str:
    """The default pipeline as YAML text; keyword arguments as for ``default_pipeline``."""
    buf = io.StringIO()
    _yaml().dump(default_pipeline(**kwargs), buf)
    return buf.getvalue()


def write_pipeline(path: Path, *, overwrite: bool = False, **kwargs: str) -> bool:
    """Write the default pipeline to *path*. Returns False if it already exists."""
    if path.exists() and not overwrite:
        return False
    path.write_text(render_pipeline(**kwargs), encoding="utf-8")
    return True
