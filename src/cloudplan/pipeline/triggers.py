"""Push events and branch detection."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cloudplan.pipeline.errors import PipelineConfigError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

BRANCH_ENV_VAR = "CI_COMMIT_BRANCH"


@dataclass(frozen=True)
class PushEvent:
    """A push to a branch: the only event that triggers a pipeline."""

    branch: str
    commit_sha: str | None = None


def _git_output(cwd: Path, *args: str) -> str:
    cmd = ["git", "-C", str(cwd), *args]
    try:
        completed = subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as exc:
        raise PipelineConfigError("git executable not found") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        msg = f"Failed to run {' '.join(cmd)}"
        if stderr:
            msg += f": {stderr}"
        raise PipelineConfigError(msg) from exc
    return completed.stdout.strip()


def resolve_branch(
    cwd: Path,
    *,
    override: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Branch being pushed: *override* > ``CI_COMMIT_BRANCH`` > current git branch."""
    if override:
        return override
    environ = os.environ if environ is None else environ
    if branch := environ.get(BRANCH_ENV_VAR):
        return branch
    branch = _git_output(cwd, "branch", "--show-current")
    if branch:
        return branch
    msg = (
        "Could not determine current git branch (detached HEAD or not a git repository). "
        "Use --branch to set it explicitly."
    )
    raise PipelineConfigError(msg)


def current_commit(cwd: Path) -> str | None:
    """HEAD commit of *cwd*, or None outside a git repository."""
    try:
        return _git_output(cwd, "rev-parse", "HEAD") or None
    except PipelineConfigError:
        return None
