"""Pipeline file loader.

The file is GitLab-shaped: a handful of reserved top-level keys configure the
pipeline, every other top-level mapping is a job named after its key.  Keys
starting with ``.`` are hidden (YAML anchors, templates) and ignored.
"""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Any

from pydantic import ValidationError
from ruamel.yaml import YAML

from cloudplan.pipeline.errors import PipelineConfigError
from cloudplan.pipeline.schema import PipelineDefinition

logger = logging.getLogger(__name__)

DEFAULT_PIPELINE_FILE = ".cloudplan-ci.yml"

RESERVED_KEYS = frozenset({"stages", "variables", "before_script", "after_script", "default"})


def _split_jobs(raw: dict[str, Any]) -> dict[str, Any]:
    """Turn the raw mapping into ``PipelineDefinition`` input."""
    default = dict(raw.get("default") or {})
    for key in ("before_script", "after_script"):
        if key in raw:
            if key in default:
                raise PipelineConfigError(f"'{key}' is set both globally and under 'default'")
            default[key] = raw[key]

    jobs: list[dict[str, Any]] = []
    for key, value in raw.items():
        if key in RESERVED_KEYS:
            continue
        if str(key).startswith("."):
            logger.debug("Ignoring hidden key %s", key)
            continue
        if not isinstance(value, dict):
            raise PipelineConfigError(f"Job '{key}' must be a mapping")
        jobs.append({"name": str(key), **value})

    return {
        "stages": raw.get("stages"),
        "variables": raw.get("variables"),
        "default": default,
        "jobs": jobs,
    }


def _artifact_errors(definition: PipelineDefinition) -> list[str]:
    """Artifact paths stay inside the build directory and show up in a job command."""
    errors: list[str] = []
    for job in definition.jobs:
        if job.artifacts is None:
            continue
        commands = [*definition.before_script_for(job), *job.script]
        for path in job.artifacts.paths:
            where = f"Job '{job.name}': artifact path '{path}'"
            pure = PurePosixPath(path)
            if pure.is_absolute():
                errors.append(f"{where} must be relative to the project directory")
            elif ".." in pure.parts:
                errors.append(f"{where} must not contain '..'")
            elif not any(path in cmd for cmd in commands):
                errors.append(f"{where} is not produced by any of its commands")
    return errors


def parse_pipeline(raw: Any, *, source: str = "<pipeline>") -> PipelineDefinition:
    """Validate an already parsed pipeline mapping."""
    if not isinstance(raw, dict):
        raise PipelineConfigError(f"{source}: top level must be a mapping")

    try:
        definition = PipelineDefinition.model_validate(_split_jobs(raw))
    except ValidationError as exc:
        raise PipelineConfigError(f"{source}: {exc}") from exc

    if not definition.jobs:
        raise PipelineConfigError(f"{source}: no jobs defined")

    errors = _artifact_errors(definition)
    if errors:
        raise PipelineConfigError("\n".join(errors))
    return definition


def load_pipeline(path: Path | str) -> PipelineDefinition:
    """Load and validate a pipeline file.

    Raises:
        PipelineConfigError: On YAML parse errors or an invalid definition.
    """
    path = Path(path)
    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise PipelineConfigError(f"Failed to read {path}: {exc}") from exc

    definition = parse_pipeline(raw, source=str(path))
    logger.info(
        "Loaded pipeline from %s (%d stages, %d jobs)",
        path,
        len(definition.stages),
        len(definition.jobs),
    )
    return definition
