"""CI pipeline definition and local runner."""

from cloudplan.pipeline.defaults import (
    PLAN_FILE,
    PLAN_JOB,
    default_pipeline,
    render_pipeline,
    write_pipeline,
)
from cloudplan.pipeline.errors import PipelineConfigError
from cloudplan.pipeline.loader import DEFAULT_PIPELINE_FILE, load_pipeline, parse_pipeline
from cloudplan.pipeline.runner import (
    CommandOutcome,
    JobResult,
    JobStatus,
    PipelineResult,
    PipelineRunner,
)
from cloudplan.pipeline.schema import ArtifactsSpec, JobSpec, PipelineDefinition
from cloudplan.pipeline.triggers import PushEvent, resolve_branch

__all__ = [
    "DEFAULT_PIPELINE_FILE",
    "PLAN_FILE",
    "PLAN_JOB",
    "ArtifactsSpec",
    "CommandOutcome",
    "JobResult",
    "JobSpec",
    "JobStatus",
    "PipelineConfigError",
    "PipelineDefinition",
    "PipelineResult",
    "PipelineRunner",
    "PushEvent",
    "default_pipeline",
    "load_pipeline",
    "parse_pipeline",
    "render_pipeline",
    "resolve_branch",
    "write_pipeline",
]
