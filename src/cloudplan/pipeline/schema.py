"""Pipeline definition models."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Any, Literal, Self, TypeAlias

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

if TYPE_CHECKING:
    from cloudplan.pipeline.triggers import PushEvent

ArtifactWhen: TypeAlias = Literal["on_success", "on_failure", "always"]


def _one_or_many(v: Any) -> Any:
    if isinstance(v, str):
        return [v]
    return v


def _stringify_values(v: Any) -> Any:
    """Variables are strings in the job environment; YAML scalars are coerced."""
    if v is None:
        return {}
    if isinstance(v, dict):
        return {k: _format_scalar(val) for k, val in v.items()}
    return v


def _format_scalar(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(value)
    return value


_Commands = Annotated[list[str], BeforeValidator(_one_or_many)]
_OptionalList = Annotated[list[str] | None, BeforeValidator(_one_or_many)]
_Variables = Annotated[dict[str, str], BeforeValidator(_stringify_values)]


class ArtifactsSpec(BaseModel):
    """Files retained from a job's build directory."""

    model_config = ConfigDict(extra="forbid")

    paths: Annotated[list[str], BeforeValidator(_one_or_many)] = Field(min_length=1)
    when: ArtifactWhen = "on_success"

    def retained_for(self, succeeded: bool) -> bool:
        if self.when == "always":
            return True
        return succeeded == (self.when == "on_success")


class DefaultSpec(BaseModel):
    """The ``default:`` section: settings every job inherits."""

    model_config = ConfigDict(extra="forbid")

    before_script: _OptionalList = None
    after_script: _OptionalList = None
    timeout: float | None = Field(default=None, gt=0)


class JobSpec(BaseModel):
    """A single job: an ordered list of shell commands run in one stage."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    stage: str = "test"
    script: _Commands = Field(min_length=1)
    before_script: _OptionalList = None
    after_script: _OptionalList = None
    variables: _Variables = Field(default_factory=dict)
    artifacts: ArtifactsSpec | None = None
    only: _OptionalList = None
    except_: _OptionalList = Field(default=None, alias="except")
    timeout: float | None = Field(default=None, gt=0)

    def triggered_by(self, event: PushEvent) -> bool:
        """Whether a push to ``event.branch`` runs this job (exact branch names)."""
        if self.only is not None and event.branch not in self.only:
            return False
        return not (self.except_ is not None and event.branch in self.except_)


class PipelineDefinition(BaseModel):
    """A whole pipeline: ordered stages, global settings and jobs in file order."""

    model_config = ConfigDict(extra="forbid")

    stages: Annotated[list[str], BeforeValidator(_one_or_many)] = Field(min_length=1)
    variables: _Variables = Field(default_factory=dict)
    default: DefaultSpec = Field(default_factory=DefaultSpec)
    jobs: list[JobSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_stages(self) -> Self:
        seen: set[str] = set()
        for stage in self.stages:
            if stage in seen:
                raise ValueError(f"Duplicate stage '{stage}'")
            seen.add(stage)
        names: set[str] = set()
        for job in self.jobs:
            if job.stage not in seen:
                raise ValueError(f"Job '{job.name}' uses undeclared stage '{job.stage}'")
            if job.name in names:
                raise ValueError(f"Duplicate job '{job.name}'")
            names.add(job.name)
        return self

    def jobs_in_stage(self, stage: str) -> list[JobSpec]:
        return [j for j in self.jobs if j.stage == stage]

    def job(self, name: str) -> JobSpec:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)

    def before_script_for(self, job: JobSpec) -> list[str]:
        if job.before_script is not None:
            return job.before_script
        return self.default.before_script or []

    def after_script_for(self, job: JobSpec) -> list[str]:
        if job.after_script is not None:
            return job.after_script
        return self.default.after_script or []

    def variables_for(self, job: JobSpec) -> dict[str, str]:
        return {**self.variables, **job.variables}

    def timeout_for(self, job: JobSpec) -> float | None:
        return job.timeout if job.timeout is not None else self.default.timeout
