"""Local pipeline runner.

Runs the jobs triggered by a push event, stage by stage, each in a fresh copy
of the project directory.  Command failures are results, not exceptions:
they end up in :class:`JobResult` and in :attr:`PipelineResult.exit_code`.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import signal
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Literal, TypeAlias

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from cloudplan.pipeline.schema import JobSpec, PipelineDefinition
    from cloudplan.pipeline.triggers import PushEvent

logger = logging.getLogger(__name__)

Phase: TypeAlias = Literal["before_script", "script", "after_script"]

# Exit code reported for a command killed by the job timeout (as coreutils timeout).
TIMEOUT_EXIT_CODE = 124

_GLOB_CHARS = frozenset("*?[")


class JobStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class CommandOutcome:
    command: str
    phase: Phase
    exit_code: int
    output: str = ""
    duration: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class JobResult:
    """What happened to one job.

    ``status`` is decided by ``before_script`` and ``script`` only; artifact
    retention is recorded separately in ``retained`` and ``missing``.
    """

    name: str
    stage: str
    status: JobStatus
    exit_code: int = 0
    failed_command: str | None = None
    failure_phase: Phase | None = None
    skip_reason: str | None = None
    commands: list[CommandOutcome] = field(default_factory=list)
    retained: list[Path] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCESS


@dataclass
class PipelineResult:
    branch: str
    jobs: list[JobResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(j.status != JobStatus.FAILED for j in self.jobs)

    @property
    def exit_code(self) -> int:
        """0 when nothing failed, otherwise the exit code of the first failing command."""
        for job in self.jobs:
            if job.status == JobStatus.FAILED:
                return job.exit_code
        return 0

    def job(self, name: str) -> JobResult:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


class PipelineRunner:
    """Runs a pipeline definition for a push event on the local machine.

    Args:
        workdir: Project directory copied into each job's build directory.
        artifacts_dir: Retained artifacts land in ``<artifacts_dir>/<job>/``.
        shell: Shell used to run each command.
        environ: Base environment for jobs (defaults to ``os.environ``).
        echo: Called with every command line and its output, e.g. to print
            a job log.
    """

    def __init__(
        self,
        workdir: Path,
        artifacts_dir: Path,
        *,
        shell: str = "/bin/sh",
        environ: Mapping[str, str] | None = None,
        echo: Callable[[str], None] | None = None,
    ) -> None:
        self._workdir = Path(workdir).resolve()
        self._artifacts_dir = Path(artifacts_dir).resolve()
        self._shell = shell
        self._environ = dict(os.environ if environ is None else environ)
        self._echo = echo or (lambda text: logger.debug("%s", text))

    def run(self, definition: PipelineDefinition, event: PushEvent) -> PipelineResult:
        result = PipelineResult(branch=event.branch)
        failed_stage: str | None = None

        for stage in definition.stages:
            for job in definition.jobs_in_stage(stage):
                if not job.triggered_by(event):
                    logger.info("Job %s not triggered by push to %s", job.name, event.branch)
                    reason = f"not triggered by push to '{event.branch}'"
                    result.jobs.append(_skipped(job, reason))
                elif failed_stage is not None:
                    reason = f"stage '{failed_stage}' failed"
                    result.jobs.append(_skipped(job, reason))
                else:
                    result.jobs.append(self._run_job(definition, job, event))

            if failed_stage is None and any(
                j.status == JobStatus.FAILED for j in result.jobs if j.stage == stage
            ):
                failed_stage = stage
                logger.info("Stage %s failed; skipping later stages", stage)

        logger.info("Pipeline finished with exit code %d", result.exit_code)
        return result

    def _job_environment(
        self, definition: PipelineDefinition, job: JobSpec, event: PushEvent, build_dir: Path
    ) -> dict[str, str]:
        env = dict(self._environ)
        env.update(
            {
                "CI": "true",
                "CI_PIPELINE_SOURCE": "push",
                "CI_COMMIT_BRANCH": event.branch,
                "CI_COMMIT_REF_NAME": event.branch,
                "CI_JOB_NAME": job.name,
                "CI_JOB_STAGE": job.stage,
                "CI_PROJECT_DIR": str(build_dir),
            }
        )
        if event.commit_sha:
            env["CI_COMMIT_SHA"] = event.commit_sha
        env.update(definition.variables_for(job))
        return env

    def _prepare_build_dir(self, parent: Path) -> Path:
        build_dir = parent / self._workdir.name
        artifacts_dir = self._artifacts_dir

        def _ignore(directory: str, names: list[str]) -> set[str]:
            ignored = {".git"} & set(names)
            ignored.update(n for n in names if Path(directory, n).resolve() == artifacts_dir)
            return ignored

        shutil.copytree(self._workdir, build_dir, ignore=_ignore, symlinks=True)
        return build_dir

    def _run_job(
        self, definition: PipelineDefinition, job: JobSpec, event: PushEvent
    ) -> JobResult:
        logger.info("Running job %s (stage %s)", job.name, job.stage)
        result = JobResult(name=job.name, stage=job.stage, status=JobStatus.SUCCESS)
        # Artifacts from an earlier run must not pass for this run's.
        shutil.rmtree(self._artifacts_dir / job.name, ignore_errors=True)

        with tempfile.TemporaryDirectory(prefix=f"cloudplan-{job.name}-") as tmp:
            build_dir = self._prepare_build_dir(Path(tmp))
            env = self._job_environment(definition, job, event, build_dir)
            timeout = definition.timeout_for(job)
            deadline = None if timeout is None else time.monotonic() + timeout

            phases: list[tuple[Phase, list[str]]] = [
                ("before_script", definition.before_script_for(job)),
                ("script", job.script),
            ]
            for phase, commands in phases:
                if result.status == JobStatus.FAILED:
                    break
                for command in commands:
                    outcome = self._run_command(command, phase, build_dir, env, deadline)
                    result.commands.append(outcome)
                    if not outcome.ok:
                        result.status = JobStatus.FAILED
                        result.exit_code = outcome.exit_code
                        result.failed_command = command
                        result.failure_phase = phase
                        logger.info(
                            "Job %s failed in %s: %r exited with %d",
                            job.name,
                            phase,
                            command,
                            outcome.exit_code,
                        )
                        break

            env["CI_JOB_STATUS"] = result.status.value
            after_deadline = None if timeout is None else time.monotonic() + timeout
            for command in definition.after_script_for(job):
                outcome = self._run_command(
                    command, "after_script", build_dir, env, after_deadline
                )
                result.commands.append(outcome)
                if not outcome.ok:
                    logger.warning(
                        "after_script command %r of job %s exited with %d",
                        command,
                        job.name,
                        outcome.exit_code,
                    )
                    break

            if job.artifacts is not None and job.artifacts.retained_for(result.succeeded):
                self._collect_artifacts(job, build_dir, result)

        return result

    def _run_command(
        self,
        command: str,
        phase: Phase,
        cwd: Path,
        env: Mapping[str, str],
        deadline: float | None,
    ) -> CommandOutcome:
        self._echo(f"$ {command}")
        started = time.monotonic()
        remaining = None if deadline is None else max(deadline - started, 0.0)
        proc = subprocess.Popen(
            command,
            shell=True,
            executable=self._shell,
            cwd=cwd,
            env=dict(env),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            start_new_session=True,
        )
        timed_out = False
        try:
            output, _ = proc.communicate(timeout=remaining)
        except subprocess.TimeoutExpired:
            timed_out = True
            with contextlib.suppress(ProcessLookupError):
                os.killpg(proc.pid, signal.SIGKILL)
            output, _ = proc.communicate()
        duration = time.monotonic() - started

        if output:
            self._echo(output.rstrip("\n"))
        if timed_out:
            self._echo(f"Command timed out after {duration:.1f}s")
            exit_code = TIMEOUT_EXIT_CODE
        else:
            exit_code = proc.returncode
            if exit_code < 0:
                exit_code = 128 - exit_code
        logger.debug("%r exited with %d after %.2fs", command, exit_code, duration)
        return CommandOutcome(
            command=command,
            phase=phase,
            exit_code=exit_code,
            output=output or "",
            duration=duration,
            timed_out=timed_out,
        )

    def _collect_artifacts(self, job: JobSpec, build_dir: Path, result: JobResult) -> None:
        assert job.artifacts is not None
        dest_root = self._artifacts_dir / job.name
        build_root = build_dir.resolve()
        for pattern in job.artifacts.paths:
            if _GLOB_CHARS & set(pattern):
                sources = sorted(build_dir.glob(pattern))
            else:
                candidate = build_dir / pattern
                sources = [candidate] if candidate.exists() else []

            if not sources:
                logger.warning("Job %s: artifact path %s not found", job.name, pattern)
                result.missing.append(pattern)
                continue

            for src in sources:
                if not src.resolve().is_relative_to(build_root):
                    logger.warning("Job %s: %s is outside the build directory", job.name, src)
                    result.missing.append(pattern)
                    continue
                dest = dest_root / src.relative_to(build_dir)
                dest.parent.mkdir(parents=True, exist_ok=True)
                if src.is_dir():
                    shutil.copytree(src, dest, dirs_exist_ok=True)
                else:
                    shutil.copy2(src, dest)
                result.retained.append(dest)
                logger.info("Job %s: retained %s", job.name, dest)


def _skipped(job: JobSpec, reason: str) -> JobResult:
    return JobResult(name=job.name, stage=job.stage, status=JobStatus.SKIPPED, skip_reason=reason)
