from __future__ import annotations

from pathlib import Path

import pytest

from cloudplan.pipeline import PipelineConfigError, PushEvent, load_pipeline, parse_pipeline

PIPELINE = """\
stages:
  - build
  - plan

variables:
  AWS_REGION: us-east-1
  RETRIES: 3
  DEBUG: false

before_script:
  - echo setup

.template: &template
  stage: plan

build_job:
  stage: build
  script: make build

plan_job:
  <<: *template
  before_script: []
  script:
    - cloudplan plan --out plan.out
  after_script: echo done
  variables:
    AWS_REGION: eu-west-1
  artifacts:
    paths: [plan.out]
    when: always
  only: [main]
  timeout: 60
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / ".cloudplan-ci.yml"
    path.write_text(text)
    return path


class TestLoadPipeline:
    def test_structure(self, tmp_path: Path) -> None:
        definition = load_pipeline(_write(tmp_path, PIPELINE))

        assert definition.stages == ["build", "plan"]
        assert [j.name for j in definition.jobs] == ["build_job", "plan_job"]
        assert [j.name for j in definition.jobs_in_stage("plan")] == ["plan_job"]

        build = definition.job("build_job")
        assert build.script == ["make build"]
        assert definition.before_script_for(build) == ["echo setup"]
        assert definition.after_script_for(build) == []

        plan = definition.job("plan_job")
        assert plan.stage == "plan"
        assert definition.before_script_for(plan) == []
        assert definition.after_script_for(plan) == ["echo done"]
        assert plan.artifacts is not None
        assert plan.artifacts.when == "always"
        assert definition.timeout_for(plan) == 60
        assert definition.timeout_for(build) is None

    def test_variables_are_strings_and_job_wins(self, tmp_path: Path) -> None:
        definition = load_pipeline(_write(tmp_path, PIPELINE))
        assert definition.variables == {"AWS_REGION": "us-east-1", "RETRIES": "3", "DEBUG": "false"}
        assert definition.variables_for(definition.job("plan_job"))["AWS_REGION"] == "eu-west-1"

    def test_hidden_keys_are_not_jobs(self, tmp_path: Path) -> None:
        definition = load_pipeline(_write(tmp_path, PIPELINE))
        with pytest.raises(KeyError):
            definition.job(".template")

    def test_triggers(self, tmp_path: Path) -> None:
        definition = load_pipeline(_write(tmp_path, PIPELINE))
        plan = definition.job("plan_job")
        assert plan.triggered_by(PushEvent("main"))
        assert not plan.triggered_by(PushEvent("feature/x"))
        assert definition.job("build_job").triggered_by(PushEvent("feature/x"))

    def test_except(self) -> None:
        definition = parse_pipeline(
            {"stages": ["test"], "lint": {"script": "ruff .", "except": "main"}}
        )
        lint = definition.job("lint")
        assert lint.stage == "test"
        assert not lint.triggered_by(PushEvent("main"))
        assert lint.triggered_by(PushEvent("dev"))

    def test_default_section(self) -> None:
        definition = parse_pipeline(
            {
                "stages": ["test"],
                "default": {"before_script": "echo hi", "timeout": 5},
                "job": {"script": ["true"]},
            }
        )
        job = definition.job("job")
        assert definition.before_script_for(job) == ["echo hi"]
        assert definition.timeout_for(job) == 5


class TestErrors:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(PipelineConfigError, match="Failed to read"):
            load_pipeline(tmp_path / "missing.yml")

    def test_not_a_mapping(self) -> None:
        with pytest.raises(PipelineConfigError, match="top level must be a mapping"):
            parse_pipeline(["a"])

    def test_no_jobs(self) -> None:
        with pytest.raises(PipelineConfigError, match="no jobs defined"):
            parse_pipeline({"stages": ["test"]})

    def test_stages_required(self) -> None:
        with pytest.raises(PipelineConfigError, match="stages"):
            parse_pipeline({"job": {"script": "true"}})

    def test_undeclared_stage(self) -> None:
        with pytest.raises(PipelineConfigError, match="uses undeclared stage 'deploy'"):
            parse_pipeline({"stages": ["test"], "job": {"stage": "deploy", "script": "true"}})

    def test_duplicate_stage(self) -> None:
        with pytest.raises(PipelineConfigError, match="Duplicate stage 'test'"):
            parse_pipeline({"stages": ["test", "test"], "job": {"script": "true"}})

    def test_job_without_script(self) -> None:
        with pytest.raises(PipelineConfigError, match="script"):
            parse_pipeline({"stages": ["test"], "job": {"stage": "test"}})

    def test_job_must_be_mapping(self) -> None:
        with pytest.raises(PipelineConfigError, match="Job 'job' must be a mapping"):
            parse_pipeline({"stages": ["test"], "job": "echo hi"})

    def test_unknown_job_key(self) -> None:
        with pytest.raises(PipelineConfigError, match="retry"):
            parse_pipeline({"stages": ["test"], "job": {"script": "true", "retry": 2}})

    def test_global_and_default_conflict(self) -> None:
        with pytest.raises(PipelineConfigError, match="'before_script' is set both globally"):
            parse_pipeline(
                {
                    "stages": ["test"],
                    "before_script": ["a"],
                    "default": {"before_script": ["b"]},
                    "job": {"script": "true"},
                }
            )

    def test_invalid_artifacts_when(self) -> None:
        with pytest.raises(PipelineConfigError, match="when"):
            parse_pipeline(
                {
                    "stages": ["test"],
                    "job": {
                        "script": "touch out",
                        "artifacts": {"paths": ["out"], "when": "sometimes"},
                    },
                }
            )

    def test_artifact_not_produced(self) -> None:
        with pytest.raises(
            PipelineConfigError,
            match="Job 'job': artifact path 'plan.out' is not produced by any of its commands",
        ):
            parse_pipeline(
                {
                    "stages": ["test"],
                    "job": {"script": "cloudplan plan", "artifacts": {"paths": ["plan.out"]}},
                }
            )

    @pytest.mark.parametrize(
        ("path", "script", "message"),
        [
            ("/etc/hostname", "cat /etc/hostname", "must be relative to the project directory"),
            ("../secrets.txt", "cp x ../secrets.txt", "must not contain '..'"),
            ("out/../../plan.out", "touch out/../../plan.out", "must not contain '..'"),
        ],
    )
    def test_artifact_outside_project(self, path: str, script: str, message: str) -> None:
        with pytest.raises(PipelineConfigError, match=f"artifact path '{path}' {message}"):
            parse_pipeline(
                {"stages": ["test"], "job": {"script": script, "artifacts": {"paths": [path]}}}
            )

    def test_artifact_from_before_script(self) -> None:
        definition = parse_pipeline(
            {
                "stages": ["test"],
                "before_script": ["touch setup.log"],
                "job": {"script": "true", "artifacts": {"paths": "setup.log"}},
            }
        )
        assert definition.job("job").artifacts is not None
