"""Shared fixtures for unit tests."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from cloudplan.config import load

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from cloudplan.config.schema import Config

_ENV_VARS = (
    "AWS_REGION",
    "AWS_DEFAULT_REGION",
    "AWS_PROFILE",
    "AWS_ENDPOINT_URL",
    "CLOUDPLAN_LOG",
    "CI_COMMIT_BRANCH",
    "NO_COLOR",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove AWS_*/CLOUDPLAN_* env vars so unit tests don't leak host config."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.startswith("CLOUDPLAN_VAR_"):
            monkeypatch.delenv(var, raising=False)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(
        yaml_str: str,
        *,
        dotenv: str | None = None,
        overrides: dict[str, str] | None = None,
    ) -> Config:
        (tmp_path / "config.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "config.yaml", overrides=overrides)

    return _make
