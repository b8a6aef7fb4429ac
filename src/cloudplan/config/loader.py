"""YAML configuration file loader."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values
from pydantic import TypeAdapter, ValidationError
from ruamel.yaml import YAML

from cloudplan.config.errors import ConfigError, ParameterError
from cloudplan.config.interpolation import interpolate, referenced_parameters
from cloudplan.config.parameters import ParameterSpec, check_unique, resolve_parameters
from cloudplan.config.schema import Config
from cloudplan.engine.outputs import check_unique as check_unique_outputs
from cloudplan.resources.loader import resolve_user_data_files

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from cloudplan.resources.base import Resource

__all__ = ["ConfigError", "ParameterError", "load_config"]

# Field name → environment variable.
_PROVIDER_ENV_MAP: dict[str, str] = {
    "region": "AWS_REGION",
    "profile": "AWS_PROFILE",
    "endpoint_url": "AWS_ENDPOINT_URL",
}

# Sections that may reference parameters.
_INTERPOLATED_KEYS = ("workspace", "provider", "security_groups", "instances", "outputs")

_PARAMETER_LIST = TypeAdapter(list[ParameterSpec])


def _read_dotenv(config_dir: Path) -> dict[str, str | None]:
    env_file = config_dir / ".env"
    return dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}


def _resolve_provider(
    raw_provider: dict[str, Any], dotenv_vals: Mapping[str, str | None]
) -> dict[str, Any]:
    """Resolve provider fields from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    unknown = sorted(set(raw_provider) - set(_PROVIDER_ENV_MAP))
    if unknown:
        raise ConfigError(f"Unknown provider setting(s): {', '.join(unknown)}")

    resolved: dict[str, Any] = {}
    for field, env_key in _PROVIDER_ENV_MAP.items():
        val = raw_provider.get(field)
        if val is None:
            val = os.environ.get(env_key)
        if val is None:
            val = dotenv_vals.get(env_key)
        if val is not None:
            resolved[field] = val
    return resolved


def _validate_unique_names(resources: list[Resource]) -> list[str]:
    """Check that no two resources share the same name within a namespace."""
    groups: dict[str, dict[str, str]] = {}  # namespace → {name: first_address}
    errors: list[str] = []
    for r in resources:
        seen = groups.setdefault(r.namespace, {})
        if r.name in seen:
            errors.append(
                f"Duplicate {r.namespace} name '{r.name}': "
                f"found in both {seen[r.name]} and {r.address}"
            )
        else:
            seen[r.name] = r.address
    return errors


def _load_parameter_specs(raw_parameters: Any) -> list[ParameterSpec]:
    try:
        specs = _PARAMETER_LIST.validate_python(raw_parameters or [])
    except ValidationError as exc:
        raise ConfigError(f"Invalid parameters section:\n{exc}") from exc
    errors = check_unique(specs)
    if errors:
        raise ConfigError("\n".join(errors))
    return specs


def load_config(path: Path | str, *, overrides: Mapping[str, Any] | None = None) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    *overrides* maps parameter names to values and takes precedence over
    environment variables, the ``.env`` file and declared defaults.  String
    values are coerced to the declared parameter type.

    Raises:
        ParameterError: If a parameter is missing, unknown or mistyped.
        ConfigError: On YAML parse errors, missing sections, or validation failures.
    """
    path = Path(path)
    config_dir = path.parent

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    specs = _load_parameter_specs(raw.get("parameters"))
    dotenv_vals = _read_dotenv(config_dir)
    values = resolve_parameters(specs, overrides, environ=os.environ, dotenv=dotenv_vals)

    used: set[str] = set()
    for key in _INTERPOLATED_KEYS:
        if key in raw:
            used |= referenced_parameters(raw[key])
            raw[key] = interpolate(raw[key], values, where=key)
    for name in sorted(values.keys() - used):
        logger.debug("Parameter %s is declared but never referenced", name)

    try:
        raw["provider"] = _resolve_provider(raw.get("provider") or {}, dotenv_vals)
        raw["config_dir"] = config_dir
        config = Config.model_validate(raw, context={"values": values})
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    try:
        resolve_user_data_files(config.resources, config_dir)
    except OSError as exc:
        raise ConfigError(f"Failed to read bootstrap script: {exc}") from exc

    errors = _validate_unique_names(config.resources)
    errors.extend(check_unique_outputs(config.outputs))
    if errors:
        raise ConfigError("\n".join(errors))

    logger.info("Loaded config from %s (%d resources)", path, len(config.resources))
    return config
