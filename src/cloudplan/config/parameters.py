"""Named, defaulted input parameters."""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Literal, Self, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, model_validator
from ruamel.yaml import YAML
from ruamel.yaml.constructor import SafeConstructor
from ruamel.yaml.error import YAMLError

from cloudplan.config.errors import ParameterError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)

ParameterType: TypeAlias = Literal["string", "number", "bool", "list"]

ENV_PREFIX = "CLOUDPLAN_VAR_"


def _type_of(value: Any) -> ParameterType | None:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "list"
    return None


class ParameterSpec(BaseModel):
    """A declared parameter.

    The type may be given explicitly or is inferred from the default.  A
    parameter without a default must be given a value at evaluation time.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    type: ParameterType | None = None
    default: Any = None
    description: str = ""
    sensitive: bool = False

    @model_validator(mode="after")
    def _check_default_type(self) -> Self:
        if self.default is None:
            return self
        actual = _type_of(self.default)
        if actual is None:
            raise ValueError(f"Unsupported default for parameter '{self.name}': {self.default!r}")
        if self.type is not None and actual != self.type:
            raise ValueError(
                f"Default for parameter '{self.name}' is a {actual}, declared type is {self.type}"
            )
        return self

    @property
    def value_type(self) -> ParameterType:
        return self.type or _type_of(self.default) or "string"

    @property
    def required(self) -> bool:
        return self.default is None


def coerce_value(spec: ParameterSpec, value: Any, *, source: str) -> Any:
    """Check *value* against the parameter type, parsing strings where needed."""
    expected = spec.value_type
    if isinstance(value, str) and expected != "string":
        value = _parse_string(spec, value, source=source)

    if _type_of(value) != expected:
        raise ParameterError(
            f"Parameter '{spec.name}' expects a {expected}, got {value!r} (from {source})"
        )
    return value


def _parse_string(spec: ParameterSpec, raw: str, *, source: str) -> Any:
    expected = spec.value_type
    text = raw.strip()
    if expected == "bool":
        if text.lower() not in SafeConstructor.bool_values:
            raise ParameterError(
                f"Parameter '{spec.name}' expects a bool, got {raw!r} (from {source})"
            )
        return SafeConstructor.bool_values[text.lower()]
    if expected == "number":
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            raise ParameterError(
                f"Parameter '{spec.name}' expects a number, got {raw!r} (from {source})"
            ) from None
    # list: accept YAML/JSON flow syntax, e.g. "[a, b]"
    try:
        parsed = YAML(typ="safe").load(text)
    except YAMLError as exc:
        raise ParameterError(
            f"Parameter '{spec.name}' expects a list, could not parse {raw!r}: {exc}"
        ) from exc
    return parsed


def parse_assignments(items: Iterable[str]) -> dict[str, str]:
    """Parse ``name=value`` strings (as given with ``--var``)."""
    result: dict[str, str] = {}
    for item in items:
        name, sep, value = item.partition("=")
        name = name.strip()
        if not sep or not name:
            raise ParameterError(f"Invalid parameter assignment {item!r}: expected NAME=VALUE")
        result[name] = value
    return result


def check_unique(specs: Iterable[ParameterSpec]) -> list[str]:
    seen: set[str] = set()
    errors: list[str] = []
    for spec in specs:
        if spec.name in seen:
            errors.append(f"Duplicate parameter name '{spec.name}'")
        seen.add(spec.name)
    return errors


def resolve_parameters(
    specs: Iterable[ParameterSpec],
    overrides: Mapping[str, Any] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    dotenv: Mapping[str, str | None] | None = None,
) -> Mapping[str, Any]:
    """Resolve every parameter to a value.

    Priority (highest wins): explicit override > ``CLOUDPLAN_VAR_<name>`` env
    var > ``.env`` file > declared default.  Returns a read-only mapping.
    """
    specs = list(specs)
    overrides = dict(overrides or {})
    environ = environ or {}
    dotenv = dotenv or {}

    declared = {s.name for s in specs}
    unknown = sorted(set(overrides) - declared)
    if unknown:
        raise ParameterError(f"Value given for undeclared parameter(s): {', '.join(unknown)}")

    resolved: dict[str, Any] = {}
    for spec in specs:
        env_key = f"{ENV_PREFIX}{spec.name}"
        if spec.name in overrides:
            value, source = overrides[spec.name], "override"
        elif env_key in environ:
            value, source = environ[env_key], env_key
        elif dotenv.get(env_key) is not None:
            value, source = dotenv[env_key], f".env {env_key}"
        elif not spec.required:
            value, source = spec.default, "default"
        else:
            raise ParameterError(f"No value given for required parameter '{spec.name}'")
        resolved[spec.name] = coerce_value(spec, value, source=source)
        logger.debug("Parameter %s resolved from %s", spec.name, source)

    return MappingProxyType(resolved)
