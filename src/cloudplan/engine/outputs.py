"""Named outputs projected from resource attributes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from cloudplan.engine.types import Action, OutputValue

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from cloudplan.core.state import State
    from cloudplan.engine.types import ResourceChange
    from cloudplan.resources.base import Resource

_MISSING = object()


class OutputSpec(BaseModel):
    """An output declaration: ``value`` is ``<resource_type>.<name>.<attribute path>``."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    value: str = Field(pattern=r"^[a-z0-9_]+\.[A-Za-z0-9_]+\.[A-Za-z0-9_]+(\.[A-Za-z0-9_]+)*$")
    description: str = ""
    sensitive: bool = False

    @property
    def address(self) -> str:
        resource_type, name, _ = self.value.split(".", 2)
        return f"{resource_type}.{name}"

    @property
    def attribute_path(self) -> list[str]:
        return self.value.split(".")[2:]


def lookup_path(attrs: Mapping[str, Any], path: list[str]) -> Any:
    """Follow *path* through nested dicts and lists; ``_MISSING`` if absent."""
    current: Any = attrs
    for segment in path:
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return _MISSING
    return current


def check_unique(outputs: Iterable[OutputSpec]) -> list[str]:
    seen: set[str] = set()
    errors: list[str] = []
    for out in outputs:
        if out.name in seen:
            errors.append(f"Duplicate output name '{out.name}'")
        seen.add(out.name)
    return errors


def validate_outputs(
    outputs: Iterable[OutputSpec], desired_by_addr: Mapping[str, Resource]
) -> list[str]:
    """Every output must point at a declared resource and a known attribute."""
    errors: list[str] = []
    for out in outputs:
        resource = desired_by_addr.get(out.address)
        if resource is None:
            errors.append(f"Output '{out.name}' refers to undeclared resource '{out.address}'")
            continue
        attr = out.attribute_path[0]
        known = set(type(resource).model_fields) | set(resource.computed_attributes)
        if attr not in known:
            errors.append(
                f"Output '{out.name}': resource type '{resource.resource_type}' "
                f"has no attribute '{attr}'"
            )
    return errors


def _from_change(out: OutputSpec, change: ResourceChange | None) -> OutputValue:
    base = {"sensitive": out.sensitive, "description": out.description}
    if change is None or change.action == Action.DELETE:
        return OutputValue(value=None, **base)

    planned = lookup_path(change.planned or {}, out.attribute_path)
    if planned is not _MISSING:
        return OutputValue(value=planned, **base)
    if change.action in (Action.CREATE, Action.REPLACE):
        return OutputValue(value=None, known=False, **base)

    prior = lookup_path(change.prior or {}, out.attribute_path)
    return OutputValue(value=None if prior is _MISSING else prior, **base)


def evaluate_outputs(
    outputs: Iterable[OutputSpec], changes: Iterable[ResourceChange]
) -> dict[str, OutputValue]:
    """Output values as the plan predicts them.

    Declared attributes come from the planned values; computed attributes
    come from the recorded state unless the resource is being created or
    replaced, in which case they are unknown until apply.
    """
    by_addr = {c.address: c for c in changes}
    return {out.name: _from_change(out, by_addr.get(out.address)) for out in outputs}


def recorded_outputs(outputs: Iterable[OutputSpec], state: State) -> dict[str, OutputValue]:
    """Output values computed from the recorded state only."""
    result: dict[str, OutputValue] = {}
    for out in outputs:
        inst = state.resources.get(out.address)
        value = lookup_path(inst.attributes, out.attribute_path) if inst else _MISSING
        result[out.name] = OutputValue(
            value=None if value is _MISSING else value,
            known=inst is not None,
            sensitive=out.sensitive,
            description=out.description,
        )
    return result
