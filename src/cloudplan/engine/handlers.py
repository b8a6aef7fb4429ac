"""Engine-facing handler interfaces."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from cloudplan.core.state import ResourceInstance
from cloudplan.resources.base import Resource

if TYPE_CHECKING:
    from collections.abc import Mapping

    from cloudplan.core.provider import AWSProvider
    from cloudplan.core.state import State

R = TypeVar("R", bound=Resource)


@dataclass(frozen=True)
class EngineContext:
    """Immutable evaluation context passed to every handler call.

    Built once per engine from the loaded configuration, so handlers never
    consult the process environment for region or parameter values.
    """

    provider: AWSProvider
    workspace: str
    region: str | None = None
    parameters: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


class PlanContext:
    """Merged view of desired and recorded resources for plan-level validation.

    Provides name-based lookups across both planned (desired) and existing
    (state) resources, with desired taking precedence.
    """

    def __init__(self, all_desired: Mapping[str, Resource], state: State) -> None:
        self._by_name: dict[str, list[Resource | ResourceInstance]] = {}
        for i in state.resources.values():
            self._by_name.setdefault(i.name, []).append(i)
        for r in all_desired.values():
            entries = [e for e in self._by_name.get(r.name, []) if e.address != r.address]
            self._by_name[r.name] = [r, *entries]
        self._desired_addresses: set[str] = set(all_desired)
        self._all_addresses: set[str] = set(all_desired) | set(state.resources)

    def address_exists(self, address: str) -> bool:
        """Check if an address exists in desired or state."""
        return address in self._all_addresses

    def is_desired(self, address: str) -> bool:
        """Check if an address is declared in the current configuration."""
        return address in self._desired_addresses

    def has_resource(self, name: str, *, resource_type: str | None = None) -> bool:
        """Check if a *declared* resource with this name (and type) exists."""
        return any(
            isinstance(item, Resource)
            and (resource_type is None or item.resource_type == resource_type)
            for item in self._by_name.get(name, [])
        )

    def get_attr(self, name: str, attr: str, *, resource_type: str | None = None) -> Any:
        """Look up an attribute from the first matching named resource."""
        for item in self._by_name.get(name, []):
            if resource_type is not None and item.resource_type != resource_type:
                continue
            if isinstance(item, ResourceInstance):
                return item.attributes.get(attr)
            return getattr(item, attr, None)
        return None


class ResourceHandler(Generic[R]):
    """Base class for resource handlers.

    Handlers validate declarations and read the live counterpart of recorded
    resources. Planning never changes anything, so there are no write methods.
    """

    def validate(self, ctx: EngineContext, desired: R) -> list[str]:
        """Single-resource validation. No cross-resource context needed.

        Return list of error messages (empty = valid).
        """
        _ = ctx, desired
        return []

    def validate_plan(
        self,
        ctx: EngineContext,
        desired: R,
        plan_ctx: PlanContext,
    ) -> list[str]:
        """Cross-resource validation. The default checks every ``Ref`` resolves.

        Return list of error messages (empty = valid).
        """
        _ = ctx
        errors: list[str] = []
        for ref in desired.references():
            if not plan_ctx.has_resource(ref.name, resource_type=ref.resource_type):
                kind = ref.resource_type or "resource"
                errors.append(
                    f"Resource '{desired.address}' references unknown {kind} '{ref.name}'"
                )
        return errors

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        """Read the live resource. Return None if it no longer exists."""
        raise NotImplementedError
