"""Resource type registry for handler dispatch.

Each registration pairs a resource model with its handler and caches the
field metadata the engine needs for every diff: comparison strategies and
the fields whose change forces a replacement.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from cloudplan.engine.errors import UnknownResourceTypeError
from cloudplan.resources.markers import collect_compare_strategies, collect_force_new_fields

if TYPE_CHECKING:
    from collections.abc import Iterator

    from cloudplan.engine.handlers import ResourceHandler
    from cloudplan.resources.base import Resource
    from cloudplan.resources.markers import CompareStrategy


@dataclass(frozen=True)
class ResourceTypeRegistration:
    resource_type: str
    model: type[Resource]
    handler: ResourceHandler[Any]
    compare_strategies: dict[str, CompareStrategy] = field(default_factory=dict)
    force_new_fields: frozenset[str] = frozenset()

    @property
    def priority(self) -> int:
        return self.model.plan_priority


class ResourceTypeRegistry:
    """Maps ``resource_type`` (``aws_instance``, ...) to its registration."""

    def __init__(self) -> None:
        self._by_type: dict[str, ResourceTypeRegistration] = {}

    def register(self, model: type[Resource], handler: ResourceHandler[Any]) -> None:
        resource_type = getattr(model, "resource_type", None)
        if not isinstance(resource_type, str) or not resource_type:
            raise ValueError(f"{model.__name__} does not declare a resource_type")
        if resource_type in self._by_type:
            raise ValueError(f"Resource type already registered: {resource_type}")

        self._by_type[resource_type] = ResourceTypeRegistration(
            resource_type=resource_type,
            model=model,
            handler=handler,
            compare_strategies=collect_compare_strategies(model),
            force_new_fields=collect_force_new_fields(model),
        )

    def get(self, resource_type: str) -> ResourceTypeRegistration:
        registration = self._by_type.get(resource_type)
        if registration is None:
            raise UnknownResourceTypeError(resource_type)
        return registration

    def for_resource(self, resource: Resource) -> ResourceTypeRegistration:
        return self.get(resource.resource_type)

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._by_type

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._by_type))
