"""Default resource type registry factory."""

from __future__ import annotations

from cloudplan.engine.instance_handler import InstanceHandler
from cloudplan.engine.registry import ResourceTypeRegistry
from cloudplan.engine.security_group_handler import SecurityGroupHandler
from cloudplan.resources.instance import InstanceResource
from cloudplan.resources.security_group import SecurityGroupResource


def default_registry() -> ResourceTypeRegistry:
    """Create a fresh registry with all built-in resource types and handlers."""
    registry = ResourceTypeRegistry()
    registry.register(SecurityGroupResource, SecurityGroupHandler())
    registry.register(InstanceResource, InstanceHandler())
    return registry
