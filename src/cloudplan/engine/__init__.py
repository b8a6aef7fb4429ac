"""Plan engine for declared cloud resources."""

from cloudplan.engine.engine import PlanEngine
from cloudplan.engine.errors import (
    DependencyCycleError,
    DuplicateAddressError,
    EngineError,
    ProviderAuthError,
    ProviderError,
    StateLockError,
    StateWorkspaceMismatchError,
    UnknownResourceTypeError,
    ValidationError,
)
from cloudplan.engine.graph import DependencyGraph
from cloudplan.engine.handlers import EngineContext, PlanContext, ResourceHandler
from cloudplan.engine.outputs import OutputSpec
from cloudplan.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
from cloudplan.engine.types import Action, OutputValue, Plan, PlanMetadata, ResourceChange

__all__ = [
    "Action",
    "DependencyCycleError",
    "DependencyGraph",
    "DuplicateAddressError",
    "EngineContext",
    "EngineError",
    "OutputSpec",
    "OutputValue",
    "Plan",
    "PlanContext",
    "PlanEngine",
    "PlanMetadata",
    "ProviderAuthError",
    "ProviderError",
    "ResourceChange",
    "ResourceHandler",
    "ResourceTypeRegistration",
    "ResourceTypeRegistry",
    "StateLockError",
    "StateWorkspaceMismatchError",
    "UnknownResourceTypeError",
    "ValidationError",
]
