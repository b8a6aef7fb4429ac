"""YAML configuration loading and convenience plan API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from cloudplan.config.errors import ConfigError, ParameterError
from cloudplan.config.loader import load_config
from cloudplan.config.registry import default_registry
from cloudplan.config.schema import Config, ProviderConfig
from cloudplan.core.provider import AWSProvider
from cloudplan.core.state import State
from cloudplan.engine.engine import PlanEngine
from cloudplan.engine.errors import StateWorkspaceMismatchError
from cloudplan.engine.lock import StateLock
from cloudplan.engine.outputs import recorded_outputs
from cloudplan.engine.types import Action, ResourceChange

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from cloudplan.engine.graph import DependencyGraph
    from cloudplan.engine.types import OutputValue, Plan

__all__ = [
    "Config",
    "ConfigError",
    "ParameterError",
    "ProviderConfig",
    "State",
    "drift",
    "graph",
    "init",
    "load",
    "load_config",
    "outputs",
    "plan",
    "refresh",
    "save_state",
    "validate",
]


def load(path: Path | str, *, overrides: Mapping[str, Any] | None = None) -> Config:
    """Load a YAML configuration file."""
    return load_config(path, overrides=overrides)


def _engine_from_config(config: Config) -> PlanEngine:
    """Build a ``PlanEngine`` from a ``Config`` instance."""
    provider = AWSProvider(
        region=config.provider.region,
        profile=config.provider.profile,
        endpoint_url=config.provider.endpoint_url,
    )
    return PlanEngine(
        provider=provider,
        workspace=config.workspace,
        state_path=config.state_path,
        registry=default_registry(),
        parameters=config.values,
        sensitive_parameters=config.sensitive_parameters,
        lock_timeout=config.lock_timeout,
    )


def init(config: Config) -> tuple[State, bool]:
    """Create an empty state file for the workspace if there is none.

    Returns the state and whether it was created.
    """
    with StateLock(config.state_path, timeout=config.lock_timeout):
        state = State.load_or_create(config.state_path, config.workspace)
        if state.workspace != config.workspace:
            raise StateWorkspaceMismatchError(config.workspace, state.workspace)
        if config.state_path.exists():
            return state, False
        state.save(config.state_path)
        return state, True


def validate(config: Config) -> None:
    """Run every plan-time validation without touching state or the cloud."""
    engine = _engine_from_config(config)
    engine.validate(config.resources, outputs=config.outputs)


def plan(config: Config, *, destroy: bool = False, refresh: bool = True) -> Plan:
    """Plan changes for the given configuration."""
    engine = _engine_from_config(config)
    return engine.plan(config.resources, outputs=config.outputs, destroy=destroy, refresh=refresh)


def graph(config: Config) -> DependencyGraph:
    """Dependency graph of the declared resources."""
    return _engine_from_config(config).graph(config.resources)


def refresh(config: Config) -> tuple[list[ResourceChange], State]:
    """Refresh state from the cloud (not persisted).

    Returns the list of drift changes and the new state. Call
    :func:`save_state` to persist the returned state to disk.
    """
    engine = _engine_from_config(config)
    old_state, new_state = engine.refresh()
    return _build_drift_changes(old_state, new_state), new_state


def save_state(config: Config, state: State) -> None:
    """Persist state to disk."""
    with StateLock(config.state_path, timeout=config.lock_timeout):
        state.persist(config.state_path)


def drift(config: Config) -> list[ResourceChange]:
    """Detect drift between the state file and the live resources."""
    changes, _ = refresh(config)
    return changes


def outputs(config: Config) -> dict[str, OutputValue]:
    """Output values as recorded in the state file."""
    state = State.load_or_create(config.state_path, config.workspace)
    if state.workspace != config.workspace:
        raise StateWorkspaceMismatchError(config.workspace, state.workspace)
    return recorded_outputs(config.outputs, state)


def _build_drift_changes(old_state: State, new_state: State) -> list[ResourceChange]:
    """Compare old vs new state and return a list of drift changes."""
    changes: list[ResourceChange] = []
    for addr in sorted(old_state.resources):
        old_inst = old_state.resources[addr]
        new_inst = new_state.resources.get(addr)
        if new_inst is None:
            changes.append(
                ResourceChange(
                    address=addr,
                    resource_type=old_inst.resource_type,
                    action=Action.DELETE,
                    prior=dict(old_inst.attributes),
                )
            )
            continue

        old, new = old_inst.attributes, new_inst.attributes
        diff = {
            k: {"from": old.get(k), "to": new.get(k)}
            for k in sorted(set(old) | set(new))
            if old.get(k) != new.get(k)
        }
        if diff:
            changes.append(
                ResourceChange(
                    address=addr,
                    resource_type=new_inst.resource_type,
                    action=Action.UPDATE,
                    prior=dict(old),
                    planned=dict(new),
                    diff=diff,
                )
            )
    return changes
