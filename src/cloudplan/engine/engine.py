"""Plan engine."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
from datetime import UTC, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from cloudplan import __version__
from cloudplan.core.state import State, compute_state_digest
from cloudplan.engine.errors import (
    DuplicateAddressError,
    StateWorkspaceMismatchError,
    ValidationError,
)
from cloudplan.engine.graph import DependencyGraph
from cloudplan.engine.handlers import EngineContext, PlanContext
from cloudplan.engine.lock import StateLock
from cloudplan.engine.outputs import evaluate_outputs, validate_outputs
from cloudplan.engine.types import Action, Plan, PlanMetadata, ResourceChange
from cloudplan.resources.markers import CompareStrategy

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from pathlib import Path

    from cloudplan.core.provider import AWSProvider
    from cloudplan.engine.outputs import OutputSpec
    from cloudplan.engine.registry import ResourceTypeRegistry
    from cloudplan.resources.base import Resource


def _values_differ(
    desired: Any,
    prior: Any,
    *,
    strategy: CompareStrategy | None = None,
) -> bool:
    """Check whether a desired value differs from the prior (recorded) value.

    Comparison semantics depend on *strategy*:

    - ``strategy="set"``:
      - If both values are lists, they are compared as sets (order-insensitive).
      - Other types fall back to strict equality.
    - ``strategy="exact"``:
      - Values are compared with strict equality.
      - For dicts, extra or missing keys are treated as differences.
    - ``strategy=None`` or ``"partial"``:
      - For dict values, only keys present in *desired* are compared.
      - Extra keys present only in *prior* (provider-added defaults) are ignored.
      - Non-dict values use strict equality.
    """
    if strategy == "set":
        if isinstance(desired, list) and isinstance(prior, list):
            return set(map(_canonical_json, desired)) != set(map(_canonical_json, prior))
        return desired != prior

    if strategy == "exact":
        return desired != prior

    if isinstance(desired, dict) and isinstance(prior, dict):
        return any(_values_differ(v, prior.get(k), strategy="partial") for k, v in desired.items())
    return desired != prior


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _compute_config_digest(resources: Sequence[Resource]) -> str:
    items: list[dict[str, Any]] = []
    for r in resources:
        items.append(
            {
                "address": r.address,
                "resource_type": r.resource_type,
                "planned": r.desired_attributes(),
            }
        )
    items.sort(key=lambda x: x["address"])
    return _sha256_hex(_canonical_json(items))


class PlanEngine:
    """Terraform-like plan engine for declared cloud resources.

    The engine reads the recorded state, optionally refreshes it from the
    cloud, and computes the changes needed to reach the declared state.  It
    never changes any infrastructure.
    """

    def __init__(
        self,
        *,
        provider: AWSProvider,
        workspace: str,
        state_path: Path,
        registry: ResourceTypeRegistry,
        parameters: Mapping[str, Any] | None = None,
        sensitive_parameters: Iterable[str] = (),
        lock_timeout: float | None = None,
    ) -> None:
        self._sensitive_parameters = frozenset(sensitive_parameters)
        self._provider = provider
        self._workspace = workspace
        self._state_path = state_path
        self._registry = registry
        self._lock_timeout = lock_timeout
        self._ctx = EngineContext(
            provider=provider,
            workspace=workspace,
            region=provider.region,
            parameters=MappingProxyType(dict(parameters or {})),
        )

    @property
    def workspace(self) -> str:
        return self._workspace

    @property
    def state_path(self) -> Path:
        return self._state_path

    @property
    def context(self) -> EngineContext:
        return self._ctx

    def _recorded_parameters(self) -> dict[str, Any]:
        return {
            k: "(sensitive)" if k in self._sensitive_parameters else v
            for k, v in self._ctx.parameters.items()
        }

    def _lock(self) -> StateLock:
        return StateLock(self._state_path, timeout=self._lock_timeout)

    def _load_state(self) -> State:
        state = State.load_or_create(self._state_path, workspace=self._workspace)
        if state.workspace != self._workspace:
            raise StateWorkspaceMismatchError(self._workspace, state.workspace)
        logger.debug("State loaded: serial=%d, %d resources", state.serial, len(state.resources))
        return state

    def _refresh_state_in_place(self, state: State) -> bool:
        logger.debug("Refreshing state from the cloud API")
        changed = False

        for address, inst in list(state.resources.items()):
            handler = self._registry.get(inst.resource_type).handler
            if state.observe(address, handler.read(self._ctx, inst)):
                changed = True

        logger.debug("State refreshed, changed=%s", changed)
        return changed

    def refresh(self, *, persist: bool = False) -> tuple[State, State]:
        """Refresh state from the cloud. Returns (pre_refresh, post_refresh)."""
        with self._lock():
            state = self._load_state()
            snapshot = state.model_copy(deep=True)
            changed = self._refresh_state_in_place(state)
            if changed and persist:
                state.persist(self._state_path)
            return snapshot, state

    @staticmethod
    def resolve_dependencies(desired_by_addr: Mapping[str, Resource]) -> dict[str, list[str]]:
        """Build dependency map: explicit depends_on + implicit from ``Ref`` markers.

        Returns addr → full dep list without mutating the Resource objects.
        """
        typed_name_to_addrs: dict[tuple[str, str], list[str]] = {}
        name_to_addrs: dict[str, list[str]] = {}
        for addr, r in desired_by_addr.items():
            name_to_addrs.setdefault(r.name, []).append(addr)
            typed_name_to_addrs.setdefault((r.resource_type, r.name), []).append(addr)

        dep_map: dict[str, list[str]] = {}
        for addr, r in desired_by_addr.items():
            deps = list(r.depends_on)
            for ref in r.references():
                if ref.resource_type is not None:
                    ref_addrs = typed_name_to_addrs.get((ref.resource_type, ref.name), [])
                else:
                    ref_addrs = name_to_addrs.get(ref.name, [])
                deps.extend(a for a in ref_addrs if a != addr and a not in deps)
            dep_map[addr] = deps
        return dep_map

    def graph(self, resources: Sequence[Resource]) -> DependencyGraph:
        """The dependency graph of the declared resources."""
        desired_by_addr = {r.address: r for r in resources}
        dep_map = self.resolve_dependencies(desired_by_addr)
        priorities = {addr: r.plan_priority for addr, r in desired_by_addr.items()}
        return DependencyGraph(desired_by_addr, dep_map, priorities=priorities)

    def _classify_change(
        self, addr: str, resource: Resource, state: State, deps: list[str]
    ) -> ResourceChange:
        """Classify a single resource as CREATE, UPDATE, REPLACE, or NOOP."""
        planned = resource.desired_attributes()
        desired_dump = {**planned, "depends_on": deps}

        prior_inst = state.resources.get(addr)
        if prior_inst is None:
            logger.debug("Classified %s as create", addr)
            return ResourceChange(
                address=addr,
                resource_type=resource.resource_type,
                action=Action.CREATE,
                desired=desired_dump,
                planned=planned,
            )

        prior = dict(prior_inst.attributes)
        registration = self._registry.for_resource(resource)
        compare_strategies = registration.compare_strategies
        diff = {
            k: {"from": prior.get(k), "to": v}
            for k, v in planned.items()
            if _values_differ(v, prior.get(k), strategy=compare_strategies.get(k))
        }
        replace_fields = sorted(set(diff) & registration.force_new_fields)

        if replace_fields:
            action = Action.REPLACE
        elif diff:
            action = Action.UPDATE
        else:
            action = Action.NOOP
        logger.debug("Classified %s as %s", addr, action.value)
        return ResourceChange(
            address=addr,
            resource_type=resource.resource_type,
            action=action,
            desired=desired_dump,
            prior=prior,
            planned=planned,
            diff=diff or None,
            replace_fields=replace_fields or None,
        )

    def _plan_deletes(self, state: State, addrs: set[str]) -> list[ResourceChange]:
        """Plan delete changes for the given addresses in reverse dependency order."""
        changes: list[ResourceChange] = []
        for addr in self._delete_order(state, addrs):
            inst = state.resources[addr]
            self._registry.get(inst.resource_type)  # fail early if unknown
            changes.append(
                ResourceChange(
                    address=addr,
                    resource_type=inst.resource_type,
                    action=Action.DELETE,
                    prior=dict(inst.attributes),
                )
            )
        return changes

    def _delete_order(self, state: State, delete_set: set[str]) -> list[str]:
        dep_map: dict[str, list[str]] = {}
        priorities: dict[str, int] = {}
        for addr in delete_set:
            inst = state.resources[addr]
            dep_map[addr] = [d for d in inst.dependencies if d in delete_set]
            priorities[addr] = self._registry.get(inst.resource_type).priority
        return DependencyGraph(
            delete_set, dep_map, priorities=priorities
        ).reverse_topological_order()

    def _validate(
        self,
        desired_by_addr: Mapping[str, Resource],
        state: State,
        outputs: Sequence[OutputSpec],
    ) -> None:
        errors: list[str] = []
        for r in desired_by_addr.values():
            errors.extend(self._registry.get(r.resource_type).handler.validate(self._ctx, r))
        plan_ctx = PlanContext(desired_by_addr, state)
        for r in desired_by_addr.values():
            reg = self._registry.for_resource(r)
            errors.extend(reg.handler.validate_plan(self._ctx, r, plan_ctx))
        for r in desired_by_addr.values():
            errors.extend(
                f"Resource '{r.address}' depends on unknown address '{dep}'"
                for dep in r.depends_on
                if not plan_ctx.is_desired(dep)
            )
        errors.extend(validate_outputs(outputs, desired_by_addr))
        if errors:
            raise ValidationError(errors)

    def validate(
        self, resources: Sequence[Resource], *, outputs: Sequence[OutputSpec] = ()
    ) -> None:
        """Run every plan-time check without reading state or the cloud."""
        desired_by_addr: dict[str, Resource] = {}
        for r in resources:
            if r.address in desired_by_addr:
                raise DuplicateAddressError(r.address)
            self._registry.get(r.resource_type)
            desired_by_addr[r.address] = r
        self._validate(desired_by_addr, State(workspace=self._workspace), outputs)
        self.graph(resources).topological_order()

    def plan(
        self,
        resources: Sequence[Resource],
        *,
        outputs: Sequence[OutputSpec] = (),
        destroy: bool = False,
        refresh: bool = True,
    ) -> Plan:
        logger.info(
            "Planning %d resources (destroy=%s, refresh=%s)", len(resources), destroy, refresh
        )
        # Only lock when refresh may write state.
        lock_cm = self._lock() if refresh else contextlib.nullcontext()
        with lock_cm:
            state = self._load_state()

            if refresh:
                changed = self._refresh_state_in_place(state)
                if changed:
                    state.persist(self._state_path)

            desired_by_addr: dict[str, Resource] = {}
            for r in resources:
                if r.address in desired_by_addr:
                    raise DuplicateAddressError(r.address)
                self._registry.get(r.resource_type)
                desired_by_addr[r.address] = r

            if not destroy:
                self._validate(desired_by_addr, state, outputs)

            state_addrs = set(state.resources)
            if destroy:
                changes = self._plan_deletes(state, state_addrs)
            else:
                graph = self.graph(list(desired_by_addr.values()))
                dep_map = self.resolve_dependencies(desired_by_addr)
                changes = [
                    self._classify_change(addr, desired_by_addr[addr], state, dep_map[addr])
                    for addr in graph.topological_order()
                ]
                changes.extend(self._plan_deletes(state, state_addrs - set(desired_by_addr)))

            metadata = PlanMetadata(
                workspace=self._workspace,
                region=self._ctx.region,
                created_at=datetime.now(UTC),
                destroy=destroy,
                refresh=refresh,
                parameters=self._recorded_parameters(),
                state_lineage=state.lineage,
                state_serial=state.serial,
                state_digest=compute_state_digest(state),
                config_digest=_compute_config_digest([] if destroy else resources),
                engine_version=__version__,
            )

            plan = Plan(
                metadata=metadata,
                changes=changes,
                outputs=evaluate_outputs(outputs, changes),
            )
            logger.info("Plan: %s", plan.summary())
            return plan
