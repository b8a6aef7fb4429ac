from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Any, ClassVar
from unittest.mock import MagicMock

import pytest
from pydantic import Field

from cloudplan.core import AWSProvider, ResourceInstance
from cloudplan.core.state import State, compute_attributes_hash
from cloudplan.engine import PlanEngine
from cloudplan.engine.engine import _values_differ
from cloudplan.engine.errors import (
    DependencyCycleError,
    DuplicateAddressError,
    StateWorkspaceMismatchError,
    UnknownResourceTypeError,
    ValidationError,
)
from cloudplan.engine.handlers import EngineContext, ResourceHandler
from cloudplan.engine.outputs import OutputSpec
from cloudplan.engine.registry import ResourceTypeRegistry
from cloudplan.engine.types import Action, Plan
from cloudplan.resources.base import Resource
from cloudplan.resources.markers import Compare, ForceNew, Ref

if TYPE_CHECKING:
    from pathlib import Path


class DummyResource(Resource):
    resource_type: ClassVar[str] = "dummy"
    namespace: ClassVar[str] = "dummy"
    computed_attributes: ClassVar[frozenset[str]] = frozenset({"id", "endpoint"})

    value: int
    image: Annotated[str, ForceNew()] = "v1"
    peers: Annotated[list[str], Ref("dummy"), Compare("set")] = Field(default_factory=list)
    config: dict[str, Any] = Field(default_factory=dict)


class UnregisteredResource(Resource):
    resource_type: ClassVar[str] = "unregistered"
    namespace: ClassVar[str] = "unregistered"


def _attrs(resource: DummyResource) -> dict[str, Any]:
    return {
        "id": f"id-{resource.name}",
        "endpoint": f"{resource.name}.internal",
        "name": resource.name,
        "description": resource.description,
        "tags": dict(resource.tags),
        "value": resource.value,
        "image": resource.image,
        "peers": list(resource.peers),
        "config": dict(resource.config),
    }


class InMemoryHandler(ResourceHandler[DummyResource]):
    def __init__(self) -> None:
        self.reads: list[str] = []
        self.store: dict[str, dict[str, Any]] = {}

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        _ = ctx
        self.reads.append(prior.address)
        attrs = self.store.get(prior.address)
        return dict(attrs) if attrs is not None else None


def _engine(
    tmp_path: Path, *, workspace: str = "test", **kwargs: Any
) -> tuple[PlanEngine, InMemoryHandler]:
    provider = AWSProvider.from_client(MagicMock(), region="us-east-1")
    registry = ResourceTypeRegistry()
    handler = InMemoryHandler()
    registry.register(DummyResource, handler)
    engine = PlanEngine(
        provider=provider,
        workspace=workspace,
        state_path=tmp_path / "state.json",
        registry=registry,
        **kwargs,
    )
    return engine, handler


def _record(
    engine: PlanEngine,
    handler: InMemoryHandler,
    *resources: DummyResource,
    dependencies: dict[str, list[str]] | None = None,
) -> State:
    """Write a state file as if *resources* had been applied."""
    state = State(workspace=engine.workspace)
    for r in resources:
        attrs = _attrs(r)
        state.resources[r.address] = ResourceInstance(
            address=r.address,
            resource_type=r.resource_type,
            name=r.name,
            attributes=attrs,
            attributes_hash=compute_attributes_hash(attrs),
            dependencies=(dependencies or {}).get(r.address, []),
        )
        handler.store[r.address] = dict(attrs)
    state.save(engine.state_path)
    return state


def test_plan_create_and_roundtrip(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)

    plan = engine.plan([DummyResource(name="r1", value=1)])

    assert [c.action for c in plan.changes] == [Action.CREATE]
    assert plan.changes[0].planned is not None
    assert plan.changes[0].planned["value"] == 1
    assert plan.summary()["create"] == 1
    assert plan.has_changes()

    plan_path = tmp_path / "plan.out"
    plan.save(plan_path)
    loaded = Plan.load(plan_path)
    assert loaded.changes == plan.changes
    assert loaded.metadata.region == "us-east-1"
    assert loaded.metadata.workspace == "test"


def test_plan_never_writes_state_for_new_workspace(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)
    engine.plan([DummyResource(name="r1", value=1)])
    assert not engine.state_path.exists()


def test_plan_noop_when_recorded_matches(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)
    r1 = DummyResource(name="r1", value=1, tags={"Name": "one"})
    _record(engine, InMemoryHandler(), r1)

    plan = engine.plan([r1], refresh=False)

    assert [c.action for c in plan.changes] == [Action.NOOP]
    assert not plan.has_changes()


def test_plan_update_diff(tmp_path: Path) -> None:
    engine, handler = _engine(tmp_path)
    _record(engine, handler, DummyResource(name="r1", value=1))

    plan = engine.plan([DummyResource(name="r1", value=2)], refresh=False)

    change = plan.changes[0]
    assert change.action == Action.UPDATE
    assert change.diff == {"value": {"from": 1, "to": 2}}
    assert change.replace_fields is None


def test_plan_replace_when_force_new_field_changes(tmp_path: Path) -> None:
    engine, handler = _engine(tmp_path)
    _record(engine, handler, DummyResource(name="r1", value=1, image="v1"))

    plan = engine.plan([DummyResource(name="r1", value=2, image="v2")], refresh=False)

    change = plan.changes[0]
    assert change.action == Action.REPLACE
    assert change.replace_fields == ["image"]
    assert set(change.diff or {}) == {"image", "value"}
    summary = plan.summary()
    assert (summary["create"], summary["update"], summary["delete"]) == (1, 0, 1)


def test_plan_tags_compared_exactly(tmp_path: Path) -> None:
    engine, handler = _engine(tmp_path)
    _record(engine, handler, DummyResource(name="r1", value=1, tags={"Name": "a", "env": "x"}))

    plan = engine.plan([DummyResource(name="r1", value=1, tags={"Name": "a"})], refresh=False)

    assert plan.changes[0].action == Action.UPDATE
    assert "tags" in (plan.changes[0].diff or {})


def test_plan_set_comparison_ignores_order(tmp_path: Path) -> None:
    engine, handler = _engine(tmp_path)
    a = DummyResource(name="a", value=1)
    b = DummyResource(name="b", value=1)
    _record(engine, handler, a, b, DummyResource(name="c", value=1, peers=["a", "b"]))

    plan = engine.plan([a, b, DummyResource(name="c", value=1, peers=["b", "a"])], refresh=False)

    assert {c.address: c.action for c in plan.changes}["dummy.c"] == Action.NOOP


def test_plan_deletes_undeclared_resources(tmp_path: Path) -> None:
    engine, handler = _engine(tmp_path)
    r1 = DummyResource(name="r1", value=1)
    _record(engine, handler, r1, DummyResource(name="gone", value=1))

    plan = engine.plan([r1], refresh=False)

    actions = {c.address: c.action for c in plan.changes}
    assert actions == {"dummy.r1": Action.NOOP, "dummy.gone": Action.DELETE}


def test_plan_orders_by_references(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)
    app = DummyResource(name="app", value=1, peers=["db"])
    db = DummyResource(name="db", value=1)

    plan = engine.plan([app, db])

    assert [c.address for c in plan.changes] == ["dummy.db", "dummy.app"]
    assert plan.changes[1].desired is not None
    assert plan.changes[1].desired["depends_on"] == ["dummy.db"]


def test_destroy_plans_deletes_in_reverse_dependency_order(tmp_path: Path) -> None:
    engine, handler = _engine(tmp_path)
    _record(
        engine,
        handler,
        DummyResource(name="db", value=1),
        DummyResource(name="app", value=1, peers=["db"]),
        dependencies={"dummy.app": ["dummy.db"]},
    )

    plan = engine.plan([], destroy=True, refresh=False)

    assert [(c.address, c.action) for c in plan.changes] == [
        ("dummy.app", Action.DELETE),
        ("dummy.db", Action.DELETE),
    ]
    assert plan.metadata.destroy is True


def test_dangling_reference_is_a_validation_error(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)

    with pytest.raises(ValidationError) as exc_info:
        engine.plan([DummyResource(name="app", value=1, peers=["missing"])])

    assert exc_info.value.errors == ["Resource 'dummy.app' references unknown dummy 'missing'"]


def test_unknown_depends_on_is_a_validation_error(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)

    with pytest.raises(ValidationError, match="depends on unknown address 'dummy.nope'"):
        engine.plan([DummyResource(name="app", value=1, depends_on=["dummy.nope"])])


def test_explicit_dependency_cycle(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)
    a = DummyResource(name="a", value=1, depends_on=["dummy.b"])
    b = DummyResource(name="b", value=1, depends_on=["dummy.a"])

    with pytest.raises(DependencyCycleError):
        engine.plan([a, b])


def test_duplicate_address(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)
    with pytest.raises(DuplicateAddressError):
        engine.plan([DummyResource(name="r1", value=1), DummyResource(name="r1", value=2)])


def test_unknown_resource_type(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)
    with pytest.raises(UnknownResourceTypeError):
        engine.plan([UnregisteredResource(name="x")])


def test_state_workspace_mismatch(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path, workspace="prod")
    State(workspace="dev").save(engine.state_path)

    with pytest.raises(StateWorkspaceMismatchError):
        engine.plan([], refresh=False)


def test_no_refresh_skips_reads(tmp_path: Path) -> None:
    engine, handler = _engine(tmp_path)
    r1 = DummyResource(name="r1", value=1)
    _record(engine, handler, r1)

    engine.plan([r1], refresh=False)

    assert handler.reads == []


def test_refresh_sees_out_of_band_deletion(tmp_path: Path) -> None:
    engine, handler = _engine(tmp_path)
    r1 = DummyResource(name="r1", value=1)
    _record(engine, handler, r1)
    handler.store.clear()

    plan = engine.plan([r1])

    assert handler.reads == ["dummy.r1"]
    assert plan.changes[0].action == Action.CREATE
    assert State.load(engine.state_path).serial == 1


def test_outputs_known_after_apply_on_create(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)
    outputs = [
        OutputSpec(name="endpoint", value="dummy.r1.endpoint"),
        OutputSpec(name="value", value="dummy.r1.value"),
    ]

    plan = engine.plan([DummyResource(name="r1", value=7)], outputs=outputs)

    assert plan.outputs["endpoint"].known is False
    assert plan.outputs["value"].known is True
    assert plan.outputs["value"].value == 7


def test_outputs_from_recorded_state_when_unchanged(tmp_path: Path) -> None:
    engine, handler = _engine(tmp_path)
    r1 = DummyResource(name="r1", value=1)
    _record(engine, handler, r1)

    plan = engine.plan(
        [r1], outputs=[OutputSpec(name="endpoint", value="dummy.r1.endpoint")], refresh=False
    )

    assert plan.outputs["endpoint"].known is True
    assert plan.outputs["endpoint"].value == "r1.internal"


def test_output_with_unknown_attribute_is_rejected(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)

    with pytest.raises(ValidationError, match="has no attribute 'colour'"):
        engine.plan(
            [DummyResource(name="r1", value=1)],
            outputs=[OutputSpec(name="c", value="dummy.r1.colour")],
        )


def test_metadata_masks_sensitive_parameters(tmp_path: Path) -> None:
    engine, _ = _engine(
        tmp_path,
        parameters={"region": "us-east-1", "token": "s3cret"},
        sensitive_parameters={"token"},
    )

    plan = engine.plan([])

    assert plan.metadata.parameters == {"region": "us-east-1", "token": "(sensitive)"}
    assert engine.context.parameters["token"] == "s3cret"


def test_validate_runs_without_state(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)
    State(workspace="other").save(engine.state_path)

    engine.validate([DummyResource(name="r1", value=1)])

    with pytest.raises(ValidationError):
        engine.validate([DummyResource(name="r1", value=1, peers=["nope"])])


def test_values_differ_strategies() -> None:
    assert not _values_differ({"a": 1}, {"a": 1, "extra": 2})
    assert _values_differ({"a": 1}, {"a": 1, "extra": 2}, strategy="exact")
    assert not _values_differ(["a", "b"], ["b", "a"], strategy="set")
    assert _values_differ(["a", "b"], ["a"], strategy="set")
    assert _values_differ(1, 2)
