from typing import ClassVar

import pytest

from cloudplan.config.registry import default_registry
from cloudplan.engine.errors import UnknownResourceTypeError
from cloudplan.engine.handlers import ResourceHandler
from cloudplan.engine.instance_handler import InstanceHandler
from cloudplan.engine.registry import ResourceTypeRegistry
from cloudplan.engine.security_group_handler import SecurityGroupHandler
from cloudplan.resources.base import Resource


class DummyResource(Resource):
    resource_type: ClassVar[str] = "dummy"
    namespace: ClassVar[str] = "dummy"
    value: int


class DummyHandler(ResourceHandler["DummyResource"]):
    pass


def test_registry_register_and_get() -> None:
    registry = ResourceTypeRegistry()
    handler = DummyHandler()

    registry.register(DummyResource, handler)
    reg = registry.get("dummy")

    assert reg.resource_type == "dummy"
    assert reg.model is DummyResource
    assert reg.handler is handler
    assert "dummy" in registry


def test_registry_duplicate_registration() -> None:
    registry = ResourceTypeRegistry()
    handler = DummyHandler()

    registry.register(DummyResource, handler)
    with pytest.raises(ValueError, match="already registered: dummy"):
        registry.register(DummyResource, handler)


def test_registry_unknown_type() -> None:
    registry = ResourceTypeRegistry()
    with pytest.raises(UnknownResourceTypeError, match="Unknown resource type: missing"):
        registry.get("missing")


def test_default_registry() -> None:
    registry = default_registry()
    assert list(registry) == ["aws_instance", "aws_security_group"]
    assert isinstance(registry.get("aws_instance").handler, InstanceHandler)
    assert isinstance(registry.get("aws_security_group").handler, SecurityGroupHandler)


def test_default_registry_independent_instances() -> None:
    r1 = default_registry()
    r2 = default_registry()
    assert r1 is not r2
    assert r1.get("aws_instance").handler is not r2.get("aws_instance").handler


def test_registration_caches_field_metadata() -> None:
    reg = default_registry().get("aws_instance")
    assert reg.force_new_fields == frozenset({"ami", "user_data"})
    assert reg.compare_strategies["security_groups"] == "set"
    assert reg.compare_strategies["tags"] == "exact"
    assert reg.priority > default_registry().get("aws_security_group").priority


def test_registration_requires_resource_type() -> None:
    class Untyped(Resource):
        namespace: ClassVar[str] = "x"

    with pytest.raises(ValueError, match="Untyped does not declare a resource_type"):
        ResourceTypeRegistry().register(Untyped, DummyHandler())
