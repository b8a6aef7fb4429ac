"""Security group resource model."""

from __future__ import annotations

import ipaddress
from typing import Annotated, ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cloudplan.resources.base import Resource
from cloudplan.resources.markers import Compare, ForceNew


class Rule(BaseModel):
    """A single ingress or egress rule."""

    model_config = ConfigDict(extra="forbid")

    protocol: Literal["tcp", "udp", "icmp", "-1"] = "tcp"
    from_port: int = Field(ge=-1, le=65535)
    to_port: int = Field(ge=-1, le=65535)
    cidr_blocks: list[str] = Field(default_factory=list)
    description: str = ""

    @field_validator("cidr_blocks")
    @classmethod
    def _check_cidrs(cls, v: list[str]) -> list[str]:
        for cidr in v:
            try:
                ipaddress.ip_network(cidr)
            except ValueError as exc:
                raise ValueError(f"Invalid CIDR block '{cidr}': {exc}") from exc
        return sorted(v)

    @model_validator(mode="after")
    def _check_ports(self) -> Self:
        if self.protocol == "-1":
            if (self.from_port, self.to_port) != (0, 0):
                raise ValueError("protocol '-1' (all traffic) requires from_port=0 and to_port=0")
        elif self.from_port > self.to_port:
            raise ValueError(f"from_port {self.from_port} is greater than to_port {self.to_port}")
        return self

    def sort_key(self) -> tuple[str, int, int, tuple[str, ...]]:
        return (self.protocol, self.from_port, self.to_port, tuple(self.cidr_blocks))


def _sorted_rules(rules: list[Rule]) -> list[Rule]:
    return sorted(rules, key=Rule.sort_key)


class SecurityGroupResource(Resource):
    """A network rule set attached to compute instances.

    Rules are kept in a canonical order so that reordering them in YAML does
    not show up as a change.
    """

    resource_type: ClassVar[str] = "aws_security_group"
    namespace: ClassVar[str] = "security_group"
    plan_priority: ClassVar[int] = 10
    computed_attributes: ClassVar[frozenset[str]] = frozenset({"id", "arn"})

    group_name: Annotated[str | None, ForceNew()] = None
    description: Annotated[str, ForceNew()] = "Managed by cloudplan"
    vpc_id: Annotated[str | None, ForceNew()] = None
    ingress: Annotated[list[Rule], Compare("exact")] = Field(default_factory=list)
    egress: Annotated[list[Rule], Compare("exact")] = Field(default_factory=list)

    @field_validator("ingress", "egress")
    @classmethod
    def _canonical_order(cls, v: list[Rule]) -> list[Rule]:
        return _sorted_rules(v)

    @model_validator(mode="after")
    def _default_group_name(self) -> Self:
        if self.group_name is None:
            self.group_name = self.name
        return self
