"""Compute instance resource model."""

from __future__ import annotations

from typing import Annotated, ClassVar, Self

from pydantic import Field, model_validator

from cloudplan.resources.base import Resource
from cloudplan.resources.markers import Compare, ForceNew, Ref


class InstanceResource(Resource):
    """A single compute instance.

    ``security_groups`` holds the *names* of declared security group
    resources; the engine turns them into dependency edges.  ``user_data`` is
    the bootstrap script run once at first boot by the guest's init system.
    """

    resource_type: ClassVar[str] = "aws_instance"
    namespace: ClassVar[str] = "instance"
    computed_attributes: ClassVar[frozenset[str]] = frozenset(
        {
            "id",
            "public_ip",
            "private_ip",
            "availability_zone",
            "instance_state",
            "security_group_ids",
        }
    )

    ami: Annotated[str, ForceNew()] = Field(pattern=r"^ami-[0-9a-zA-Z]+$")
    instance_type: str = Field(default="t2.micro", pattern=r"^[a-z0-9-]+\.[a-z0-9]+$")
    security_groups: Annotated[
        list[str], Ref("aws_security_group"), Compare("set")
    ] = Field(default_factory=list)
    key_name: str | None = None
    associate_public_ip_address: bool = True
    user_data: Annotated[str, ForceNew()] = ""
    user_data_file: str | None = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _check_user_data_or_file(self) -> Self:
        if self.user_data and self.user_data_file:
            msg = "Cannot set both 'user_data' and 'user_data_file'"
            raise ValueError(msg)
        return self
