"""Compute instance handler reading live state via the EC2 API."""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Any

from cloudplan.bootstrap import non_idempotent_steps
from cloudplan.engine.handlers import ResourceHandler
from cloudplan.engine.security_group_handler import tags_to_dict

if TYPE_CHECKING:
    from cloudplan.core.state import ResourceInstance
    from cloudplan.engine.handlers import EngineContext
    from cloudplan.resources.instance import InstanceResource

logger = logging.getLogger(__name__)

_NOT_FOUND = ("InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed")
_GONE_STATES = frozenset({"shutting-down", "terminated"})
# EC2 rejects user data larger than 16 KB before base64 encoding.
_USER_DATA_LIMIT = 16 * 1024


class InstanceHandler(ResourceHandler["InstanceResource"]):
    """Handler for EC2 instances."""

    def validate(self, ctx: EngineContext, desired: InstanceResource) -> list[str]:
        _ = ctx
        errors: list[str] = []
        size = len(desired.user_data.encode("utf-8"))
        if size > _USER_DATA_LIMIT:
            errors.append(
                f"Resource '{desired.address}' user_data is {size} bytes "
                f"(limit {_USER_DATA_LIMIT})"
            )
        for step in non_idempotent_steps(desired.user_data):
            logger.warning(
                "%s: bootstrap line %d starts container '%s' under a fixed name; "
                "re-running the script on the same instance will fail there",
                desired.address,
                step.line_no,
                step.container_name,
            )
        return errors

    def _user_data(self, ctx: EngineContext, instance_id: str) -> str:
        response = ctx.provider.call(
            "DescribeInstanceAttribute",
            ctx.provider.ec2.describe_instance_attribute,
            InstanceId=instance_id,
            Attribute="userData",
        )
        encoded = ((response or {}).get("UserData") or {}).get("Value")
        if not encoded:
            return ""
        return base64.b64decode(encoded).decode("utf-8")

    def _security_group_names(self, inst: dict[str, Any], prior: ResourceInstance) -> list[str]:
        """Map live group ids back to declared names when they are unchanged."""
        live_ids = sorted(g["GroupId"] for g in inst.get("SecurityGroups", []))
        if live_ids == sorted(prior.attributes.get("security_group_ids", [])):
            return list(prior.attributes.get("security_groups", []))
        return sorted(g["GroupName"] for g in inst.get("SecurityGroups", []))

    def _read_attrs(
        self, ctx: EngineContext, inst: dict[str, Any], prior: ResourceInstance
    ) -> dict[str, Any]:
        """Extract attributes matching InstanceResource.model_dump output."""
        attrs: dict[str, Any] = {
            "id": inst["InstanceId"],
            "name": prior.name,
            # EC2 has no description field; echo it back to avoid phantom diffs.
            "description": prior.attributes.get("description", ""),
            "tags": tags_to_dict(inst.get("Tags")),
            "ami": inst.get("ImageId"),
            "instance_type": inst.get("InstanceType"),
            "security_groups": self._security_group_names(inst, prior),
            "security_group_ids": sorted(g["GroupId"] for g in inst.get("SecurityGroups", [])),
            "associate_public_ip_address": bool(inst.get("PublicIpAddress")),
            "public_ip": inst.get("PublicIpAddress"),
            "private_ip": inst.get("PrivateIpAddress"),
            "availability_zone": (inst.get("Placement") or {}).get("AvailabilityZone"),
            "instance_state": (inst.get("State") or {}).get("Name"),
            "user_data": self._user_data(ctx, inst["InstanceId"]),
        }
        if inst.get("KeyName"):
            attrs["key_name"] = inst["KeyName"]
        return attrs

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        instance_id = prior.attributes.get("id")
        if not instance_id:
            logger.debug("%s has no recorded id; treating as gone", prior.address)
            return None
        response = ctx.provider.call(
            "DescribeInstances",
            ctx.provider.ec2.describe_instances,
            not_found=_NOT_FOUND,
            InstanceIds=[instance_id],
        )
        instances = [
            inst
            for reservation in (response or {}).get("Reservations", [])
            for inst in reservation.get("Instances", [])
        ]
        if not instances:
            return None
        inst = instances[0]
        if (inst.get("State") or {}).get("Name") in _GONE_STATES:
            return None
        return self._read_attrs(ctx, inst, prior)
