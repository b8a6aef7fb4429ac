"""Security group handler reading live state via the EC2 API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from cloudplan.engine.handlers import ResourceHandler
from cloudplan.resources.security_group import Rule

if TYPE_CHECKING:
    from cloudplan.core.state import ResourceInstance
    from cloudplan.engine.handlers import EngineContext
    from cloudplan.resources.security_group import SecurityGroupResource

logger = logging.getLogger(__name__)

_NOT_FOUND = ("InvalidGroup.NotFound", "InvalidGroupId.NotFound", "InvalidGroupId.Malformed")
_OPEN_CIDRS = frozenset({"0.0.0.0/0", "::/0"})
_ADMIN_PORTS = frozenset({22, 3389})


def tags_to_dict(tags: list[dict[str, str]] | None) -> dict[str, str]:
    """Convert the EC2 ``[{"Key": ..., "Value": ...}]`` shape to a plain dict.

    AWS-managed ``aws:*`` tags cannot be declared and are left out.
    """
    return {
        t["Key"]: t.get("Value", "")
        for t in tags or []
        if not t["Key"].lower().startswith("aws:")
    }


def _rules_from_permissions(permissions: list[dict[str, Any]]) -> list[dict[str, Any]]:
    rules: list[Rule] = []
    for perm in permissions:
        protocol = str(perm.get("IpProtocol", "-1"))
        ranges = perm.get("IpRanges", [])
        ranges_v6 = perm.get("Ipv6Ranges", [])
        descriptions = [r["Description"] for r in [*ranges, *ranges_v6] if r.get("Description")]
        rules.append(
            Rule(
                protocol=protocol if protocol in {"tcp", "udp", "icmp"} else "-1",
                from_port=perm.get("FromPort", 0) if protocol != "-1" else 0,
                to_port=perm.get("ToPort", 0) if protocol != "-1" else 0,
                cidr_blocks=[r["CidrIp"] for r in ranges] + [r["CidrIpv6"] for r in ranges_v6],
                description=descriptions[0] if descriptions else "",
            )
        )
    return [r.model_dump() for r in sorted(rules, key=Rule.sort_key)]


class SecurityGroupHandler(ResourceHandler["SecurityGroupResource"]):
    """Handler for EC2 security groups."""

    def validate(self, ctx: EngineContext, desired: SecurityGroupResource) -> list[str]:
        _ = ctx
        errors: list[str] = []
        for direction, rules in (("ingress", desired.ingress), ("egress", desired.egress)):
            seen: set[tuple[str, int, int, tuple[str, ...]]] = set()
            for rule in rules:
                key = rule.sort_key()
                if key in seen:
                    errors.append(
                        f"Resource '{desired.address}' has a duplicate {direction} rule "
                        f"({rule.protocol} {rule.from_port}-{rule.to_port})"
                    )
                seen.add(key)
        for rule in desired.ingress:
            exposed = [p for p in _ADMIN_PORTS if rule.from_port <= p <= rule.to_port]
            if exposed and _OPEN_CIDRS & set(rule.cidr_blocks):
                logger.warning(
                    "%s allows port %s from anywhere", desired.address, sorted(exposed)[0]
                )
        return errors

    def _read_attrs(self, group: dict[str, Any], prior: ResourceInstance) -> dict[str, Any]:
        """Extract attributes matching SecurityGroupResource.model_dump output."""
        attrs: dict[str, Any] = {
            "id": group["GroupId"],
            "arn": group.get("SecurityGroupArn"),
            "name": prior.name,
            "group_name": group.get("GroupName"),
            "description": group.get("Description", ""),
            "tags": tags_to_dict(group.get("Tags")),
            "ingress": _rules_from_permissions(group.get("IpPermissions", [])),
            "egress": _rules_from_permissions(group.get("IpPermissionsEgress", [])),
        }
        if group.get("VpcId"):
            attrs["vpc_id"] = group["VpcId"]
        return attrs

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        group_id = prior.attributes.get("id")
        if not group_id:
            logger.debug("%s has no recorded id; treating as gone", prior.address)
            return None
        response = ctx.provider.call(
            "DescribeSecurityGroups",
            ctx.provider.ec2.describe_security_groups,
            not_found=_NOT_FOUND,
            GroupIds=[group_id],
        )
        groups = (response or {}).get("SecurityGroups", [])
        if not groups:
            return None
        return self._read_attrs(groups[0], prior)
