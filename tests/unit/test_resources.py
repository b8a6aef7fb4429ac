from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from cloudplan.resources import (
    InstanceResource,
    Rule,
    SecurityGroupResource,
    resolve_user_data_files,
)
from cloudplan.resources.markers import (
    ResourceRef,
    collect_compare_strategies,
    collect_force_new_fields,
)


class TestRule:
    def test_defaults_to_tcp(self) -> None:
        rule = Rule(from_port=80, to_port=80)
        assert rule.protocol == "tcp"
        assert rule.cidr_blocks == []

    def test_cidrs_are_sorted(self) -> None:
        rule = Rule(from_port=22, to_port=22, cidr_blocks=["10.0.0.0/8", "0.0.0.0/0"])
        assert rule.cidr_blocks == ["0.0.0.0/0", "10.0.0.0/8"]

    def test_invalid_cidr(self) -> None:
        with pytest.raises(ValidationError, match="Invalid CIDR block '10.0.0.0/33'"):
            Rule(from_port=22, to_port=22, cidr_blocks=["10.0.0.0/33"])

    def test_port_range_order(self) -> None:
        with pytest.raises(ValidationError, match="from_port 443 is greater than to_port 80"):
            Rule(from_port=443, to_port=80)

    def test_all_traffic_requires_zero_ports(self) -> None:
        with pytest.raises(ValidationError, match="requires from_port=0 and to_port=0"):
            Rule(protocol="-1", from_port=0, to_port=65535)

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Rule(from_port=22, to_port=22, cidr="0.0.0.0/0")  # type: ignore[call-arg]


class TestSecurityGroupResource:
    def test_address_and_group_name_default(self) -> None:
        sg = SecurityGroupResource(name="web_sg")
        assert sg.address == "aws_security_group.web_sg"
        assert sg.group_name == "web_sg"
        assert sg.description == "Managed by cloudplan"

    def test_explicit_group_name_kept(self) -> None:
        sg = SecurityGroupResource(name="web_sg", group_name="web-sg-prod")
        assert sg.group_name == "web-sg-prod"

    def test_rules_in_canonical_order(self) -> None:
        http = Rule(from_port=80, to_port=80, cidr_blocks=["0.0.0.0/0"])
        ssh = Rule(from_port=22, to_port=22, cidr_blocks=["0.0.0.0/0"])
        a = SecurityGroupResource(name="web_sg", ingress=[http, ssh])
        b = SecurityGroupResource(name="web_sg", ingress=[ssh, http])
        assert a.model_dump() == b.model_dump()
        assert [r.from_port for r in a.ingress] == [22, 80]

    def test_invalid_name(self) -> None:
        with pytest.raises(ValidationError):
            SecurityGroupResource(name="web-sg")

    def test_markers(self) -> None:
        assert collect_force_new_fields(SecurityGroupResource) == {
            "group_name",
            "description",
            "vpc_id",
        }
        strategies = collect_compare_strategies(SecurityGroupResource)
        assert strategies["ingress"] == "exact"
        assert strategies["tags"] == "exact"


class TestInstanceResource:
    def test_defaults(self) -> None:
        inst = InstanceResource(name="web", ami="ami-0c55b159cbfafe1f0")
        assert inst.address == "aws_instance.web"
        assert inst.instance_type == "t2.micro"
        assert inst.associate_public_ip_address is True
        assert inst.user_data == ""

    def test_security_groups_are_typed_references(self) -> None:
        inst = InstanceResource(name="web", ami="ami-123", security_groups=["web_sg", "ssh_sg"])
        assert inst.references() == [
            ResourceRef("web_sg", "aws_security_group"),
            ResourceRef("ssh_sg", "aws_security_group"),
        ]
        assert inst.reference_names() == ["web_sg", "ssh_sg"]

    def test_invalid_ami(self) -> None:
        with pytest.raises(ValidationError):
            InstanceResource(name="web", ami="image-123")

    def test_invalid_instance_type(self) -> None:
        with pytest.raises(ValidationError):
            InstanceResource(name="web", ami="ami-123", instance_type="micro")

    def test_user_data_and_file_conflict(self) -> None:
        with pytest.raises(ValidationError, match="Cannot set both 'user_data' and 'user_data_file'"):
            InstanceResource(
                name="web", ami="ami-123", user_data="#!/bin/sh\n", user_data_file="boot.sh"
            )

    def test_user_data_file_not_dumped(self) -> None:
        inst = InstanceResource(name="web", ami="ami-123", user_data_file="boot.sh")
        assert "user_data_file" not in inst.model_dump()

    def test_force_new_fields(self) -> None:
        assert collect_force_new_fields(InstanceResource) == {"ami", "user_data"}
        assert collect_compare_strategies(InstanceResource)["security_groups"] == "set"


class TestTags:
    def test_reserved_prefix(self) -> None:
        with pytest.raises(ValidationError, match="reserved 'aws:' prefix"):
            SecurityGroupResource(name="web_sg", tags={"aws:owner": "me"})

    def test_value_length(self) -> None:
        with pytest.raises(ValidationError, match="value exceeds 256 characters"):
            SecurityGroupResource(name="web_sg", tags={"Name": "x" * 257})

    def test_too_many(self) -> None:
        tags = {f"k{i}": "v" for i in range(51)}
        with pytest.raises(ValidationError, match="at most 50 tags"):
            SecurityGroupResource(name="web_sg", tags=tags)

    def test_desired_attributes_exclude_bookkeeping(self) -> None:
        sg = SecurityGroupResource(name="web_sg", tags={"Name": "web"}, depends_on=["x.y"])
        attrs = sg.desired_attributes()
        assert attrs["tags"] == {"Name": "web"}
        assert "address" not in attrs
        assert "depends_on" not in attrs


class TestResolveUserDataFiles:
    def test_explicit_file(self, tmp_path: Path) -> None:
        (tmp_path / "scripts").mkdir()
        (tmp_path / "scripts" / "boot.sh").write_text("#!/bin/sh\necho explicit\n")
        inst = InstanceResource(name="web", ami="ami-123", user_data_file="scripts/boot.sh")

        resolve_user_data_files([inst], tmp_path)

        assert inst.user_data == "#!/bin/sh\necho explicit\n"

    def test_convention_path(self, tmp_path: Path) -> None:
        (tmp_path / "bootstrap").mkdir()
        (tmp_path / "bootstrap" / "web.sh").write_text("#!/bin/sh\necho convention\n")
        inst = InstanceResource(name="web", ami="ami-123")

        resolve_user_data_files([inst], tmp_path)

        assert inst.user_data == "#!/bin/sh\necho convention\n"

    def test_inline_user_data_wins_over_convention(self, tmp_path: Path) -> None:
        (tmp_path / "bootstrap").mkdir()
        (tmp_path / "bootstrap" / "web.sh").write_text("ignored\n")
        inst = InstanceResource(name="web", ami="ami-123", user_data="inline\n")

        resolve_user_data_files([inst], tmp_path)

        assert inst.user_data == "inline\n"

    def test_missing_explicit_file_raises(self, tmp_path: Path) -> None:
        inst = InstanceResource(name="web", ami="ami-123", user_data_file="nope.sh")
        with pytest.raises(FileNotFoundError):
            resolve_user_data_files([inst], tmp_path)

    def test_other_resources_pass_through(self, tmp_path: Path) -> None:
        sg = SecurityGroupResource(name="web_sg")
        assert resolve_user_data_files([sg], tmp_path) == [sg]
