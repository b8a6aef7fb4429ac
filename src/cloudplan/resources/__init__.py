"""Declared cloud resource definitions."""

from cloudplan.resources.base import Resource
from cloudplan.resources.instance import InstanceResource
from cloudplan.resources.loader import resolve_user_data_files
from cloudplan.resources.security_group import Rule, SecurityGroupResource

__all__ = [
    "InstanceResource",
    "Resource",
    "Rule",
    "SecurityGroupResource",
    "resolve_user_data_files",
]
