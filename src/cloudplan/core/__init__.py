"""Core infrastructure components for cloudplan."""

from cloudplan.core.provider import AWSProvider
from cloudplan.core.state import ResourceInstance, State

__all__ = ["AWSProvider", "ResourceInstance", "State"]
