"""Configuration models for YAML-based plans."""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PrivateAttr,
    computed_field,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from cloudplan.config.parameters import (
    ParameterSpec,  # noqa: TC001 - Pydantic needs this at runtime
)
from cloudplan.engine.outputs import OutputSpec  # noqa: TC001 - Pydantic needs this at runtime
from cloudplan.resources.base import Resource  # noqa: TC001 - Pydantic needs this at runtime
from cloudplan.resources.instance import (
    InstanceResource,  # noqa: TC001 - Pydantic needs this at runtime
)
from cloudplan.resources.security_group import (
    SecurityGroupResource,  # noqa: TC001 - Pydantic needs this at runtime
)


class ProviderConfig(BaseSettings):
    """Cloud provider settings.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``AWS_`` prefix.  Constructor kwargs take precedence.

    Credentials are never part of the configuration; boto3 finds them through
    its usual chain (env vars, shared credentials file, instance profile).
    """

    model_config = SettingsConfigDict(env_prefix="AWS_")

    region: str | None = None
    profile: str | None = None
    endpoint_url: str | None = None


DEFAULT_STATE_PATH = Path(".cloudplan-state.json")


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


class Config(BaseModel):
    """Plan configuration, validated from YAML after parameter interpolation.

    Frozen once loaded.  A relative ``state_path`` is anchored at
    ``config_dir``; resolved parameter values arrive through the validation
    context (``{"values": ...}``).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    workspace: str = Field(default="default", pattern=r"^[A-Za-z0-9_.-]+$")
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    state_path: Path = DEFAULT_STATE_PATH
    lock_timeout: float | None = Field(default=None, ge=0)
    parameters: Annotated[list[ParameterSpec], BeforeValidator(_none_to_list)] = []
    security_groups: Annotated[
        list[SecurityGroupResource], BeforeValidator(_none_to_list)
    ] = []
    instances: Annotated[list[InstanceResource], BeforeValidator(_none_to_list)] = []
    outputs: Annotated[list[OutputSpec], BeforeValidator(_none_to_list)] = []
    config_dir: Path = Path()

    _values: MappingProxyType[str, Any] = PrivateAttr(
        default_factory=lambda: MappingProxyType({})
    )

    @model_validator(mode="before")
    @classmethod
    def _anchor_state_path(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "config_dir" not in data:
            return data
        state_path = Path(data.get("state_path") or DEFAULT_STATE_PATH)
        if state_path.is_absolute():
            return data
        return {**data, "state_path": Path(data["config_dir"]) / state_path}

    def model_post_init(self, context: Any) -> None:
        values = (context or {}).get("values", {})
        self._values = MappingProxyType(dict(values))

    @property
    def values(self) -> MappingProxyType[str, Any]:
        """Resolved parameter values (read-only)."""
        return self._values

    @property
    def sensitive_parameters(self) -> frozenset[str]:
        return frozenset(p.name for p in self.parameters if p.sensitive)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def resources(self) -> list[Resource]:
        """All declared resources; ordering is not significant."""
        return [*self.security_groups, *self.instances]
