"""Engine types (plan, changes, outputs, metadata)."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

from cloudplan import __version__
from cloudplan.engine.errors import ValidationError

if TYPE_CHECKING:
    from cloudplan.config.schema import Config


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOOP = "no-op"


class PlanMetadata(BaseModel):
    workspace: str
    region: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool
    refresh: bool
    parameters: dict[str, Any] = Field(default_factory=dict)
    state_lineage: str
    state_serial: int
    state_digest: str
    config_digest: str
    engine_version: str


class ResourceChange(BaseModel):
    address: str
    resource_type: str
    action: Action
    desired: dict[str, Any] | None = None
    prior: dict[str, Any] | None = None
    planned: dict[str, Any] | None = None
    diff: dict[str, Any] | None = None
    replace_fields: list[str] | None = None


class OutputValue(BaseModel):
    """An output as seen by a plan.

    ``known`` is False when the value only exists once the plan is applied
    (e.g. the address of an instance that is yet to be created).
    """

    value: Any = None
    known: bool = True
    sensitive: bool = False
    description: str = ""


class Plan(BaseModel):
    metadata: PlanMetadata
    changes: list[ResourceChange]
    outputs: dict[str, OutputValue] = Field(default_factory=dict)

    def summary(self) -> dict[str, int]:
        """Count changes per action; a replace counts as one add plus one destroy."""
        counts = {a.value: 0 for a in Action}
        for c in self.changes:
            counts[c.action.value] += 1
        counts["create"] += counts["replace"]
        counts["delete"] += counts["replace"]
        return counts

    def has_changes(self) -> bool:
        return any(c.action != Action.NOOP for c in self.changes)

    def save(self, path: Path) -> None:
        _write_json(path, self)

    @classmethod
    def load(cls, path: Path) -> Plan:
        path = Path(path)
        return cls.model_validate_json(path.read_text(encoding="utf-8"))


class PlanFailure(BaseModel):
    """A plan that could not be computed, saved where the plan would have gone.

    Carries whatever was known when planning stopped, so ``show`` can explain
    the failure from a CI artifact.  ``workspace`` and ``region`` are unset
    when the configuration itself failed to load.
    """

    status: Literal["failed"] = "failed"
    workspace: str | None = None
    region: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool = False
    refresh: bool = True
    parameters: dict[str, Any] = Field(default_factory=dict)
    config_path: str | None = None
    error: str
    message: str
    errors: list[str] = Field(default_factory=list)
    engine_version: str

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        *,
        config: Config | None = None,
        config_path: Path | None = None,
        destroy: bool = False,
        refresh: bool = True,
    ) -> PlanFailure:
        known: dict[str, Any] = {}
        if config is not None:
            sensitive = config.sensitive_parameters
            known = {
                "workspace": config.workspace,
                "region": config.provider.region,
                "parameters": {
                    k: "(sensitive)" if k in sensitive else v for k, v in config.values.items()
                },
            }
        return cls(
            destroy=destroy,
            refresh=refresh,
            config_path=str(config_path) if config_path is not None else None,
            error=type(exc).__name__,
            message=str(exc),
            errors=list(exc.errors) if isinstance(exc, ValidationError) else [],
            engine_version=__version__,
            **known,
        )

    def save(self, path: Path) -> None:
        _write_json(path, self)


def _write_json(path: Path, model: BaseModel) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = model.model_dump(mode="json")
    path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def load_plan_file(path: Path) -> Plan | PlanFailure:
    """Read a saved plan, or the failure record written in its place."""
    path = Path(path)
    raw = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(raw, dict) and raw.get("status") == "failed":
        return PlanFailure.model_validate(raw)
    return Plan.model_validate(raw)
