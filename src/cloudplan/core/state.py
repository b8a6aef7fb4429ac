"""The recorded state of a workspace, as cloudplan reads it.

cloudplan never creates or changes cloud resources, so the state file is an
input: whatever applied the last plan wrote it.  cloudplan itself only writes
an empty state (``init``) and persisted refreshes, and every such write is a
new version with a higher ``serial``.
"""

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import uuid
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


def _canonical_json(obj: Any) -> str:
    # Sorted keys, no whitespace; datetimes and paths hash through str().
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_attributes_hash(attrs: Mapping[str, Any]) -> str:
    """SHA-256 of the canonical JSON of *attrs*."""
    return hashlib.sha256(_canonical_json(attrs).encode("utf-8")).hexdigest()


class ResourceInstance(BaseModel):
    """A resource as last seen by an apply or a refresh.

    ``attributes`` holds everything read back from the cloud, including
    computed values such as ``id`` or ``public_ip``; plans diff declared
    attributes against it and outputs are answered from it.
    """

    address: str
    resource_type: str
    name: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    attributes_hash: str = ""
    dependencies: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @classmethod
    def recorded(
        cls, address: str, attributes: Mapping[str, Any], dependencies: Iterable[str] = ()
    ) -> "ResourceInstance":
        """Build an instance for ``<resource_type>.<name>`` with its hash filled in."""
        resource_type, _, name = address.partition(".")
        if not name:
            raise ValueError(f"Invalid resource address: {address!r}")
        attrs = dict(attributes)
        return cls(
            address=address,
            resource_type=resource_type,
            name=name,
            attributes=attrs,
            attributes_hash=compute_attributes_hash(attrs),
            dependencies=sorted(dependencies),
        )

    def differs_from(self, live: Mapping[str, Any]) -> bool:
        """Whether *live* attributes differ from what was recorded."""
        return live != self.attributes or compute_attributes_hash(live) != self.attributes_hash


class State(BaseModel):
    """Recorded state of one workspace.

    ``lineage`` names the history a state file belongs to and ``serial`` its
    position in that history; a plan's metadata carries both, plus
    :func:`compute_state_digest`, to identify the state it was computed from.
    """

    version: int = 1
    workspace: str
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, ResourceInstance] = Field(default_factory=dict)
    # Values recorded by the last apply; read by ``cloudplan output``.
    outputs: dict[str, Any] = Field(default_factory=dict)

    def observe(self, address: str, live: Mapping[str, Any] | None) -> bool:
        """Record what a refresh read for *address*.

        ``None`` means the resource no longer exists and drops it.  Returns
        whether the recorded state changed.
        """
        inst = self.resources.get(address)
        if inst is None:
            raise KeyError(address)
        if live is None:
            logger.info("%s no longer exists; dropping it from state", address)
            del self.resources[address]
            return True
        if not inst.differs_from(live):
            return False
        inst.attributes = dict(live)
        inst.attributes_hash = compute_attributes_hash(live)
        inst.updated_at = _now()
        return True

    def persist(self, path: Path) -> None:
        """Write this state as the next version at *path* (``serial`` + 1)."""
        self.serial += 1
        self.save(path)

    def save(self, path: Path) -> None:
        """Write the state as JSON, atomically.

        The file being replaced is kept as ``<path>.backup``.
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        backup_path = Path(str(path) + ".backup")
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        content = json.dumps(self.model_dump(mode="json"), indent=2, sort_keys=True) + "\n"
        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> "State":
        state = cls.model_validate_json(path.read_text(encoding="utf-8"))
        logger.debug("State loaded from %s (serial %d)", path, state.serial)
        return state

    @classmethod
    def load_or_create(cls, path: Path, workspace: str) -> "State":
        """Load the state at *path*, or an empty one for *workspace* (not written)."""
        if path.exists():
            return cls.load(path)
        logger.debug("No state at %s; starting empty for workspace %s", path, workspace)
        return cls(workspace=workspace)


def compute_state_digest(state: State) -> str:
    """Fingerprint of the state a plan was computed against.

    Covers the state's identity (workspace, lineage, serial) and, per
    resource, exactly what planning compares: the attribute hash and the
    recorded dependencies.  Timestamps and recorded outputs are not covered.
    """
    resources = [
        {
            "address": address,
            "resource_type": inst.resource_type,
            "attributes_hash": inst.attributes_hash,
            "dependencies": sorted(inst.dependencies),
        }
        for address, inst in sorted(state.resources.items())
    ]
    identity = {
        "version": state.version,
        "workspace": state.workspace,
        "lineage": state.lineage,
        "serial": state.serial,
        "resources": resources,
    }
    return hashlib.sha256(_canonical_json(identity).encode("utf-8")).hexdigest()
