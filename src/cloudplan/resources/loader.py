"""Bootstrap script loading for instance resources."""

from __future__ import annotations

from typing import TYPE_CHECKING

from cloudplan.resources.instance import InstanceResource

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from cloudplan.resources.base import Resource

_BOOTSTRAP_DIR = "bootstrap"
_BOOTSTRAP_EXT = ".sh"


def resolve_user_data_files(resources: Iterable[Resource], base_dir: Path) -> list[Resource]:
    """Resolve ``user_data_file`` references and convention paths for instances.

    For each instance:

    1. **Explicit user_data_file**: read ``base_dir / user_data_file``.
    2. **Convention** (no file, empty ``user_data``): try
       ``base_dir / "bootstrap" / "{name}.sh"``.
    3. **Already has user_data**: skip.
    """
    result: list[Resource] = []
    for resource in resources:
        if isinstance(resource, InstanceResource):
            content = _read_user_data(resource, base_dir)
            if content is not None:
                resource.user_data = content
        result.append(resource)
    return result


def _read_user_data(resource: InstanceResource, base_dir: Path) -> str | None:
    if resource.user_data_file:
        return (base_dir / resource.user_data_file).read_text()

    if resource.user_data:
        return None

    convention_path = base_dir / _BOOTSTRAP_DIR / f"{resource.name}{_BOOTSTRAP_EXT}"
    if convention_path.exists():
        return convention_path.read_text()

    return None
