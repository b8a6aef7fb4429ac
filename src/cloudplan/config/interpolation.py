"""``${var.<name>}`` substitution in declaration values.

A string that consists of exactly one placeholder is replaced by the
parameter's typed value (so ``count: ${var.size}`` stays a number); anywhere
else the value is formatted into the surrounding text.  ``$${var.x}``
escapes a literal ``${var.x}``.  Other ``${...}`` forms, such as shell
variables in a bootstrap script, are left untouched.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from cloudplan.config.errors import ParameterError

if TYPE_CHECKING:
    from collections.abc import Mapping

_PLACEHOLDER = re.compile(r"(\$?)\$\{var\.([A-Za-z_][A-Za-z0-9_]*)\}")


def _lookup(name: str, parameters: Mapping[str, Any], where: str) -> Any:
    try:
        return parameters[name]
    except KeyError:
        raise ParameterError(f"{where}: reference to undeclared parameter 'var.{name}'") from None


def _format(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _interpolate_str(value: str, parameters: Mapping[str, Any], where: str) -> Any:
    whole = _PLACEHOLDER.fullmatch(value)
    if whole is not None and not whole.group(1):
        return _lookup(whole.group(2), parameters, where)

    def _sub(match: re.Match[str]) -> str:
        if match.group(1):
            return match.group(0)[1:]
        return _format(_lookup(match.group(2), parameters, where))

    return _PLACEHOLDER.sub(_sub, value)


def interpolate(value: Any, parameters: Mapping[str, Any], *, where: str = "") -> Any:
    """Replace ``${var.<name>}`` placeholders in *value*, recursively.

    *where* is a dotted location used in error messages, e.g.
    ``instances[0].ami``.
    """
    if isinstance(value, str):
        return _interpolate_str(value, parameters, where)
    if isinstance(value, dict):
        return {
            k: interpolate(v, parameters, where=f"{where}.{k}" if where else str(k))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [interpolate(v, parameters, where=f"{where}[{i}]") for i, v in enumerate(value)]
    return value


def referenced_parameters(value: Any) -> set[str]:
    """Names of parameters referenced anywhere in *value*."""
    if isinstance(value, str):
        return {m.group(2) for m in _PLACEHOLDER.finditer(value) if not m.group(1)}
    if isinstance(value, dict):
        return set().union(*(referenced_parameters(v) for v in value.values()))
    if isinstance(value, list):
        return set().union(*(referenced_parameters(v) for v in value))
    return set()
