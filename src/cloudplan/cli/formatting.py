"""Plan and output rendering (Terraform-style)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from cloudplan.engine.types import Action

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from cloudplan.engine.types import OutputValue, Plan, ResourceChange


class _ActionStyle(NamedTuple):
    color: str
    symbol: str


_ACTION_STYLES: dict[str, _ActionStyle] = {
    "create": _ActionStyle("green", "+"),
    "update": _ActionStyle("yellow", "~"),
    "replace": _ActionStyle("magenta", "-/+"),
    "delete": _ActionStyle("red", "-"),
    "no-op": _ActionStyle("bright_black", " "),
}

_ACTION_DESC: dict[str, str] = {
    "create": "will be created",
    "update": "will be updated in-place",
    "replace": "must be replaced",
    "delete": "will be destroyed",
    "no-op": "is up-to-date",
}

KNOWN_AFTER_APPLY = "(known after apply)"
SENSITIVE_VALUE = "(sensitive value)"


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _align_values(items: dict[str, str]) -> list[tuple[str, str]]:
    """Right-pad keys so ``=`` signs align."""
    if not items:
        return []
    max_key = max(len(k) for k in items)
    return [(k.ljust(max_key), v) for k, v in items.items()]


def _format_value(value: Any) -> str:
    """Format a value for display in a plan diff block."""
    if isinstance(value, str):
        if "\n" in value:
            return "<<-EOT\n" + value.rstrip("\n") + "\nEOT"
        return f'"{value}"'
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict | list):
        return json.dumps(value, sort_keys=True)
    return str(value)


def _indent_continuation(text: str, prefix: str) -> str:
    first, *rest = text.split("\n")
    return "\n".join([first, *(f"{prefix}{line}" for line in rest)])


# ---------------------------------------------------------------------------
# Plan rendering
# ---------------------------------------------------------------------------


def _change_attrs(change: ResourceChange) -> dict[str, str]:
    """Extract displayable ``key → formatted value`` pairs from a change."""
    if change.action == Action.CREATE and change.planned:
        return {k: _format_value(v) for k, v in change.planned.items()}
    if change.action in (Action.UPDATE, Action.REPLACE) and change.diff:
        forced = set(change.replace_fields or [])
        return {
            k: f"{_format_value(d['from'])} -> {_format_value(d['to'])}"
            + (" # forces replacement" if k in forced else "")
            for k, d in change.diff.items()
        }
    return {}


def format_change(change: ResourceChange, *, color: bool = True) -> str:
    """Render a single ResourceChange as a Terraform-style block."""
    style = styler(color)
    action_val = change.action.value
    sc = {"fg": _ACTION_STYLES[action_val].color}
    symbol = _ACTION_STYLES[action_val].symbol

    name = change.address.split(".", 1)[1] if "." in change.address else change.address
    attr_prefix = " " * (7 + len(symbol))
    lines = [
        style(f"  # {change.address} {_ACTION_DESC[action_val]}", bold=True, **sc),
        style(f'  {symbol} resource "{change.resource_type}" "{name}" {{', **sc),
        *[
            style(_indent_continuation(f"      {symbol} {k} = {v}", attr_prefix), **sc)
            for k, v in _align_values(_change_attrs(change))
        ],
        style("    }", **sc),
    ]
    return "\n".join(lines)


def format_changes(
    changes: list[ResourceChange],
    *,
    color: bool = True,
    empty: str = "No changes. Infrastructure matches the configuration.",
) -> str:
    """Render a list of changes as Terraform-style diff blocks."""
    blocks = [format_change(c, color=color) for c in changes if c.action != Action.NOOP]
    if not blocks:
        return empty
    return "\n\n".join(blocks)


def format_plan(plan: Plan, *, color: bool = True) -> str:
    """Render the full plan output with per-change diff blocks."""
    return format_changes(plan.changes, color=color)


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------


def format_output_value(output: OutputValue) -> str:
    if output.sensitive:
        return SENSITIVE_VALUE
    if not output.known:
        return KNOWN_AFTER_APPLY
    return _format_value(output.value)


def format_outputs(
    outputs: Mapping[str, OutputValue], *, color: bool = True, header: str = "Outputs:"
) -> str:
    """Render ``name = value`` lines, masking sensitive values."""
    if not outputs:
        return ""
    style = styler(color)
    lines = [style(header, bold=True)]
    for name, value in _align_values(
        {k: format_output_value(v) for k, v in sorted(outputs.items())}
    ):
        lines.append(_indent_continuation(f"  {name} = {value}", "    "))
    return "\n".join(lines)


def outputs_to_json(outputs: Mapping[str, OutputValue]) -> str:
    """Machine-readable outputs, as ``{name: {value, known, sensitive}}``."""
    payload = {
        name: {"value": out.value, "known": out.known, "sensitive": out.sensitive}
        for name, out in sorted(outputs.items())
    }
    return json.dumps(payload, indent=2, sort_keys=True, default=str)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

_PLAN_VERBS = ("to add", "to change", "to destroy")
_SUMMARY_COLORS = ("green", "yellow", "red")


def _format_summary(summary: dict[str, int], verbs: tuple[str, ...], *, color: bool) -> str:
    """Build the ``N verb, N verb, N verb`` part of a summary line."""
    style = styler(color)
    counts = (summary.get("create", 0), summary.get("update", 0), summary.get("delete", 0))
    parts = [
        style(f"{n} {verb}", fg=fg) if n and color else f"{n} {verb}"
        for n, verb, fg in zip(counts, verbs, _SUMMARY_COLORS, strict=True)
    ]
    return ", ".join(parts)


def changes_summary(changes: list[ResourceChange]) -> dict[str, int]:
    """Count changes by action type; a replace counts as one add and one destroy."""
    summary: dict[str, int] = {"create": 0, "update": 0, "delete": 0}
    for c in changes:
        if c.action == Action.REPLACE:
            summary["create"] += 1
            summary["delete"] += 1
        elif c.action != Action.NOOP:
            summary[c.action.value] += 1
    return summary


def format_plan_summary(
    summary: dict[str, int], *, color: bool = True, header: str = "Plan"
) -> str:
    """Render ``Plan: 2 to add, 1 to change, 0 to destroy.``"""
    return f"{header}: {_format_summary(summary, _PLAN_VERBS, color=color)}."
