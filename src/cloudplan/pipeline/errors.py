"""Pipeline error types."""

from __future__ import annotations


class PipelineConfigError(Exception):
    """Raised when a pipeline definition cannot be read or is invalid."""
