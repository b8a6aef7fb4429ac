"""Configuration error types."""

from __future__ import annotations


class ConfigError(Exception):
    """Raised for configuration loading / validation errors."""


class ParameterError(ConfigError):
    """Raised when a parameter cannot be resolved or has the wrong type."""
