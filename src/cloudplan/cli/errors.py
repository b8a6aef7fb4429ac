"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

import typer


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from cloudplan.bootstrap import BootstrapError
    from cloudplan.config.errors import ConfigError, ParameterError
    from cloudplan.engine.errors import (
        DependencyCycleError,
        ProviderAuthError,
        ProviderError,
        StateLockError,
        StateWorkspaceMismatchError,
        ValidationError,
    )
    from cloudplan.pipeline.errors import PipelineConfigError

    fg = typer.colors.RED if color else None

    if isinstance(exc, ParameterError):
        _err(f"Parameter error: {exc}", fg=fg)
    elif isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, DependencyCycleError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, StateWorkspaceMismatchError):
        _err(f"State mismatch: {exc}", fg=fg)
    elif isinstance(exc, StateLockError):
        _err(f"State locked: {exc}", fg=fg)
    elif isinstance(exc, ProviderAuthError):
        _err(f"Authentication failed: {exc}", fg=fg)
    elif isinstance(exc, ProviderError):
        _err(f"Cloud API error: {exc}", fg=fg)
    elif isinstance(exc, PipelineConfigError):
        _err(f"Pipeline error: {exc}", fg=fg)
    elif isinstance(exc, BootstrapError):
        _err(f"Bootstrap error: {exc}", fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
