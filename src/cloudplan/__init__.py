"""Declarative plan/preview pipeline for a single networked compute instance."""

__version__ = "0.1.0"
