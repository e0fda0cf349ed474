"""
Configuration module for githooks.

Exports the main components for convenient imports.
"""

from .loader import (
    ConfigSourceError,
    ResolvedConfig,
    load_config,
    load_layers,
    load_settings,
)
from .schema import GerritConfig, GitHooksSettings, LoggingConfig
from .values import ConfigEvalError, resolve_value

__all__ = [
    "load_config",
    "load_layers",
    "load_settings",
    "resolve_value",
    "ConfigEvalError",
    "ConfigSourceError",
    "GerritConfig",
    "GitHooksSettings",
    "LoggingConfig",
    "ResolvedConfig",
]
