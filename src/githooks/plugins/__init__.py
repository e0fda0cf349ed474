"""
Plugin discovery.

A plugin is a module (or any object) with a ``register(registry)`` function
that adds handlers to the HookRegistry. Names listed in ``githooks.plugin``
are looked up, in order:

1. built-in plugins (case-insensitive)
2. the ``githooks.plugins`` entry-point group
3. an importable module path (``mycompany.hooks.check_jira``)
"""

import importlib
from importlib.metadata import entry_points
from typing import Any

__all__ = [
    "BUILTIN_PLUGINS",
    "ENTRY_POINT_GROUP",
    "PluginLoadError",
    "load_plugin",
    "plugin_short_name",
]

ENTRY_POINT_GROUP = "githooks.plugins"

BUILTIN_PLUGINS: dict[str, str] = {
    "checkreference": "githooks.plugins.checkreference",
}


class PluginLoadError(Exception):
    """A configured plugin cannot be found or does not expose register()."""

    pass


def plugin_short_name(name: str) -> str:
    """Name used for the plugin's environment disable flag.

    Example:
        >>> plugin_short_name("mycompany.hooks.CheckJira")
        "CheckJira"
    """
    return name.rsplit(".", 1)[-1]


def _check(name: str, plugin: Any) -> Any:
    if not callable(getattr(plugin, "register", None)):
        raise PluginLoadError(f"plugin '{name}' has no register() function")
    return plugin


def load_plugin(name: str) -> Any:
    """Resolve a plugin name to an object with a ``register`` function.

    Raises:
        PluginLoadError: If the plugin cannot be found or is invalid.
    """
    builtin = BUILTIN_PLUGINS.get(name.lower())
    if builtin:
        return _check(name, importlib.import_module(builtin))

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        if ep.name == name:
            try:
                return _check(name, ep.load())
            except ImportError as e:
                raise PluginLoadError(f"cannot load plugin '{name}': {e}") from e

    try:
        module = importlib.import_module(name)
    except ImportError as e:
        raise PluginLoadError(f"plugin '{name}' not found: {e}") from e
    return _check(name, module)
