"""
Configuration aggregation from git config layers.

Order of precedence (lowest to highest):
1. system  (``/etc/gitconfig``)
2. global  (``~/.gitconfig``)
3. local   (``$GIT_DIR/config``)
4. command line and ``GIT_CONFIG_*`` environment entries
5. ``GITHOOKS_*`` environment overrides (framework settings only)

Git already emits layers 1-4 in this order from ``git config --list``, so a
single child process is enough. Every value is kept: list views see the
concatenation of all layers, scalar views see the last value.
"""

import os
import subprocess
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import Any

import structlog

from .schema import GitHooksSettings, parse_git_bool

logger = structlog.get_logger()

__all__ = [
    "ConfigKey",
    "ConfigSourceError",
    "ResolvedConfig",
    "load_config",
    "load_env_overrides",
    "load_layers",
    "load_settings",
    "parse_config_listing",
]

ConfigKey = tuple[str, str | None, str]

GitRunner = Callable[[list[str]], subprocess.CompletedProcess]

# Settings of the githooks section whose value is a list
_LIST_SETTINGS = frozenset({"plugin", "disable", "hooks", "admin", "groups"})


class ConfigSourceError(Exception):
    """A configuration source (file or command) could not be read."""

    pass


def split_key(name: str) -> ConfigKey:
    """Split a dotted git config name into (section, subsection, key).

    Section and key are case-insensitive and folded to lower case. The
    subsection keeps its case and may itself contain dots.

    Example:
        >>> split_key("githooks.checkreference.acl")
        ("githooks", "checkreference", "acl")
        >>> split_key("core.bare")
        ("core", None, "bare")
    """
    if "." not in name:
        raise ValueError(f"invalid config key '{name}': missing section")
    section, rest = name.split(".", 1)
    if "." in rest:
        subsection, key = rest.rsplit(".", 1)
    else:
        subsection, key = None, rest
    return section.lower(), subsection, key.lower()


def join_key(key: ConfigKey) -> str:
    section, subsection, name = key
    if subsection is None:
        return f"{section}.{name}"
    return f"{section}.{subsection}.{name}"


class ResolvedConfig:
    """Immutable, ordered view over all loaded configuration values.

    Internally each key maps to the list of values in load order. The
    scalar accessor returns the last one (last write wins); the list
    accessor returns all of them (later layers append).
    """

    def __init__(self, entries: Iterable[tuple[str, str]] = ()) -> None:
        values: dict[ConfigKey, list[str]] = {}
        for name, value in entries:
            values.setdefault(split_key(name), []).append(value)
        self._values: dict[ConfigKey, tuple[str, ...]] = {
            k: tuple(v) for k, v in values.items()
        }

    @classmethod
    def from_mapping(cls, mapping: dict[str, Any]) -> "ResolvedConfig":
        """Build a config from ``{"section.key": value-or-list}``."""
        entries: list[tuple[str, str]] = []
        for name, value in mapping.items():
            if isinstance(value, (list, tuple)):
                entries.extend((name, str(v)) for v in value)
            else:
                entries.append((name, str(value)))
        return cls(entries)

    def merged(self, *others: "ResolvedConfig") -> "ResolvedConfig":
        """Return a new config with ``others`` layered on top of this one."""
        combined = ResolvedConfig()
        values: dict[ConfigKey, tuple[str, ...]] = dict(self._values)
        for other in others:
            for key, vals in other._values.items():
                values[key] = values.get(key, ()) + vals
        combined._values = values
        return combined

    def get(self, section: str, key: str, subsection: str | None = None) -> str | None:
        """Return the last value of a key, or None if it is not set."""
        values = self._values.get((section.lower(), subsection, key.lower()))
        return values[-1] if values else None

    def get_all(self, section: str, key: str, subsection: str | None = None) -> list[str]:
        """Return every value of a key in load order (empty if unset)."""
        return list(self._values.get((section.lower(), subsection, key.lower()), ()))

    def get_bool(
        self,
        section: str,
        key: str,
        subsection: str | None = None,
        default: bool = False,
    ) -> bool:
        value = self.get(section, key, subsection)
        if value is None:
            return default
        return parse_git_bool(value)

    def section(self, section: str, subsection: str | None = None) -> dict[str, list[str]]:
        """Return all keys of one (sub)section with their values."""
        section = section.lower()
        return {
            key: list(vals)
            for (sec, sub, key), vals in self._values.items()
            if sec == section and sub == subsection
        }

    def items(self) -> Iterator[tuple[str, list[str]]]:
        """Iterate ``(dotted-name, values)`` in first-definition order."""
        for key, vals in self._values.items():
            yield join_key(key), list(vals)

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        try:
            return split_key(name) in self._values
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"<ResolvedConfig({len(self._values)} keys)>"


def parse_config_listing(output: str) -> list[tuple[str, str]]:
    """Parse the output of ``git config --null --list``.

    Each entry is ``name\\nvalue`` terminated by NUL. A name without a
    newline is a valueless key, which git treats as boolean true.

    Args:
        output: Raw command output.

    Returns:
        List of ``(name, value)`` pairs in output order.
    """
    entries: list[tuple[str, str]] = []
    for record in output.split("\0"):
        if not record:
            continue
        if "\n" in record:
            name, value = record.split("\n", 1)
        else:
            name, value = record, "true"
        entries.append((name, value))
    return entries


def _run_git(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["git", *args],
        capture_output=True,
        text=True,
    )


def _list_config(args: list[str], runner: GitRunner, source: str) -> list[tuple[str, str]]:
    try:
        proc = runner(["config", "--null", "--list", *args])
    except OSError as e:
        raise ConfigSourceError(f"cannot run git config for {source}: {e}") from e
    if proc.returncode != 0:
        stderr = (proc.stderr or "").strip()
        raise ConfigSourceError(
            f"git config failed for {source} (exit {proc.returncode}): {stderr}"
        )
    return parse_config_listing(proc.stdout or "")


def load_layers(paths: Iterable[Path], runner: GitRunner = _run_git) -> ResolvedConfig:
    """Load explicit config files, in order from lowest to highest precedence.

    Args:
        paths: Config files (system, global, local...). All must be readable.
        runner: Function executing a git command.

    Raises:
        ConfigSourceError: If a file is missing or git cannot parse it.
    """
    layers: list[ResolvedConfig] = []
    for path in paths:
        if not Path(path).is_file():
            raise ConfigSourceError(f"config file not found: {path}")
        entries = _list_config(["--file", str(path)], runner, str(path))
        layers.append(ResolvedConfig(entries))
    return ResolvedConfig().merged(*layers)


def load_config(
    layers: Iterable[Path] | None = None,
    runner: GitRunner = _run_git,
) -> ResolvedConfig:
    """Load the effective git configuration of the current repository.

    Runs ``git config --null --list`` once, letting git merge its own
    layers. With explicit ``layers`` those files are read instead.

    Raises:
        ConfigSourceError: If git cannot be run or fails.
    """
    if layers is not None:
        return load_layers(layers, runner)
    entries = _list_config([], runner, "repository")
    config = ResolvedConfig(entries)
    logger.debug("config.loaded", keys=len(config))
    return config


def load_env_overrides() -> dict[str, Any]:
    """Load framework overrides from environment variables.

    Supported variables:
        GITHOOKS_LOG_LEVEL: overrides githooks.log-level
        GITHOOKS_LOG_FILE: overrides githooks.log-file
        GITHOOKS_EXTERNALS: overrides githooks.externals

    Returns:
        Dict shaped like GitHooksSettings fields.
    """
    overrides: dict[str, Any] = {}

    if log_level := os.environ.get("GITHOOKS_LOG_LEVEL"):
        overrides.setdefault("logging", {})["level"] = log_level.lower()

    if log_file := os.environ.get("GITHOOKS_LOG_FILE"):
        overrides.setdefault("logging", {})["file"] = log_file

    if externals := os.environ.get("GITHOOKS_EXTERNALS"):
        overrides["externals"] = externals

    return overrides


def load_settings(config: ResolvedConfig) -> GitHooksSettings:
    """Build the typed ``githooks`` settings from a resolved config.

    Raises:
        pydantic.ValidationError: If a setting has an invalid value.
    """
    data: dict[str, Any] = {}
    for key, values in config.section("githooks").items():
        field_name = key.replace("-", "_")
        if field_name == "log_level":
            data.setdefault("logging", {})["level"] = values[-1].lower()
        elif field_name == "log_file":
            data.setdefault("logging", {})["file"] = values[-1]
        elif field_name in _LIST_SETTINGS:
            data[field_name] = values
        else:
            data[field_name] = values[-1]

    gerrit = {
        key.replace("-", "_"): values[-1]
        for key, values in config.section("githooks", "gerrit").items()
    }
    if gerrit:
        data["gerrit"] = gerrit

    for key, value in load_env_overrides().items():
        if isinstance(value, dict):
            data.setdefault(key, {}).update(value)
        else:
            data[key] = value

    return GitHooksSettings(**data)
