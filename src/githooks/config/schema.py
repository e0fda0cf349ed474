"""
Pydantic models for the githooks configuration.

The resolved git configuration is a flat list of ``section.subsection.key``
values. These models give the ``githooks.*`` section a typed view with
defaults and validation, the same way the rest of the project consumes
configuration.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

_TRUE_WORDS = frozenset({"true", "yes", "on", "1"})
_FALSE_WORDS = frozenset({"false", "no", "off", "0", ""})


def parse_git_bool(value: Any) -> bool:
    """Interpret a value the way ``git config --type=bool`` does.

    Args:
        value: Raw config value (string or bool).

    Returns:
        The boolean value.

    Raises:
        ValueError: If the value is not a recognized git boolean.
    """
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"'{value}' is not a valid boolean")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["debug", "info", "warning", "error"] = "warning"
    file: str | None = None
    verbose: int = 0

    model_config = {"extra": "forbid"}


class GerritConfig(BaseModel):
    """Connection settings for posting reviews to Gerrit (``githooks.gerrit.*``)."""

    url: str | None = None
    username: str | None = None
    password: str | None = None
    votes_to_approve: str = Field(default="Code-Review+1")
    votes_to_reject: str = Field(default="Code-Review-1")
    comment_ok: str = Field(default="OK")

    model_config = {"extra": "ignore"}

    @property
    def enabled(self) -> bool:
        return bool(self.url)


class GitHooksSettings(BaseModel):
    """Typed view of the ``githooks`` configuration section.

    Attributes:
        plugin: Plugins to load, in order.
        disable: Plugins that must not be loaded even if listed in ``plugin``.
        externals: If False, external hook directories are ignored.
        hooks: Extra directories searched for external hooks.
        abort_commit: If False, commit-message phases only warn on failure.
        userenv: Name of the identity variable, or an ``eval:`` expression.
        admin: User specs that are considered administrators.
        groups: Group definition sources (inline text or ``file:PATH``).
        gerrit: Gerrit review posting settings.
        logging: Logging settings.
    """

    plugin: list[str] = Field(default_factory=list)
    disable: list[str] = Field(default_factory=list)
    externals: bool = True
    hooks: list[str] = Field(default_factory=list)
    abort_commit: bool = True
    userenv: str | None = None
    admin: list[str] = Field(default_factory=list)
    groups: list[str] = Field(default_factory=list)
    gerrit: GerritConfig = Field(default_factory=GerritConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "ignore"}

    @field_validator("externals", "abort_commit", mode="before")
    @classmethod
    def _git_bool(cls, v: Any) -> bool:
        return parse_git_bool(v)

    @field_validator("plugin", "disable", "admin", mode="before")
    @classmethod
    def _split_words(cls, v: Any) -> list[str]:
        # Each value may name several entries separated by blanks
        if isinstance(v, str):
            v = [v]
        names: list[str] = []
        for item in v or []:
            names.extend(str(item).split())
        return names
