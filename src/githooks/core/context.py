"""
Hook context: the capabilities every handler receives.

HookContext bundles configuration lookup, repository queries, identity
resolution, group/user matching and error collection. GerritHookContext
adds a ReviewPoster for the asynchronous Gerrit phases.
"""

import os
import re
from collections.abc import Mapping
from pathlib import Path

import structlog

from ..access.groups import GroupTable, resolve_groups
from ..access.users import match_user
from ..config.loader import ResolvedConfig
from ..config.schema import GitHooksSettings
from ..config.values import EVAL_PREFIX, evaluate_expression, resolve_value
from ..repo.query import RepositoryQuery
from ..repo.review import ReviewPoster
from .phases import (
    HookPhase,
    PushUpdate,
    RefUpdate,
    parse_gerrit_options,
    parse_push_updates,
    parse_ref_updates,
)

logger = structlog.get_logger()

__all__ = [
    "FALLBACK_USER_VARS",
    "GerritHookContext",
    "HookContext",
    "build_context",
]

# Consulted in order when githooks.userenv is not configured
FALLBACK_USER_VARS = ("GERRIT_USER_EMAIL", "GL_USER", "USER", "USERNAME")

_EMAIL_RE = re.compile(r"<([^>]+)>")


class HookContext:
    """Everything a handler may use while running for one phase.

    Attributes:
        phase: Phase being dispatched.
        args: Positional hook arguments.
        config: Resolved git configuration.
        settings: Typed githooks settings.
        repo: Repository query interface (may be None outside a repository).
        stdin: Raw standard input, for phases that receive it.
        ref_updates: Parsed ``old new ref`` records (pre/post-receive, update).
        push_updates: Parsed pre-push records.
    """

    def __init__(
        self,
        phase: HookPhase,
        args: list[str],
        config: ResolvedConfig,
        settings: GitHooksSettings,
        repo: RepositoryQuery | None = None,
        stdin: str = "",
        env: Mapping[str, str] | None = None,
        base_dir: Path | None = None,
    ) -> None:
        self.phase = phase
        self.args = list(args)
        self.config = config
        self.settings = settings
        self.repo = repo
        self.stdin = stdin
        self.env = os.environ if env is None else env
        self.base_dir = base_dir
        self.ref_updates: list[RefUpdate] = []
        self.push_updates: list[PushUpdate] = []
        self._groups: GroupTable | None = None
        self._faults: list[str] = []
        self.log = logger.bind(component="context", phase=phase.value)
        self._parse_input()

    def _parse_input(self) -> None:
        if self.phase is HookPhase.UPDATE and len(self.args) >= 3:
            ref, old, new = self.args[:3]
            self.ref_updates = [RefUpdate(old=old, new=new, ref=ref)]
        elif self.phase is HookPhase.PRE_PUSH:
            self.push_updates = parse_push_updates(self.stdin)
        elif self.phase in (HookPhase.PRE_RECEIVE, HookPhase.POST_RECEIVE):
            self.ref_updates = parse_ref_updates(self.stdin, self.phase)

    # ── Configuration ────────────────────────────────────────────────

    def get_config(self, section: str, key: str, subsection: str | None = None) -> str | None:
        """Last value of a config key, with ``eval:``/``file:`` applied.

        Raises:
            ConfigEvalError: If the value cannot be evaluated.
        """
        value = self.config.get(section, key, subsection)
        if value is None:
            return None
        return resolve_value(value, self.env, self.base_dir)

    def get_config_list(self, section: str, key: str, subsection: str | None = None) -> list[str]:
        """All values of a config key, each transformed like get_config()."""
        return [
            resolve_value(v, self.env, self.base_dir)
            for v in self.config.get_all(section, key, subsection)
        ]

    # ── Identity ─────────────────────────────────────────────────────

    def _fallback_identity(self) -> str | None:
        for var in FALLBACK_USER_VARS:
            if value := self.env.get(var):
                return value
        return None

    def authenticated_user(self) -> str | None:
        """Identity of the user performing the operation.

        ``githooks.userenv`` names the variable holding it, or is an
        ``eval:`` expression computing it. Without it, the fallback
        variables are tried in order.

        Raises:
            ConfigEvalError: If the userenv expression cannot be evaluated.
        """
        userenv = self.settings.userenv
        if userenv:
            if userenv.startswith(EVAL_PREFIX):
                user = evaluate_expression(userenv[len(EVAL_PREFIX):], self.env)
            else:
                user = self.env.get(userenv)
            return user or None
        return self._fallback_identity()

    # ── Groups and users ─────────────────────────────────────────────

    def groups(self) -> GroupTable:
        """Group table from ``githooks.groups``, built on first use.

        Raises:
            GroupDefinitionError: If a definition is invalid.
            ConfigEvalError: If a ``file:`` source cannot be read.
        """
        if self._groups is None:
            table: GroupTable = {}
            for source in self.settings.groups:
                table = resolve_groups(resolve_value(source, self.env, self.base_dir), table)
            self._groups = table
            self.log.debug("context.groups_loaded", groups=len(table))
        return self._groups

    def match_user(self, spec: str, identity: str | None = None) -> bool:
        """True if the (authenticated) user matches a user spec."""
        user = identity if identity is not None else self.authenticated_user()
        groups = self.groups() if spec.strip().startswith("@") else None
        return match_user(user, spec, groups)

    def is_admin(self, identity: str | None = None) -> bool:
        """True if the user matches any ``githooks.admin`` spec.

        Each ``githooks.admin`` value goes through the ``eval:``/``file:``
        transforms and may hold several whitespace-separated specs. With no
        admin configured nobody is an administrator.

        Raises:
            ConfigEvalError: If an admin value cannot be evaluated.
        """
        specs: list[str] = []
        for value in self.get_config_list("githooks", "admin"):
            specs.extend(value.split())
        return any(self.match_user(spec, identity) for spec in specs)

    # ── Error collection ─────────────────────────────────────────────

    def fault(self, message: str, prefix: str | None = None) -> None:
        """Record a problem found by the running handler."""
        self._faults.append(f"{prefix}: {message}" if prefix else message)

    def take_faults(self) -> list[str]:
        """Return and clear the faults recorded since the last call."""
        faults, self._faults = self._faults, []
        return faults


class GerritHookContext(HookContext):
    """HookContext for Gerrit phases.

    Gerrit passes ``--name value`` arguments instead of positional ones;
    they are available as ``options``. ``reviewer`` posts review verdicts
    for the asynchronous phases.
    """

    def __init__(self, *args, reviewer: ReviewPoster | None = None, **kwargs) -> None:
        self.reviewer = reviewer
        self.options: dict[str, str] = {}
        super().__init__(*args, **kwargs)

    def _parse_input(self) -> None:
        self.options = parse_gerrit_options(self.args)
        if self.phase in (HookPhase.REF_UPDATE, HookPhase.COMMIT_RECEIVED):
            ref = self.options.get("refname", "")
            if ref:
                self.ref_updates = [
                    RefUpdate(
                        old=self.options.get("oldrev", ""),
                        new=self.options.get("newrev", ""),
                        ref=ref,
                    )
                ]

    def _fallback_identity(self) -> str | None:
        # "Full Name (login) <email>" as passed by Gerrit
        for option in ("uploader", "submitter"):
            if value := self.options.get(option):
                match = _EMAIL_RE.search(value)
                return match.group(1) if match else value
        return super()._fallback_identity()


def build_context(
    phase: HookPhase,
    args: list[str],
    config: ResolvedConfig,
    settings: GitHooksSettings,
    repo: RepositoryQuery | None = None,
    stdin: str = "",
    reviewer: ReviewPoster | None = None,
    env: Mapping[str, str] | None = None,
    base_dir: Path | None = None,
) -> HookContext:
    """Create the context variant matching the phase."""
    if phase.is_gerrit:
        return GerritHookContext(
            phase, args, config, settings, repo, stdin, env, base_dir, reviewer=reviewer
        )
    return HookContext(phase, args, config, settings, repo, stdin, env, base_dir)
