"""
Hook registry and dispatcher.

One executable serves every hook: the dispatcher works out the phase from
its invocation name, lets the enabled plugins register handlers, runs them,
chains the external hook scripts and applies the phase failure policy.

States:
    REGISTERING -> DISPATCHING -> POST_HOOKS -> DONE

Invariants:
- Handlers can only be registered while REGISTERING.
- A failing handler never prevents its siblings from running; every
  failure message is reported together.
- Blocking phases (pre-*, update, commit-msg, Gerrit ref-update...) exit
  non-zero on any failure; notification phases (post-*) always exit 0.
- Post-hooks run last and cannot change the exit code.
"""

import os
import sys
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import click
import structlog
from pydantic import ValidationError

from ..access.groups import GroupDefinitionError
from ..config.loader import ConfigSourceError, ResolvedConfig, load_config, load_settings
from ..config.schema import GitHooksSettings
from ..plugins import PluginLoadError, load_plugin, plugin_short_name
from ..repo.query import GitRepository, RepositoryQuery, RepositoryQueryError
from ..repo.review import GerritRestReviewer, ReviewPoster, parse_votes
from .context import GerritHookContext, HookContext, build_context
from .externals import DEFAULT_EXTERNAL_DIR, ExternalHookRunner
from .phases import HookPhase, phase_from_invocation
from .posthooks import LateRegistrationError, PostHook, PostHookNotifier
from .results import (
    DispatchResult,
    ExternalHookFailure,
    HandlerFailure,
    HandlerOutcome,
    HandlerResult,
)

logger = structlog.get_logger()

__all__ = [
    "DispatchState",
    "Dispatcher",
    "Handler",
    "HandlerRegistration",
    "HookRegistry",
]

Handler = Callable[..., Any]

EXIT_SUCCESS = 0
EXIT_FAILED = 1

# Errors that make the whole invocation meaningless
_FATAL_ERRORS = (ConfigSourceError, GroupDefinitionError)

_ASYNC_REVIEW_PHASES = frozenset({HookPhase.PATCHSET_CREATED, HookPhase.DRAFT_PUBLISHED})


class DispatchState(Enum):
    REGISTERING = "registering"
    DISPATCHING = "dispatching"
    POST_HOOKS = "post_hooks"
    DONE = "done"


@dataclass(frozen=True)
class HandlerRegistration:
    """A handler registered for one phase."""

    phase: HookPhase
    handler: Handler
    name: str
    plugin: str | None = None

    @property
    def identity(self) -> str:
        return f"{self.plugin}/{self.name}" if self.plugin else self.name


def _as_phase(phase: HookPhase | str) -> HookPhase:
    return phase if isinstance(phase, HookPhase) else phase_from_invocation(phase)


class HookRegistry:
    """Process-wide registry of handlers and post-hooks.

    A fresh registry is created for every hook invocation and owned by the
    Dispatcher; it is closed for registration once dispatch starts.
    """

    def __init__(self) -> None:
        self._handlers: dict[HookPhase, list[HandlerRegistration]] = {}
        self._plugin: str | None = None
        self.state = DispatchState.REGISTERING
        self.notifier = PostHookNotifier()
        self.log = logger.bind(component="registry")

    def register_handler(
        self,
        phase: HookPhase | str,
        fn: Handler,
        name: str | None = None,
        plugin: str | None = None,
    ) -> HandlerRegistration:
        """Register a handler for a phase.

        The handler is called as ``fn(context, *args)``.

        Raises:
            LateRegistrationError: If dispatch already started.
            UnknownHookError: If ``phase`` is not a known hook name.
        """
        phase = _as_phase(phase)
        if self.state is not DispatchState.REGISTERING:
            raise LateRegistrationError(
                f"cannot register a {phase.value} handler in state '{self.state.value}'"
            )
        registration = HandlerRegistration(
            phase=phase,
            handler=fn,
            name=name or getattr(fn, "__name__", repr(fn)),
            plugin=plugin or self._plugin,
        )
        self._handlers.setdefault(phase, []).append(registration)
        self.log.debug("registry.handler", phase=phase.value, handler=registration.identity)
        return registration

    def on(self, *phases: HookPhase | str, name: str | None = None) -> Callable[[Handler], Handler]:
        """Decorator form of register_handler for one or more phases."""

        def decorator(fn: Handler) -> Handler:
            for phase in phases:
                self.register_handler(phase, fn, name=name)
            return fn

        return decorator

    def register_post_hook(self, fn: PostHook, name: str | None = None) -> None:
        """Register a callback run after the phase completes.

        Raises:
            LateRegistrationError: If post-hooks already started.
        """
        if self.state in (DispatchState.POST_HOOKS, DispatchState.DONE):
            raise LateRegistrationError("cannot register a post-hook after post-hooks started")
        self.notifier.register(fn, name)

    @contextmanager
    def plugin_scope(self, plugin: str) -> Iterator["HookRegistry"]:
        """Attribute the registrations made inside the block to a plugin.

        If the block raises, the handlers and post-hooks it registered are
        dropped again.
        """
        previous, self._plugin = self._plugin, plugin
        marks = {phase: len(regs) for phase, regs in self._handlers.items()}
        post_hooks = len(self.notifier)
        try:
            yield self
        except Exception:
            for phase, regs in self._handlers.items():
                del regs[marks.get(phase, 0):]
            self.notifier.truncate(post_hooks)
            raise
        finally:
            self._plugin = previous

    def handlers_for(self, phase: HookPhase) -> list[HandlerRegistration]:
        return list(self._handlers.get(phase, []))

    def close(self) -> None:
        """Stop accepting handlers; dispatch begins."""
        self.state = DispatchState.DISPATCHING


class Dispatcher:
    """Runs one hook invocation from start to exit code.

    Collaborators can be injected for testing; by default configuration is
    read with ``git config``, the repository is queried with git and the
    Gerrit reviewer is built from ``githooks.gerrit.*``.
    """

    def __init__(
        self,
        registry: HookRegistry | None = None,
        config: ResolvedConfig | None = None,
        repo: RepositoryQuery | None = None,
        reviewer: ReviewPoster | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        plugin_loader: Callable[[str], Any] | None = None,
    ) -> None:
        self.registry = registry or HookRegistry()
        self.config = config
        self.repo = repo
        self.reviewer = reviewer
        self.env = os.environ if env is None else env
        self.cwd = cwd
        self.plugin_loader = plugin_loader or load_plugin
        self.result: DispatchResult | None = None
        self.context: HookContext | None = None
        self.log = logger.bind(component="dispatcher")

    # ── Setup ────────────────────────────────────────────────────────

    def _load_settings(self, config: ResolvedConfig) -> GitHooksSettings:
        try:
            return load_settings(config)
        except ValidationError as e:
            raise ConfigSourceError(f"invalid githooks configuration: {e}") from e

    def _load_plugins(self, settings: GitHooksSettings, outcomes: list[HandlerOutcome]) -> None:
        # plugin names are case-insensitive
        disabled = {d.lower() for d in settings.disable}
        seen: set[str] = set()
        for name in settings.plugin:
            short = plugin_short_name(name)
            if name.lower() in seen:
                continue
            seen.add(name.lower())

            if name.lower() in disabled or short.lower() in disabled:
                self.log.info("plugin.disabled", plugin=name, source="config")
                continue
            if self.env.get(short) == "0":
                self.log.info("plugin.disabled", plugin=name, source="env")
                continue

            try:
                plugin = self.plugin_loader(name)
                with self.registry.plugin_scope(short):
                    plugin.register(self.registry)
            except PluginLoadError as e:
                self.log.error("plugin.load_failed", plugin=name, error=str(e))
                outcomes.append(HandlerOutcome(f"plugin:{name}", False, (str(e),)))
                continue
            except Exception as e:
                self.log.error("plugin.register_failed", plugin=name, error=str(e), exc_info=True)
                outcomes.append(
                    HandlerOutcome(f"plugin:{name}", False, (f"{type(e).__name__}: {e}",))
                )
                continue
            self.log.debug("plugin.loaded", plugin=name)

    def _external_dirs(self, settings: GitHooksSettings, repo: RepositoryQuery) -> list[Path]:
        dirs: list[Path] = []
        try:
            dirs.append(repo.git_dir() / DEFAULT_EXTERNAL_DIR)
        except RepositoryQueryError as e:
            self.log.debug("externals.no_git_dir", error=str(e))
        dirs.extend(Path(d).expanduser() for d in settings.hooks)
        return dirs

    def _reviewer(self, settings: GitHooksSettings) -> ReviewPoster | None:
        if self.reviewer is not None:
            return self.reviewer
        if settings.gerrit.enabled:
            return GerritRestReviewer(settings.gerrit)
        return None

    def _register_review(self, context: GerritHookContext, settings: GitHooksSettings) -> None:
        reviewer = context.reviewer
        if reviewer is None:
            return

        def post_review(result: DispatchResult) -> None:
            change = context.options.get("change", "")
            revision = context.options.get("commit") or context.options.get("patchset", "current")
            if result.success:
                message = settings.gerrit.comment_ok
                labels = parse_votes(settings.gerrit.votes_to_approve)
            else:
                message = "\n\n".join(result.error_messages())
                labels = parse_votes(settings.gerrit.votes_to_reject)
            reviewer.post_review(change, revision, message, labels)

        self.registry.register_post_hook(post_review, name="gerrit-review")

    # ── Execution ────────────────────────────────────────────────────

    def _run_handler(self, registration: HandlerRegistration, context: HookContext) -> HandlerOutcome:
        """Run one handler inside its own failure boundary."""
        context.take_faults()
        identity = registration.identity
        try:
            returned = registration.handler(context, *context.args)
        except _FATAL_ERRORS:
            raise
        except HandlerFailure as e:
            return HandlerOutcome(identity, False, tuple(e.messages + context.take_faults()))
        except Exception as e:
            self.log.error("handler.exception", handler=identity, error=str(e), exc_info=True)
            messages = context.take_faults() + [f"{type(e).__name__}: {e}"]
            return HandlerOutcome(identity, False, tuple(messages))

        faults = context.take_faults()
        if isinstance(returned, HandlerResult):
            success = returned.success and not faults
            messages = faults + list(returned.messages)
        else:
            success = returned is not False and not faults
            messages = faults

        if not success:
            self.log.info("handler.failed", handler=identity, messages=len(messages))
        return HandlerOutcome(identity, success, tuple(messages))

    def _apply_policy(self, result: DispatchResult, settings: GitHooksSettings) -> int:
        if result.success:
            return EXIT_SUCCESS

        messages = result.error_messages()
        phase = result.phase

        if not phase.is_blocking:
            self.log.warning("dispatch.notification_failed", phase=phase.value, errors=messages)
            return EXIT_SUCCESS

        if phase.is_commit_message and not settings.abort_commit:
            click.echo(f"{phase.value}: warning, problems found:", err=True)
            for message in messages:
                click.echo(message, err=True)
            return EXIT_SUCCESS

        click.echo(f"{phase.value}: {len(messages)} problem(s) found:", err=True)
        for message in messages:
            click.echo(message, err=True)
        return EXIT_FAILED

    def dispatch(self, invocation_name: str, args: list[str], stdin: str | None = None) -> int:
        """Run the hook named by ``invocation_name``.

        Args:
            invocation_name: argv[0] of the process (a path ending in the hook name).
            args: Hook arguments.
            stdin: Standard input; read from the process for phases that
                receive records on it when not given.

        Returns:
            Process exit code.

        Raises:
            UnknownHookError: If the invocation name is not a hook.
            ConfigSourceError: If configuration cannot be read.
            GroupDefinitionError: If group definitions are invalid.
        """
        phase = phase_from_invocation(invocation_name)
        self.log.info("dispatch.start", phase=phase.value, args=len(args))

        config = self.config if self.config is not None else load_config()
        settings = self._load_settings(config)

        if stdin is None:
            stdin = sys.stdin.read() if phase.reads_stdin else ""

        outcomes: list[HandlerOutcome] = []
        self._load_plugins(settings, outcomes)
        self.registry.close()

        repo = self.repo or GitRepository(cwd=self.cwd, env=self.env)
        reviewer = self._reviewer(settings) if phase in _ASYNC_REVIEW_PHASES else None
        context: HookContext | None
        try:
            context = build_context(
                phase,
                args,
                config,
                settings,
                repo=repo,
                stdin=stdin,
                reviewer=reviewer,
                env=self.env,
                base_dir=Path(self.cwd or os.getcwd()),
            )
        except ValueError as e:
            # malformed stdin records; no handler can run on them
            self.log.error("dispatch.bad_input", phase=phase.value, error=str(e))
            outcomes.append(HandlerOutcome("input", False, (str(e),)))
            context = None
        self.context = context
        if isinstance(context, GerritHookContext) and phase in _ASYNC_REVIEW_PHASES:
            self._register_review(context, settings)

        if context is not None:
            for registration in self.registry.handlers_for(phase):
                outcomes.append(self._run_handler(registration, context))

        external_failure: ExternalHookFailure | None = None
        if settings.externals:
            runner = ExternalHookRunner(self._external_dirs(settings, repo), cwd=self.cwd)
            try:
                runner.run(phase, args, stdin)
            except ExternalHookFailure as e:
                external_failure = e

        result = DispatchResult(phase, tuple(outcomes), external_failure)
        self.result = result
        exit_code = self._apply_policy(result, settings)

        self.registry.state = DispatchState.POST_HOOKS
        self.registry.notifier.run_all(result)
        self.registry.state = DispatchState.DONE
        if reviewer is not None and reviewer is not self.reviewer:
            reviewer.close()

        self.log.info(
            "dispatch.complete",
            phase=phase.value,
            handlers=len(outcomes),
            failures=len(result.failures),
            external_failed=external_failure is not None,
            exit_code=exit_code,
        )
        return exit_code
