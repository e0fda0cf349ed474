"""
Result types for handler execution and dispatch aggregation.

Handlers report their outcome explicitly with HandlerResult; the dispatcher
turns every handler run into a HandlerOutcome and aggregates them in a
DispatchResult without short-circuiting.
"""

from dataclasses import dataclass, field

from .phases import HookPhase

__all__ = [
    "DispatchResult",
    "ExternalHookFailure",
    "HandlerFailure",
    "HandlerOutcome",
    "HandlerResult",
]


class HandlerFailure(Exception):
    """Raised by a handler to fail with a clean message (no traceback logged)."""

    def __init__(self, *messages: str) -> None:
        self.messages = list(messages)
        super().__init__("; ".join(messages))


class ExternalHookFailure(Exception):
    """An external hook script exited with a non-zero status."""

    def __init__(self, path: str, exit_code: int, output: str = "") -> None:
        self.path = path
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"external hook '{path}' failed with exit code {exit_code}")


@dataclass
class HandlerResult:
    """Outcome returned by a handler.

    Attributes:
        success: True if the handler found nothing wrong.
        messages: Human readable problems (or notes, on success).
    """

    success: bool = True
    messages: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls) -> "HandlerResult":
        return cls(success=True)

    @classmethod
    def fail(cls, *messages: str) -> "HandlerResult":
        return cls(success=False, messages=list(messages))


@dataclass(frozen=True)
class HandlerOutcome:
    """Recorded result of one handler (or pseudo-handler) run."""

    identity: str
    success: bool
    messages: tuple[str, ...] = ()

    def render(self) -> list[str]:
        """Messages prefixed with the origin of the failure."""
        if not self.messages:
            return [f"[{self.identity}] failed"] if not self.success else []
        return [f"[{self.identity}] {m}" for m in self.messages]


@dataclass(frozen=True)
class DispatchResult:
    """Aggregated outcome of one phase."""

    phase: HookPhase
    outcomes: tuple[HandlerOutcome, ...] = ()
    external_failure: ExternalHookFailure | None = None

    @property
    def success(self) -> bool:
        return self.external_failure is None and all(o.success for o in self.outcomes)

    @property
    def failures(self) -> list[HandlerOutcome]:
        return [o for o in self.outcomes if not o.success]

    def error_messages(self) -> list[str]:
        """Every failure message, handlers first, then the external hook."""
        messages: list[str] = []
        for outcome in self.failures:
            messages.extend(outcome.render())
        if self.external_failure is not None:
            failure = self.external_failure
            messages.append(f"[external:{failure.path}] {failure}")
            output = failure.output.strip()
            if output:
                messages.extend(f"  {line}" for line in output.splitlines())
        return messages
