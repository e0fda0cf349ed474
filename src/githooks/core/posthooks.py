"""
Post-hook callbacks.

Callbacks run once, after the phase handlers and the failure policy. They
see the aggregated DispatchResult but cannot change the exit code; this is
where asynchronous review verdicts are posted.
"""

from collections.abc import Callable
from typing import Any

import structlog

from .results import DispatchResult

logger = structlog.get_logger()

__all__ = [
    "LateRegistrationError",
    "PostHook",
    "PostHookNotifier",
]

PostHook = Callable[[DispatchResult], Any]


class LateRegistrationError(Exception):
    """A handler or post-hook was registered after dispatch started."""

    pass


class PostHookNotifier:
    """Ordered list of post-hook callbacks, run exactly once."""

    def __init__(self) -> None:
        self._callbacks: list[tuple[str, PostHook]] = []
        self._ran = False
        self.log = logger.bind(component="posthooks")

    def register(self, fn: PostHook, name: str | None = None) -> None:
        """Add a callback.

        Raises:
            LateRegistrationError: If the callbacks already ran.
        """
        if self._ran:
            raise LateRegistrationError(
                f"cannot register post-hook '{name or fn}' after post-hooks ran"
            )
        self._callbacks.append((name or getattr(fn, "__qualname__", repr(fn)), fn))

    def __len__(self) -> int:
        return len(self._callbacks)

    def truncate(self, count: int) -> None:
        """Drop every callback registered after the first ``count``."""
        del self._callbacks[count:]

    def run_all(self, result: DispatchResult) -> list[str]:
        """Run every callback in registration order.

        Each one runs in its own failure boundary: an exception is logged
        and the next callback still runs.

        Returns:
            Names of the callbacks that failed.
        """
        if self._ran:
            self.log.warning("posthook.already_ran")
            return []
        self._ran = True

        failed: list[str] = []
        for name, fn in self._callbacks:
            try:
                fn(result)
            except Exception as e:
                self.log.error("posthook.failed", posthook=name, error=str(e), exc_info=True)
                failed.append(name)
        return failed
