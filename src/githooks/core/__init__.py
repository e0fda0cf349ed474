"""
Core module - hook phases, registry, dispatcher and post-hooks.
"""

from .context import GerritHookContext, HookContext, build_context
from .externals import ExternalHookRunner, find_external_hooks
from .hooks import Dispatcher, DispatchState, HandlerRegistration, HookRegistry
from .phases import HookPhase, PushUpdate, RefUpdate, UnknownHookError, phase_from_invocation
from .posthooks import LateRegistrationError, PostHookNotifier
from .results import (
    DispatchResult,
    ExternalHookFailure,
    HandlerFailure,
    HandlerOutcome,
    HandlerResult,
)

__all__ = [
    "Dispatcher",
    "DispatchResult",
    "DispatchState",
    "ExternalHookFailure",
    "ExternalHookRunner",
    "GerritHookContext",
    "HandlerFailure",
    "HandlerOutcome",
    "HandlerRegistration",
    "HandlerResult",
    "HookContext",
    "HookPhase",
    "HookRegistry",
    "LateRegistrationError",
    "PostHookNotifier",
    "PushUpdate",
    "RefUpdate",
    "UnknownHookError",
    "build_context",
    "find_external_hooks",
    "phase_from_invocation",
]
