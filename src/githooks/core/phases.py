"""
Hook phases and their invocation conventions.

Git runs each hook as ``$GIT_DIR/hooks/<name>``; the dispatcher is installed
under those names, so the phase comes from the final component of argv[0].
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath

__all__ = [
    "HookPhase",
    "PushUpdate",
    "RefUpdate",
    "UnknownHookError",
    "ZERO_SHA",
    "parse_gerrit_options",
    "parse_push_updates",
    "parse_ref_updates",
    "phase_from_invocation",
]

ZERO_SHA = "0" * 40


class UnknownHookError(Exception):
    """The invocation name does not correspond to a known hook."""

    pass


class HookPhase(Enum):
    """Git and Gerrit lifecycle points."""

    APPLYPATCH_MSG = "applypatch-msg"
    PRE_APPLYPATCH = "pre-applypatch"
    POST_APPLYPATCH = "post-applypatch"
    PRE_COMMIT = "pre-commit"
    PRE_MERGE_COMMIT = "pre-merge-commit"
    PREPARE_COMMIT_MSG = "prepare-commit-msg"
    COMMIT_MSG = "commit-msg"
    POST_COMMIT = "post-commit"
    PRE_REBASE = "pre-rebase"
    POST_CHECKOUT = "post-checkout"
    POST_MERGE = "post-merge"
    PRE_PUSH = "pre-push"
    PRE_RECEIVE = "pre-receive"
    UPDATE = "update"
    PROC_RECEIVE = "proc-receive"
    POST_RECEIVE = "post-receive"
    POST_UPDATE = "post-update"
    REFERENCE_TRANSACTION = "reference-transaction"
    PUSH_TO_CHECKOUT = "push-to-checkout"
    PRE_AUTO_GC = "pre-auto-gc"
    POST_REWRITE = "post-rewrite"
    SENDEMAIL_VALIDATE = "sendemail-validate"
    POST_INDEX_CHANGE = "post-index-change"
    # Gerrit
    REF_UPDATE = "ref-update"
    COMMIT_RECEIVED = "commit-received"
    SUBMIT = "submit"
    PATCHSET_CREATED = "patchset-created"
    DRAFT_PUBLISHED = "draft-published"

    @property
    def is_blocking(self) -> bool:
        """True if a failure must abort the operation that triggered the hook."""
        return self not in _NOTIFICATION_PHASES

    @property
    def is_commit_message(self) -> bool:
        return self in _COMMIT_MESSAGE_PHASES

    @property
    def is_gerrit(self) -> bool:
        return self in _GERRIT_PHASES

    @property
    def reads_stdin(self) -> bool:
        return self in _STDIN_PHASES


_NOTIFICATION_PHASES = frozenset({
    HookPhase.POST_APPLYPATCH,
    HookPhase.POST_COMMIT,
    HookPhase.POST_CHECKOUT,
    HookPhase.POST_MERGE,
    HookPhase.POST_RECEIVE,
    HookPhase.POST_UPDATE,
    HookPhase.POST_REWRITE,
    HookPhase.POST_INDEX_CHANGE,
    HookPhase.PATCHSET_CREATED,
    HookPhase.DRAFT_PUBLISHED,
})

_COMMIT_MESSAGE_PHASES = frozenset({
    HookPhase.APPLYPATCH_MSG,
    HookPhase.PREPARE_COMMIT_MSG,
    HookPhase.COMMIT_MSG,
})

_GERRIT_PHASES = frozenset({
    HookPhase.REF_UPDATE,
    HookPhase.COMMIT_RECEIVED,
    HookPhase.SUBMIT,
    HookPhase.PATCHSET_CREATED,
    HookPhase.DRAFT_PUBLISHED,
})

_STDIN_PHASES = frozenset({
    HookPhase.PRE_PUSH,
    HookPhase.PRE_RECEIVE,
    HookPhase.PROC_RECEIVE,
    HookPhase.POST_RECEIVE,
    HookPhase.REFERENCE_TRANSACTION,
    HookPhase.POST_REWRITE,
})


def phase_from_invocation(invocation_name: str) -> HookPhase:
    """Determine the hook phase from the program's invocation name.

    Raises:
        UnknownHookError: If the final path component is not a hook name.
    """
    name = PurePath(invocation_name).name
    try:
        return HookPhase(name)
    except ValueError:
        raise UnknownHookError(f"'{name}' is not a known hook") from None


@dataclass(frozen=True)
class RefUpdate:
    """One reference change: ``old-value new-value ref-name``."""

    old: str
    new: str
    ref: str

    @property
    def is_create(self) -> bool:
        return self.old.strip("0") == ""

    @property
    def is_delete(self) -> bool:
        return self.new.strip("0") == ""


@dataclass(frozen=True)
class PushUpdate:
    """One pre-push record: ``local-ref local-sha remote-ref remote-sha``."""

    local_ref: str
    local_sha: str
    remote_ref: str
    remote_sha: str


def _records(text: str, width: int, phase: HookPhase) -> list[list[str]]:
    rows: list[list[str]] = []
    for line_no, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        fields = line.split()
        if len(fields) != width:
            raise ValueError(
                f"{phase.value}: malformed input line {line_no}: expected {width} fields"
            )
        rows.append(fields)
    return rows


def parse_ref_updates(text: str, phase: HookPhase = HookPhase.PRE_RECEIVE) -> list[RefUpdate]:
    """Parse ``old new ref`` lines as sent to pre-receive and post-receive."""
    return [RefUpdate(*fields) for fields in _records(text, 3, phase)]


def parse_push_updates(text: str) -> list[PushUpdate]:
    """Parse ``local-ref local-sha remote-ref remote-sha`` lines sent to pre-push."""
    return [PushUpdate(*fields) for fields in _records(text, 4, HookPhase.PRE_PUSH)]


def parse_gerrit_options(args: list[str]) -> dict[str, str]:
    """Parse Gerrit's ``--name value`` argument pairs.

    Example:
        >>> parse_gerrit_options(["--project", "p", "--refname", "refs/heads/x"])
        {"project": "p", "refname": "refs/heads/x"}
    """
    options: dict[str, str] = {}
    i = 0
    while i < len(args):
        arg = args[i]
        if arg.startswith("--"):
            name = arg[2:]
            if i + 1 < len(args) and not args[i + 1].startswith("--"):
                options[name] = args[i + 1]
                i += 2
                continue
            options[name] = ""
        i += 1
    return options
