"""
ACL evaluation for reference operations.

Each rule has the text form ``WHO WHAT REFS``:

- WHO: a user spec (``name``, ``@group`` or ``^regex``), see users.py
- WHAT: one or more of the letters C (create), U (update), D (delete)
  and R (rewrite, i.e. non fast-forward update)
- REFS: ``refs/heads/master`` (exact), ``^refs/heads/fix/`` (regex matched
  from the start) or either form prefixed with ``!`` to negate it.
  ``{NAME}`` placeholders are replaced by the environment variable NAME;
  if NAME is undefined the rule does not apply.

Rules are scanned completely and in order. The decision comes from the
LAST rule that matches the user and the ref and grants at least one of the
requested operations: the request is allowed only if that rule grants all
of them. Without such a rule the request is denied.
"""

import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

import structlog

from .groups import GroupTable
from .users import InvalidSpecError, match_user

logger = structlog.get_logger()

__all__ = [
    "ACLDecision",
    "ACLRule",
    "Operation",
    "evaluate",
    "parse_operations",
    "parse_rule",
    "parse_rules",
]

_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_]\w*)\}")


class Operation(Enum):
    """Operations on a reference."""

    CREATE = "C"
    UPDATE = "U"
    DELETE = "D"
    REWRITE = "R"


def parse_operations(letters: str) -> frozenset[Operation]:
    """Convert a string like ``"CDU"`` into a set of operations.

    Raises:
        InvalidSpecError: If the string is empty or has unknown letters.
    """
    letters = letters.strip().upper()
    if not letters:
        raise InvalidSpecError("empty operation set")
    ops: set[Operation] = set()
    for letter in letters:
        try:
            ops.add(Operation(letter))
        except ValueError:
            raise InvalidSpecError(
                f"invalid operation '{letter}' in '{letters}' (expected C, U, D or R)"
            ) from None
    return frozenset(ops)


@dataclass(frozen=True)
class ACLRule:
    """A single access rule.

    Attributes:
        user_spec: Who the rule applies to.
        permissions: Operations granted.
        ref_spec: Ref name or ``^regex``, without the negation bang.
        negated: If True, the rule applies to refs NOT matching ref_spec.
        text: Original text, used in decision reasons.
    """

    user_spec: str
    permissions: frozenset[Operation]
    ref_spec: str
    negated: bool = False
    text: str = ""

    def __str__(self) -> str:
        if self.text:
            return self.text
        perms = "".join(sorted(op.value for op in self.permissions))
        bang = "!" if self.negated else ""
        return f"{self.user_spec} {perms} {bang}{self.ref_spec}"


@dataclass(frozen=True)
class ACLDecision:
    """Outcome of an ACL evaluation."""

    allowed: bool
    reason: str
    rule: ACLRule | None = None

    def __bool__(self) -> bool:
        return self.allowed


def parse_rule(text: str) -> ACLRule:
    """Parse a ``WHO WHAT REFS`` rule.

    Raises:
        InvalidSpecError: If the rule does not have exactly three fields or
            one of them is invalid.
    """
    fields = text.split()
    if len(fields) != 3:
        raise InvalidSpecError(f"invalid ACL rule '{text}': expected 'WHO WHAT REFS'")
    who, what, refs = fields
    negated = refs.startswith("!")
    if negated:
        refs = refs[1:]
    if not refs:
        raise InvalidSpecError(f"invalid ACL rule '{text}': empty ref spec")
    return ACLRule(
        user_spec=who,
        permissions=parse_operations(what),
        ref_spec=refs,
        negated=negated,
        text=" ".join(fields),
    )


def parse_rules(texts: Iterable[str]) -> list[ACLRule]:
    """Parse rules in declaration order, ignoring blank entries."""
    return [parse_rule(t) for t in texts if t.strip()]


def _interpolate(ref_spec: str, env: Mapping[str, str]) -> str | None:
    """Replace ``{NAME}`` placeholders; None if any variable is undefined."""
    is_regex = ref_spec.startswith("^")
    missing = False

    def _sub(match: re.Match) -> str:
        nonlocal missing
        value = env.get(match.group(1))
        if value is None:
            missing = True
            return ""
        return re.escape(value) if is_regex else value

    result = _PLACEHOLDER_RE.sub(_sub, ref_spec)
    return None if missing else result


def _ref_matches(rule: ACLRule, ref_name: str, env: Mapping[str, str]) -> bool:
    spec = _interpolate(rule.ref_spec, env)
    if spec is None:
        return False

    if spec.startswith("^"):
        try:
            hit = re.match(spec, ref_name) is not None
        except re.error as e:
            raise InvalidSpecError(f"invalid ref pattern in rule '{rule}': {e}") from e
    else:
        hit = spec == ref_name

    return not hit if rule.negated else hit


def evaluate(
    rules: Iterable[ACLRule],
    identity: str | None,
    ref_name: str,
    requested: Iterable[Operation],
    groups: GroupTable | None = None,
    env: Mapping[str, str] | None = None,
) -> ACLDecision:
    """Decide whether identity may perform the requested operations on a ref.

    Args:
        rules: Rules in declaration order.
        identity: Authenticated user.
        ref_name: Full reference name.
        requested: Operations being performed; all must be granted.
        groups: Group table for ``@group`` user specs.
        env: Mapping used for ``{NAME}`` placeholders (``os.environ`` by default).

    Returns:
        ACLDecision; ``allowed`` is False unless a rule grants the request.
    """
    env = os.environ if env is None else env
    wanted = frozenset(requested)
    wanted_str = "".join(sorted(op.value for op in wanted))
    deciding: ACLRule | None = None

    for rule in rules:
        if not match_user(identity, rule.user_spec, groups):
            continue
        if not _ref_matches(rule, ref_name, env):
            continue
        if rule.permissions & wanted:
            deciding = rule

    if deciding is None:
        decision = ACLDecision(
            allowed=False,
            reason=f"no ACL rule grants '{wanted_str}' on '{ref_name}' to '{identity}'",
        )
    elif deciding.permissions >= wanted:
        decision = ACLDecision(
            allowed=True,
            reason=f"rule '{deciding}' grants '{wanted_str}' on '{ref_name}'",
            rule=deciding,
        )
    else:
        decision = ACLDecision(
            allowed=False,
            reason=f"rule '{deciding}' does not grant all of '{wanted_str}' on '{ref_name}'",
            rule=deciding,
        )

    logger.debug(
        "acl.decision",
        user=identity,
        ref=ref_name,
        requested=wanted_str,
        allowed=decision.allowed,
        rule=str(deciding) if deciding else None,
    )
    return decision
