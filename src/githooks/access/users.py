"""User specifications: literal names, ``@group`` references and ``^regex`` patterns."""

import re

from .groups import GroupTable, is_member

__all__ = [
    "InvalidSpecError",
    "match_user",
]


class InvalidSpecError(ValueError):
    """A user, permission or ref specification cannot be interpreted."""

    pass


def match_user(identity: str | None, spec: str, groups: GroupTable | None = None) -> bool:
    """Check whether an authenticated identity satisfies a user spec.

    - ``name``: exact, case-sensitive match.
    - ``@group``: membership in a resolved group.
    - ``^regex``: case-insensitive match anchored at the start by the caret
      itself; the end is only anchored if the pattern says so.

    Args:
        identity: Authenticated user, or None if unknown.
        spec: The user specification.
        groups: Resolved group table for ``@group`` specs.

    Raises:
        InvalidSpecError: If the spec is empty or the regex does not compile.
    """
    spec = spec.strip()
    if not spec:
        raise InvalidSpecError("empty user specification")

    if identity is None:
        return False

    if spec.startswith("@"):
        return is_member(groups or {}, identity, spec[1:])

    if spec.startswith("^"):
        try:
            return re.match(spec, identity, re.IGNORECASE) is not None
        except re.error as e:
            raise InvalidSpecError(f"invalid user pattern '{spec}': {e}") from e

    return identity == spec
