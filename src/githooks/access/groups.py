"""
Group definitions for access control.

A group definition is plain text, one group per line::

    # comment
    admins1 = alice bob
    admins  = @admins1 carol

A token prefixed with ``@`` names a group defined on an EARLIER line; its
members are merged in at that point, so the resulting table is already
flattened and cycles cannot exist.
"""

import re

__all__ = [
    "GroupDefinitionError",
    "GroupTable",
    "is_member",
    "resolve_groups",
]

GroupTable = dict[str, frozenset[str]]

_LINE_RE = re.compile(r"^\s*([\w.+-]+)\s*=\s*(.*?)\s*$")


class GroupDefinitionError(Exception):
    """Invalid group definition text."""

    def __init__(self, line_no: int, reason: str) -> None:
        self.line_no = line_no
        self.reason = reason
        super().__init__(f"group definition line {line_no}: {reason}")


def resolve_groups(text: str, table: GroupTable | None = None) -> GroupTable:
    """Parse group definitions into a flattened table.

    Args:
        text: Group definition text.
        table: Groups already defined by a previous source; references to
            them are valid and redefining them is a duplicate.

    Returns:
        New table mapping group name to the set of member identities.

    Raises:
        GroupDefinitionError: On syntax errors, duplicate groups and
            references to groups not defined on an earlier line.
    """
    groups: GroupTable = dict(table or {})

    for line_no, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        match = _LINE_RE.match(stripped)
        if not match:
            raise GroupDefinitionError(line_no, f"cannot parse '{stripped}'")

        name, body = match.groups()
        if name in groups:
            raise GroupDefinitionError(line_no, f"duplicate group '{name}'")

        members: set[str] = set()
        for token in body.split():
            if token.startswith("@"):
                ref = token[1:]
                if ref not in groups:
                    raise GroupDefinitionError(
                        line_no, f"group '{ref}' referenced before its definition"
                    )
                members |= groups[ref]
            else:
                members.add(token)

        groups[name] = frozenset(members)

    return groups


def is_member(table: GroupTable, identity: str | None, group: str) -> bool:
    """Return True if identity belongs to group (directly or through nesting)."""
    if identity is None:
        return False
    return identity in table.get(group.lstrip("@"), frozenset())
