"""
Access control: group definitions, user specs and reference ACLs.
"""

from .acl import ACLDecision, ACLRule, Operation, evaluate, parse_operations, parse_rule, parse_rules
from .groups import GroupDefinitionError, GroupTable, is_member, resolve_groups
from .users import InvalidSpecError, match_user

__all__ = [
    "ACLDecision",
    "ACLRule",
    "GroupDefinitionError",
    "GroupTable",
    "InvalidSpecError",
    "Operation",
    "evaluate",
    "is_member",
    "match_user",
    "parse_operations",
    "parse_rule",
    "parse_rules",
    "resolve_groups",
]
