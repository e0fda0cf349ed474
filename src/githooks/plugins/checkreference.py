"""
CheckReference: access control for reference changes.

Rules come from ``githooks.checkreference.acl`` (one ``WHO WHAT REFS`` rule
per value, in declaration order) and are checked for every reference
changed by update, pre-receive, Gerrit ref-update and commit-received.

A push is classified as C (create), D (delete) or U (update); an update
that is not a fast-forward is also R (rewrite), so it needs a rule granting
both U and R.
"""

import structlog

from ..access.acl import Operation, evaluate, parse_rules
from ..core.context import HookContext
from ..core.phases import HookPhase, RefUpdate
from ..repo.query import RepositoryQueryError

logger = structlog.get_logger()

PHASES = (
    HookPhase.UPDATE,
    HookPhase.PRE_RECEIVE,
    HookPhase.REF_UPDATE,
    HookPhase.COMMIT_RECEIVED,
)

_VERBS = {
    Operation.CREATE: "create",
    Operation.UPDATE: "update",
    Operation.DELETE: "delete",
    Operation.REWRITE: "rewrite",
}


def requested_operations(context: HookContext, update: RefUpdate) -> frozenset[Operation]:
    """Classify a reference change into the operations it performs."""
    if update.is_create:
        return frozenset({Operation.CREATE})
    if update.is_delete:
        return frozenset({Operation.DELETE})
    if context.repo is not None:
        try:
            if not context.repo.is_ancestor(update.old, update.new):
                return frozenset({Operation.UPDATE, Operation.REWRITE})
        except RepositoryQueryError as e:
            logger.warning("checkreference.ancestry_unknown", ref=update.ref, error=str(e))
    return frozenset({Operation.UPDATE})


def check_references(context: HookContext, *args: str) -> None:
    """Fault every reference change the ACL does not grant."""
    acl = context.get_config_list("githooks", "acl", "checkreference")
    if not acl:
        logger.debug("checkreference.no_acl")
        return

    rules = parse_rules(acl)
    user = context.authenticated_user()
    groups = context.groups()

    for update in context.ref_updates:
        ops = requested_operations(context, update)
        decision = evaluate(rules, user, update.ref, ops, groups, context.env)
        if not decision.allowed:
            verbs = "/".join(_VERBS[op] for op in sorted(ops, key=lambda o: o.value))
            context.fault(
                f"{user or 'unknown user'} is not authorized to {verbs} {update.ref} "
                f"({decision.reason})"
            )


def register(registry) -> None:
    for phase in PHASES:
        registry.register_handler(phase, check_references, name="acl")
