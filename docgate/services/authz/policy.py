"""Access policy decisions for documents.

Every function here is pure: inputs are an actor, a catalog document (or None
when the catalog has no such id) and, for content, the actor's access request.
Nothing is read from or written to storage.

Reader and reviewer denials on content are always ``DENY_NOT_FOUND``. A
``DENY_FORBIDDEN`` for those roles would tell a prober that the id exists.
``DENY_FORBIDDEN`` is reserved for admin-facing checks, where the caller is
already trusted with the catalog's shape.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping

from docgate.domain.access import ActorContext, Decision, RequestStatus, Role


def _check_inputs(actor: Any, document: Any) -> None:
    # Programmer errors, not business denials.
    if not isinstance(actor, ActorContext):
        raise TypeError("actor must be an ActorContext")
    if document is not None and not (
        hasattr(document, "id") and hasattr(document, "department_id") and hasattr(document, "archived")
    ):
        raise TypeError("document must expose id, department_id and archived")


def _same_department(actor: ActorContext, document: Any) -> bool:
    return actor.department_id is not None and actor.department_id == document.department_id


def _granted(actor: ActorContext, document: Any, request: Any) -> bool:
    # Only the actor's own ACCEPTED request for this document counts as a grant.
    if request is None:
        return False
    return (
        request.status == RequestStatus.ACCEPTED.value
        and request.actor_id == actor.actor_id
        and request.document_id == document.id
    )


_MetadataRule = Callable[[ActorContext, Any], bool]
_ContentRule = Callable[[ActorContext, Any, Any], Decision]
_ManageRule = Callable[[ActorContext, Any], Decision]


_METADATA_RULES: Mapping[Role, _MetadataRule] = {
    Role.GLOBAL_ADMIN: lambda actor, document: True,
    Role.DEPT_ADMIN: lambda actor, document: True,
    Role.REVIEWER: lambda actor, document: True,
    Role.READER: lambda actor, document: not document.archived,
}


def _content_for_requester(actor: ActorContext, document: Any, request: Any) -> Decision:
    if _granted(actor, document, request) and not document.archived:
        return Decision.ALLOW
    return Decision.DENY_NOT_FOUND


_CONTENT_RULES: Mapping[Role, _ContentRule] = {
    Role.GLOBAL_ADMIN: lambda actor, document, request: Decision.ALLOW,
    Role.DEPT_ADMIN: lambda actor, document, request: (
        Decision.ALLOW if _same_department(actor, document) else Decision.DENY_FORBIDDEN
    ),
    Role.REVIEWER: _content_for_requester,
    Role.READER: _content_for_requester,
}


_MANAGE_RULES: Mapping[Role, _ManageRule] = {
    Role.GLOBAL_ADMIN: lambda actor, document: Decision.ALLOW,
    Role.DEPT_ADMIN: lambda actor, document: (
        Decision.ALLOW if _same_department(actor, document) else Decision.DENY_FORBIDDEN
    ),
    Role.REVIEWER: lambda actor, document: Decision.DENY_FORBIDDEN,
    Role.READER: lambda actor, document: Decision.DENY_FORBIDDEN,
}


RULE_TABLES: dict[str, Mapping[Role, Any]] = {
    "metadata": _METADATA_RULES,
    "content": _CONTENT_RULES,
    "manage": _MANAGE_RULES,
}


def missing_rules() -> dict[str, set[Role]]:
    # Roles lacking an entry in any rule table; must stay empty.
    gaps: dict[str, set[Role]] = {}
    for name, table in RULE_TABLES.items():
        missing = set(Role) - set(table)
        if missing:
            gaps[name] = missing
    return gaps


_gaps = missing_rules()
if _gaps:
    raise RuntimeError(f"Access policy rules missing for roles: {_gaps}")


def can_view_metadata(actor: ActorContext, document: Any) -> bool:
    _check_inputs(actor, document)
    if document is None:
        return False
    return _METADATA_RULES[actor.role](actor, document)


def can_access_content(actor: ActorContext, document: Any, request: Any = None) -> Decision:
    _check_inputs(actor, document)
    if document is None:
        return Decision.DENY_NOT_FOUND
    return _CONTENT_RULES[actor.role](actor, document, request)


def can_manage_document(actor: ActorContext, document: Any) -> Decision:
    """Admin-facing scope check used for archive toggles and request decisions."""
    _check_inputs(actor, document)
    if document is None:
        return Decision.DENY_NOT_FOUND
    return _MANAGE_RULES[actor.role](actor, document)
