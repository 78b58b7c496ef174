from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    READER = "READER"
    REVIEWER = "REVIEWER"
    DEPT_ADMIN = "DEPT_ADMIN"
    GLOBAL_ADMIN = "GLOBAL_ADMIN"


# Roles that ask for content through access requests.
REQUESTER_ROLES = frozenset({Role.READER, Role.REVIEWER})
ADMIN_ROLES = frozenset({Role.DEPT_ADMIN, Role.GLOBAL_ADMIN})


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


# Statuses covered by the one-open-request-per-pair invariant.
OPEN_STATUSES = (RequestStatus.PENDING, RequestStatus.ACCEPTED)


class DecisionAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"

    @property
    def target_status(self) -> RequestStatus:
        if self is DecisionAction.ACCEPT:
            return RequestStatus.ACCEPTED
        return RequestStatus.REJECTED


class Decision(str, Enum):
    ALLOW = "ALLOW"
    DENY_NOT_FOUND = "DENY_NOT_FOUND"
    DENY_FORBIDDEN = "DENY_FORBIDDEN"


def parse_role(value: str) -> Role:
    # Accept any casing from config, scripts and token claims.
    try:
        return Role(value.strip().upper())
    except ValueError as exc:
        raise ValueError(f"Unsupported role: {value}") from exc


@dataclass(frozen=True)
class ActorContext:
    """Authenticated caller, rebuilt from session credential claims on every request."""

    actor_id: str
    role: Role
    department_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            raise TypeError("role must be a Role")
        if self.role is Role.DEPT_ADMIN and not self.department_id:
            raise ValueError("DEPT_ADMIN actors require a department_id")
        if self.role is not Role.DEPT_ADMIN and self.department_id is not None:
            raise ValueError("department_id is only valid for DEPT_ADMIN actors")

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_requester(self) -> bool:
        return self.role in REQUESTER_ROLES
