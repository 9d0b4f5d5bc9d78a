"""Role based access decisions for scheduling resources.

Every write path asks ``authorize`` before touching storage. The capability
table is closed: each role lists, per resource kind, the operations it may
perform, and whether they are limited to records the principal owns.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..core.errors import ConfigurationError


class Role(str, Enum):
    admin = "admin"
    trainer = "trainer"
    member = "member"
    anonymous = "anonymous"


class Operation(str, Enum):
    read = "read"
    write = "write"


class ResourceKind(str, Enum):
    session = "session"
    booking = "booking"
    trainer_profile = "trainer_profile"
    member_profile = "member_profile"
    payment = "payment"


class Scope(str, Enum):
    any = "any"
    own = "own"


@dataclass(frozen=True, slots=True)
class Principal:
    role: Role
    subject_id: int | None = None

    @classmethod
    def build(cls, role: str | Role, subject_id: int | None = None) -> "Principal":
        try:
            resolved = Role(role)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown role {role!r}") from exc
        return cls(role=resolved, subject_id=subject_id)

    @classmethod
    def anonymous(cls) -> "Principal":
        return cls(role=Role.anonymous)


@dataclass(frozen=True, slots=True)
class AccessDecision:
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = AccessDecision(allowed=True)

_ALL_OPERATIONS = {Operation.read: Scope.any, Operation.write: Scope.any}

CAPABILITIES: dict[Role, dict[ResourceKind, dict[Operation, Scope]]] = {
    Role.admin: {kind: dict(_ALL_OPERATIONS) for kind in ResourceKind},
    Role.trainer: {
        ResourceKind.session: dict(_ALL_OPERATIONS),
        ResourceKind.booking: dict(_ALL_OPERATIONS),
        ResourceKind.trainer_profile: {Operation.read: Scope.any, Operation.write: Scope.own},
    },
    Role.member: {
        ResourceKind.booking: {Operation.read: Scope.own},
    },
    Role.anonymous: {},
}


def ensure_capabilities_complete() -> None:
    missing = [role.value for role in Role if role not in CAPABILITIES]
    if missing:
        raise ConfigurationError(f"No capabilities configured for roles: {', '.join(missing)}")
    for role, kinds in CAPABILITIES.items():
        for kind, operations in kinds.items():
            for operation, scope in operations.items():
                if scope is Scope.own and role not in (Role.trainer, Role.member):
                    raise ConfigurationError(
                        f"Role {role.value!r} has no identity for own-record rule on {kind.value}"
                    )


def authorize(
    principal: Principal,
    operation: Operation,
    resource_kind: ResourceKind,
    resource_owner_id: int | None = None,
) -> AccessDecision:
    if not isinstance(principal.role, Role):
        raise ConfigurationError(f"Unknown role {principal.role!r}")
    if principal.role is Role.admin:
        return ALLOW
    scope = CAPABILITIES.get(principal.role, {}).get(resource_kind, {}).get(operation)
    if scope is None:
        return AccessDecision(
            allowed=False,
            reason=f"{principal.role.value} may not {operation.value} {resource_kind.value}",
        )
    if scope is Scope.own:
        if principal.subject_id is None or principal.subject_id != resource_owner_id:
            return AccessDecision(
                allowed=False,
                reason=f"{principal.role.value} may only {operation.value} their own {resource_kind.value}",
            )
    return ALLOW


__all__ = [
    "Role",
    "Operation",
    "ResourceKind",
    "Principal",
    "AccessDecision",
    "CAPABILITIES",
    "authorize",
    "ensure_capabilities_complete",
]
