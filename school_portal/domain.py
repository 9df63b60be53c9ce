"""
Access-control vocabulary shared by the identity resolver, the policy engine
and the web layer.

Roles, actions and resource types are closed enumerations so that every
authorization check goes through the single decision table in ``policy``.
"""

import enum
from dataclasses import dataclass


class Role(str, enum.Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    FAMILY = "family"


ROLE_ALIASES = {
    "admin": Role.ADMIN,
    "teacher": Role.TEACHER,
    "family": Role.FAMILY,
    "parent": Role.FAMILY,
    "guardian": Role.FAMILY,
}


def normalize_role(value: str) -> Role | str:
    """Map a stored or claimed role string onto ``Role``.

    Unrecognized values are returned unchanged; the policy engine denies them.
    """
    return ROLE_ALIASES.get((value or "").strip().lower(), value)


def role_name(role: Role | str) -> str:
    return role.value if isinstance(role, Role) else str(role)


class Action(str, enum.Enum):
    READ = "read"
    WRITE = "write"


class ResourceType(str, enum.Enum):
    STUDENT = "student"
    GRADE = "grade"
    ANNOUNCEMENT = "announcement"
    USER_ACCOUNT = "user_account"
    FAMILY_LINK = "family_link"


class DenyReason(str, enum.Enum):
    INSUFFICIENT_ROLE = "insufficient_role"
    NOT_OWNER = "not_owner"
    UNKNOWN_POLICY = "unknown_policy"


@dataclass(frozen=True)
class Principal:
    id: int
    role: Role | str
    display_name: str = ""


@dataclass(frozen=True)
class ResourceRef:
    type: ResourceType | str
    id: int | None = None
    owner_student_id: int | None = None

    @property
    def owning_student(self) -> int | None:
        if self.owner_student_id is not None:
            return self.owner_student_id
        if self.type == ResourceType.STUDENT:
            return self.id
        return None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: DenyReason | None = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> "Decision":
        return cls(allowed=False, reason=reason)

    def __bool__(self) -> bool:
        return self.allowed


class StorageUnavailable(Exception):
    """The storage collaborator could not answer a lookup needed for a decision."""
