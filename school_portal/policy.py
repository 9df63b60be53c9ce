"""
Access policy engine: the single decision table for every role, action and
resource type.

Rules, first match wins:

1. unknown action or resource type -> Deny(UNKNOWN_POLICY)
2. ADMIN -> Allow
3. TEACHER -> Allow on students, grades and announcements;
   Deny(INSUFFICIENT_ROLE) on user accounts and family links
4. FAMILY -> Deny(INSUFFICIENT_ROLE) on any write; reads are allowed only when
   the owning student is linked to the principal, else Deny(NOT_OWNER).
   Announcement listings are open to families but narrowed to school-wide
   rows and the classes of their linked students.
5. any other role -> Deny(UNKNOWN_POLICY)

Only rule 4 touches storage, through ``LinkedStudentSource``. A failing lookup
raises ``StorageUnavailable``; it is never reported as a denial.
"""

from collections.abc import Iterable
from typing import Protocol

from sqlalchemy import false, or_, select
from sqlalchemy.sql import Select

from .domain import Action, Decision, DenyReason, Principal, ResourceRef, ResourceType, Role

TEACHER_RESOURCES = frozenset({ResourceType.STUDENT, ResourceType.GRADE, ResourceType.ANNOUNCEMENT})
# Collections a family may list once narrowed by ``scope_filter``.
FAMILY_SCOPED_COLLECTIONS = frozenset(
    {ResourceType.STUDENT, ResourceType.GRADE, ResourceType.FAMILY_LINK, ResourceType.ANNOUNCEMENT}
)


class LinkedStudentSource(Protocol):
    def list_linked_students(self, user_id: int) -> frozenset[int]: ...


def _coerce(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return None


class ScopeFilter:
    """Predicate over student ids; ``student_ids`` is None when unrestricted."""

    def __init__(self, student_ids: Iterable[int] | None):
        self.student_ids = None if student_ids is None else frozenset(student_ids)

    @property
    def unrestricted(self) -> bool:
        return self.student_ids is None

    def __call__(self, student_id: int) -> bool:
        return self.unrestricted or student_id in self.student_ids

    def filter_ids(self, student_ids: Iterable[int]) -> list[int]:
        return [sid for sid in student_ids if self(sid)]

    def apply(self, query: Select, column) -> Select:
        if self.unrestricted:
            return query
        if not self.student_ids:
            return query.where(false())
        return query.where(column.in_(sorted(self.student_ids)))

    def apply_audience(self, query: Select, audience_column, class_column, student_column) -> Select:
        """Keep rows addressed to everyone or to a class one of the scoped students is in."""
        if self.unrestricted:
            return query
        classes = self.apply(select(class_column), student_column)
        return query.where(or_(audience_column.is_(None), audience_column == "", audience_column.in_(classes)))

    def __repr__(self) -> str:
        return f"ScopeFilter(student_ids={self.student_ids!r})"


class AccessPolicy:
    def __init__(self, links: LinkedStudentSource):
        self.links = links

    def authorize(self, principal: Principal, action: Action | str, resource: ResourceRef) -> Decision:
        action = _coerce(Action, action)
        resource_type = _coerce(ResourceType, resource.type)
        if action is None or resource_type is None:
            return Decision.deny(DenyReason.UNKNOWN_POLICY)

        role = _coerce(Role, principal.role)
        if role is Role.ADMIN:
            return Decision.allow()
        if role is Role.TEACHER:
            return self._teacher(resource_type)
        if role is Role.FAMILY:
            if action is Action.WRITE:
                return Decision.deny(DenyReason.INSUFFICIENT_ROLE)
            owner = resource.owning_student
            if owner is None or owner not in self.links.list_linked_students(principal.id):
                return Decision.deny(DenyReason.NOT_OWNER)
            return Decision.allow()
        return Decision.deny(DenyReason.UNKNOWN_POLICY)

    def authorize_listing(self, principal: Principal, resource_type: ResourceType | str) -> Decision:
        """Decide a collection read; family callers must narrow it with ``scope_filter``."""
        resource_type = _coerce(ResourceType, resource_type)
        if resource_type is None:
            return Decision.deny(DenyReason.UNKNOWN_POLICY)

        role = _coerce(Role, principal.role)
        if role is Role.ADMIN:
            return Decision.allow()
        if role is Role.TEACHER:
            return self._teacher(resource_type)
        if role is Role.FAMILY:
            if resource_type in FAMILY_SCOPED_COLLECTIONS:
                return Decision.allow()
            return Decision.deny(DenyReason.NOT_OWNER)
        return Decision.deny(DenyReason.UNKNOWN_POLICY)

    def scope_filter(self, principal: Principal) -> ScopeFilter:
        role = _coerce(Role, principal.role)
        if role in (Role.ADMIN, Role.TEACHER):
            return ScopeFilter(None)
        if role is Role.FAMILY:
            return ScopeFilter(self.links.list_linked_students(principal.id))
        return ScopeFilter(())

    @staticmethod
    def _teacher(resource_type: ResourceType) -> Decision:
        if resource_type in TEACHER_RESOURCES:
            return Decision.allow()
        return Decision.deny(DenyReason.INSUFFICIENT_ROLE)
