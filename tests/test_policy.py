"""
Access policy engine: decision table, family scoping and failure semantics.

The engine is exercised against an in-memory link source so every rule can be
checked without a database.
"""

from __future__ import annotations

import pytest

from school_portal.domain import (
    Action,
    DenyReason,
    Principal,
    ResourceRef,
    ResourceType,
    Role,
    StorageUnavailable,
)
from school_portal.policy import AccessPolicy, ScopeFilter


class FakeLinks:
    def __init__(self, links: dict[int, set[int]] | None = None, fail: bool = False):
        self.links = links or {}
        self.fail = fail
        self.calls: list[int] = []

    def list_linked_students(self, user_id: int) -> frozenset[int]:
        self.calls.append(user_id)
        if self.fail:
            raise StorageUnavailable("db down")
        return frozenset(self.links.get(user_id, set()))


ALL_RESOURCES = [
    ResourceRef(ResourceType.STUDENT, id=1),
    ResourceRef(ResourceType.GRADE, id=3, owner_student_id=1),
    ResourceRef(ResourceType.ANNOUNCEMENT, id=4),
    ResourceRef(ResourceType.USER_ACCOUNT, id=5),
    ResourceRef(ResourceType.FAMILY_LINK, id=6, owner_student_id=1),
]

ADMIN = Principal(id=1, role=Role.ADMIN, display_name="Admin")
TEACHER = Principal(id=2, role=Role.TEACHER, display_name="Teacher")
FAMILY = Principal(id=7, role=Role.FAMILY, display_name="Parent")


@pytest.mark.parametrize("action", list(Action))
@pytest.mark.parametrize("resource", ALL_RESOURCES)
def test_admin_allowed_everywhere(action, resource):
    links = FakeLinks()
    decision = AccessPolicy(links).authorize(ADMIN, action, resource)
    assert decision.allowed
    assert decision.reason is None
    assert links.calls == []


@pytest.mark.parametrize("action", list(Action))
@pytest.mark.parametrize("resource", ALL_RESOURCES)
def test_teacher_table(action, resource):
    decision = AccessPolicy(FakeLinks()).authorize(TEACHER, action, resource)
    if resource.type in (ResourceType.USER_ACCOUNT, ResourceType.FAMILY_LINK):
        assert not decision.allowed
        assert decision.reason is DenyReason.INSUFFICIENT_ROLE
    else:
        assert decision.allowed


@pytest.mark.parametrize("resource", ALL_RESOURCES)
def test_family_writes_denied_without_lookup(resource):
    links = FakeLinks({7: {1}})
    decision = AccessPolicy(links).authorize(FAMILY, Action.WRITE, resource)
    assert decision.reason is DenyReason.INSUFFICIENT_ROLE
    assert links.calls == []


def test_family_example_scenario():
    policy = AccessPolicy(FakeLinks({7: {12}}))

    assert policy.authorize(FAMILY, Action.READ, ResourceRef(ResourceType.STUDENT, id=12)).allowed

    denied = policy.authorize(FAMILY, Action.READ, ResourceRef(ResourceType.STUDENT, id=99))
    assert not denied.allowed
    assert denied.reason is DenyReason.NOT_OWNER

    write = policy.authorize(FAMILY, Action.WRITE, ResourceRef(ResourceType.GRADE, owner_student_id=12))
    assert write.reason is DenyReason.INSUFFICIENT_ROLE


def test_family_reads_follow_owner_student():
    policy = AccessPolicy(FakeLinks({7: {12}}))
    assert policy.authorize(FAMILY, Action.READ, ResourceRef(ResourceType.GRADE, id=50, owner_student_id=12)).allowed
    assert (
        policy.authorize(FAMILY, Action.READ, ResourceRef(ResourceType.GRADE, id=51, owner_student_id=13)).reason
        is DenyReason.NOT_OWNER
    )
    # Nothing to own: announcements and accounts carry no student.
    assert policy.authorize(FAMILY, Action.READ, ResourceRef(ResourceType.ANNOUNCEMENT, id=1)).reason is DenyReason.NOT_OWNER
    assert policy.authorize(FAMILY, Action.READ, ResourceRef(ResourceType.USER_ACCOUNT, id=7)).reason is DenyReason.NOT_OWNER


def test_family_without_links_owns_nothing():
    policy = AccessPolicy(FakeLinks())
    decision = policy.authorize(FAMILY, Action.READ, ResourceRef(ResourceType.STUDENT, id=12))
    assert decision.reason is DenyReason.NOT_OWNER


@pytest.mark.parametrize("principal", [ADMIN, TEACHER, FAMILY])
def test_unknown_resource_type_fails_closed(principal):
    policy = AccessPolicy(FakeLinks({7: {1}}))
    decision = policy.authorize(principal, Action.READ, ResourceRef("timetable", id=1, owner_student_id=1))
    assert decision.reason is DenyReason.UNKNOWN_POLICY


def test_unknown_action_fails_closed():
    decision = AccessPolicy(FakeLinks()).authorize(ADMIN, "delete", ResourceRef(ResourceType.STUDENT, id=1))
    assert decision.reason is DenyReason.UNKNOWN_POLICY


def test_unknown_role_denied():
    principal = Principal(id=9, role="janitor")
    decision = AccessPolicy(FakeLinks()).authorize(principal, Action.READ, ResourceRef(ResourceType.STUDENT, id=1))
    assert decision.reason is DenyReason.UNKNOWN_POLICY


def test_string_inputs_are_accepted():
    decision = AccessPolicy(FakeLinks()).authorize(
        Principal(id=2, role="teacher"), "write", ResourceRef("grade", id=1)
    )
    assert decision.allowed


def test_storage_failure_is_not_a_denial():
    policy = AccessPolicy(FakeLinks(fail=True))
    with pytest.raises(StorageUnavailable):
        policy.authorize(FAMILY, Action.READ, ResourceRef(ResourceType.STUDENT, id=12))
    with pytest.raises(StorageUnavailable):
        policy.scope_filter(FAMILY)


def test_listing_decisions():
    policy = AccessPolicy(FakeLinks())
    assert policy.authorize_listing(FAMILY, ResourceType.STUDENT).allowed
    assert policy.authorize_listing(FAMILY, ResourceType.FAMILY_LINK).allowed
    assert policy.authorize_listing(FAMILY, ResourceType.ANNOUNCEMENT).allowed
    assert policy.authorize_listing(FAMILY, ResourceType.USER_ACCOUNT).reason is DenyReason.NOT_OWNER
    assert policy.authorize_listing(TEACHER, ResourceType.USER_ACCOUNT).reason is DenyReason.INSUFFICIENT_ROLE
    assert policy.authorize_listing(ADMIN, "timetable").reason is DenyReason.UNKNOWN_POLICY


def test_scope_filter_narrows_family_to_linked_students():
    policy = AccessPolicy(FakeLinks({7: {12, 14}}))
    scope = policy.scope_filter(FAMILY)
    all_ids = [10, 11, 12, 13, 14]

    narrowed = scope.filter_ids(all_ids)
    assert narrowed == [12, 14]
    assert scope.filter_ids(narrowed) == narrowed


def test_scope_filter_unrestricted_for_staff():
    policy = AccessPolicy(FakeLinks())
    for principal in (ADMIN, TEACHER):
        scope = policy.scope_filter(principal)
        assert scope.unrestricted
        assert scope.filter_ids([1, 2, 3]) == [1, 2, 3]


def test_scope_filter_matches_nothing_for_unknown_role():
    scope = AccessPolicy(FakeLinks()).scope_filter(Principal(id=9, role="janitor"))
    assert scope.filter_ids([1, 2, 3]) == []
    assert not scope(1)


def test_scope_filter_apply_builds_in_clause():
    from sqlalchemy import select

    from school_portal.models import Student

    query = select(Student)
    assert ScopeFilter(None).apply(query, Student.id) is query
    narrowed = str(ScopeFilter({3, 1}).apply(query, Student.id))
    assert "students.id IN" in narrowed


def test_scope_filter_apply_audience_limits_to_linked_classes():
    from sqlalchemy import select

    from school_portal.models import Announcement, Student

    query = select(Announcement)
    assert ScopeFilter(None).apply_audience(query, Announcement.class_name, Student.class_name, Student.id) is query

    narrowed = str(ScopeFilter({5}).apply_audience(query, Announcement.class_name, Student.class_name, Student.id))
    assert "announcements.class_name IS NULL" in narrowed
    assert "announcements.class_name IN (SELECT students.class_name" in narrowed
