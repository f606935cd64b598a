# tests/test_access_policy.py

from __future__ import annotations

import pytest

from taskpro.core.access_policy import AccessPolicy, Action, Decision, SubtaskContext, UserUpdateContext
from taskpro.core.error_handler import ForbiddenError
from taskpro.core.identity import Principal
from taskpro.models import Notification, NotificationType, Subtask, Task, User, UserPatch, UserRole

MANAGER = Principal("m1", UserRole.MANAGER, "team")
EMPLOYEE = Principal("e1", UserRole.EMPLOYEE, "team")
OTHER = Principal("e2", UserRole.EMPLOYEE, "team")

policy = AccessPolicy()


def _task(created_by: str, assignee: str | None = None, personal: bool = False) -> Task:
    task = Task("t", created_by)
    task.assignee_id = assignee
    if personal:
        task.make_personal()
    return task


def test_manager_is_always_allowed_on_tasks() -> None:
    task = _task("e2", personal=True)
    for action in (Action.CREATE_TASK, Action.EDIT_TASK, Action.DELETE_TASK,
                   Action.UPDATE_TASK_STATUS, Action.ASSIGN_TASK, Action.CREATE_SUBTASK):
        assert policy.can(MANAGER, action, task)


@pytest.mark.parametrize("fields,allowed", [
    ({"is_personal": True}, True),
    ({"is_personal": False}, False),
    ({}, False),
    ({"is_personal": "yes"}, False),
])
def test_employee_create_task_only_personal(fields, allowed) -> None:
    assert policy.can(EMPLOYEE, Action.CREATE_TASK, fields) is allowed


def test_employee_edit_and_delete_only_own_personal_tasks() -> None:
    own_personal = _task("e1", personal=True)
    others_personal = _task("e2", personal=True)
    assigned_team_task = _task("m1", assignee="e1")

    for action in (Action.EDIT_TASK, Action.DELETE_TASK):
        assert policy.can(EMPLOYEE, action, own_personal)
        assert not policy.can(EMPLOYEE, action, others_personal)
        assert not policy.can(EMPLOYEE, action, assigned_team_task)


def test_employee_status_and_subtask_creation_follow_assignment() -> None:
    assigned = _task("m1", assignee="e1")
    unassigned = _task("m1", assignee="e2")
    own_personal = _task("e1", personal=True)

    for action in (Action.UPDATE_TASK_STATUS, Action.CREATE_SUBTASK):
        assert policy.can(EMPLOYEE, action, assigned)
        assert policy.can(EMPLOYEE, action, own_personal)
        assert not policy.can(EMPLOYEE, action, unassigned)


def test_subtask_edit_requires_authorship_and_assignment() -> None:
    assigned = _task("m1", assignee="e1")
    mine = SubtaskContext(Subtask("s", assigned.id, "e1"), assigned)
    managers = SubtaskContext(Subtask("s", assigned.id, "m1"), assigned)

    assert policy.can(EMPLOYEE, Action.EDIT_SUBTASK, mine)
    assert policy.can(EMPLOYEE, Action.DELETE_SUBTASK, mine)
    assert not policy.can(EMPLOYEE, Action.EDIT_SUBTASK, managers)

    reassigned = _task("m1", assignee="e2")
    stale = SubtaskContext(Subtask("s", reassigned.id, "e1"), reassigned)
    assert not policy.can(EMPLOYEE, Action.DELETE_SUBTASK, stale)


def test_subtask_status_ignores_authorship() -> None:
    assigned = _task("m1", assignee="e1")
    managers = SubtaskContext(Subtask("s", assigned.id, "m1"), assigned)
    assert policy.can(EMPLOYEE, Action.UPDATE_SUBTASK_STATUS, managers)
    assert not policy.can(OTHER, Action.UPDATE_SUBTASK_STATUS, managers)


@pytest.mark.parametrize("action", [
    Action.ASSIGN_TASK, Action.MANAGE_TEAM, Action.MANAGE_PROJECT,
    Action.VIEW_ANALYTICS, Action.MANAGE_USER,
])
def test_manager_only_actions(action) -> None:
    decision = policy.authorize(EMPLOYEE, action)
    assert not decision
    assert "マネージャー" in decision.reason
    assert policy.can(MANAGER, action)


def test_user_update_rules() -> None:
    me = User("Eli", "eli@example.com", "h")
    me.id = EMPLOYEE.id
    other = User("Oda", "oda@example.com", "h")

    assert policy.can(EMPLOYEE, Action.UPDATE_USER, UserUpdateContext(me, UserPatch(name="Eli L")))
    assert not policy.can(EMPLOYEE, Action.UPDATE_USER, UserUpdateContext(me, UserPatch(role="manager")))
    assert not policy.can(EMPLOYEE, Action.UPDATE_USER, UserUpdateContext(other, UserPatch(name="x")))
    assert policy.can(MANAGER, Action.UPDATE_USER, UserUpdateContext(other, UserPatch(is_active=False)))


def test_notifications_are_recipient_only_even_for_managers() -> None:
    note = Notification(NotificationType.MENTION, EMPLOYEE.id, "t", "m")
    assert policy.can(EMPLOYEE, Action.MANAGE_NOTIFICATION, note)
    assert not policy.can(OTHER, Action.MANAGE_NOTIFICATION, note)
    assert not policy.can(MANAGER, Action.MANAGE_NOTIFICATION, note)


def test_unknown_action_is_denied_for_employees() -> None:
    assert not policy.can(EMPLOYEE, "task:teleport")


def test_enforce_raises_forbidden_with_reason() -> None:
    Decision.allow().enforce()
    with pytest.raises(ForbiddenError) as exc:
        Decision.deny("no way").enforce()
    assert exc.value.reason == "no way"
    assert exc.value.kind == "forbidden"
