# tests/test_task_lifecycle.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from taskpro.core.error_handler import ForbiddenError, NotFoundError, ValidationError
from taskpro.core.event_publisher import EventType
from taskpro.models import NotificationType, TaskPatch, TaskStatus
from taskpro.storage.query import PageRequest

from .fakes import FailingEventBus


def _notes(store, user_id: str, kind: str | None = None):
    items, _ = store.notifications.find_all({"user_id": user_id})
    return [n for n in items if kind is None or n.type == kind]


# ---------------------------------------------------------------- create


def test_manager_creates_assigned_task_with_one_notification_and_event(
    lifecycle, store, bus, side_effects, manager, employee, project
) -> None:
    task = lifecycle.create_task(manager, {
        "title": "  Write launch plan ",
        "project_id": project.id,
        "assignee_id": employee.id,
        "priority": "high",
    })

    assert task.title == "Write launch plan"
    assert store.tasks.find_by_id(task.id).assignee_id == employee.id

    notes = _notes(store, employee.id)
    assert len(notes) == 1
    assert notes[0].type == NotificationType.TASK_ASSIGNED
    assert notes[0].title == "New Task Assigned"
    assert notes[0].metadata == {"taskId": task.id}

    events = bus.events_of(EventType.TASK_ASSIGNED)
    assert len(events) == 1
    data = events[0]["data"]
    assert data["taskId"] == task.id
    assert data["assigneeId"] == employee.id
    assert data["assignerName"] == manager.name
    assert bus.messages[0].key == EventType.TASK_ASSIGNED
    assert side_effects.jobs == ["create_task"]


def test_self_assigned_task_produces_no_side_effects(lifecycle, store, bus, side_effects, manager) -> None:
    lifecycle.create_task(manager, {"title": "Mine", "assignee_id": manager.id})
    assert store.notifications.count() == 0
    assert bus.messages == []
    assert side_effects.jobs == []


def test_employee_personal_task_forces_fields(lifecycle, store, employee, other_employee, project) -> None:
    task = lifecycle.create_task(employee, {
        "title": "Dentist",
        "is_personal": True,
        "project_id": project.id,
        "assignee_id": other_employee.id,
    })

    assert task.is_personal
    assert task.project_id is None
    assert task.assignee_id == employee.id
    assert store.notifications.count() == 0


def test_employee_cannot_create_team_task(lifecycle, store, employee, project) -> None:
    with pytest.raises(ForbiddenError):
        lifecycle.create_task(employee, {"title": "Team work", "project_id": project.id})
    assert store.tasks.count() == 0


@pytest.mark.parametrize("fields", [
    {"title": "   "},
    {"title": "x", "priority": "whenever"},
    {"title": "x", "status": "done"},
    {"title": "x", "estimated_hours": -1},
    {"title": "x", "due_date": "not a date"},
    {"title": "x", "tags": "one,two"},
    {"title": "x", "colour": "red"},
])
def test_create_task_rejects_invalid_input(lifecycle, manager, fields) -> None:
    with pytest.raises(ValidationError):
        lifecycle.create_task(manager, fields)


def test_create_task_requires_existing_references(lifecycle, manager) -> None:
    with pytest.raises(NotFoundError):
        lifecycle.create_task(manager, {"title": "x", "project_id": "missing"})
    with pytest.raises(NotFoundError):
        lifecycle.create_task(manager, {"title": "x", "assignee_id": "missing"})


def test_create_completed_task_records_completion_time(lifecycle, clock, manager) -> None:
    task = lifecycle.create_task(manager, {"title": "Done already", "status": "completed"})
    assert task.completed_at == clock()


# ---------------------------------------------------------------- update


def test_reassignment_notifies_new_assignee_once(
    lifecycle, store, bus, manager, employee, other_employee
) -> None:
    task = lifecycle.create_task(manager, {"title": "Review", "assignee_id": employee.id})
    bus.messages.clear()

    lifecycle.update_task(manager, task.id, {"assignee_id": other_employee.id})

    notes = _notes(store, other_employee.id, NotificationType.TASK_ASSIGNED)
    assert len(notes) == 1
    assert notes[0].title == "Task Assigned to You"
    assert len(bus.events_of(EventType.TASK_ASSIGNED)) == 1


def test_update_with_same_assignee_is_silent(lifecycle, store, bus, manager, employee) -> None:
    task = lifecycle.create_task(manager, {"title": "Review", "assignee_id": employee.id})
    bus.messages.clear()

    lifecycle.update_task(manager, task.id, {"assignee_id": employee.id, "title": "Review v2"})
    lifecycle.assign_task(manager, task.id, employee.id)

    assert len(_notes(store, employee.id)) == 1
    assert bus.messages == []


def test_update_leaves_unspecified_fields_and_clears_explicit_none(lifecycle, manager, employee, project) -> None:
    due = datetime(2024, 3, 10, 17)
    task = lifecycle.create_task(manager, {
        "title": "Plan", "description": "draft", "due_date": due,
        "project_id": project.id, "assignee_id": employee.id,
    })

    updated = lifecycle.update_task(manager, task.id, TaskPatch(due_date=None, description=None))

    assert updated.due_date is None
    assert updated.description == ""
    assert updated.project_id == project.id
    assert updated.assignee_id == employee.id


def test_update_treats_empty_references_as_cleared(lifecycle, store, manager, employee, project) -> None:
    task = lifecycle.create_task(manager, {"title": "Plan", "project_id": project.id, "assignee_id": employee.id})

    updated = lifecycle.update_task(manager, task.id, {"project_id": "", "assignee_id": ""})

    assert updated.project_id is None
    assert updated.assignee_id is None
    stored = store.tasks.find_by_id(task.id)
    assert stored.project_id is None and stored.assignee_id is None


def test_update_rejects_null_for_required_field(lifecycle, manager) -> None:
    task = lifecycle.create_task(manager, {"title": "Plan"})
    with pytest.raises(ValidationError):
        lifecycle.update_task(manager, task.id, {"title": None})
    with pytest.raises(ValidationError):
        lifecycle.update_task(manager, task.id, {"owner": "me"})


def test_employee_edits_only_own_personal_tasks(lifecycle, store, manager, employee) -> None:
    personal = lifecycle.create_task(employee, {"title": "Gym", "is_personal": True})
    assigned = lifecycle.create_task(manager, {"title": "Team", "assignee_id": employee.id})

    assert lifecycle.update_task(employee, personal.id, {"priority": "low"}).priority == "low"
    with pytest.raises(ForbiddenError):
        lifecycle.update_task(employee, assigned.id, {"priority": "low"})
    assert store.tasks.find_by_id(assigned.id).priority == "medium"


def test_personal_invariant_is_kept_on_update(lifecycle, employee, project) -> None:
    personal = lifecycle.create_task(employee, {"title": "Gym", "is_personal": True})

    with pytest.raises(ValidationError):
        lifecycle.update_task(employee, personal.id, {"project_id": project.id})
    with pytest.raises(ForbiddenError):
        lifecycle.update_task(employee, personal.id, {"is_personal": False})


def test_manager_can_make_task_personal(lifecycle, manager, employee, project) -> None:
    task = lifecycle.create_task(manager, {"title": "Notes", "project_id": project.id, "assignee_id": employee.id})

    updated = lifecycle.update_task(manager, task.id, {"is_personal": True, "assignee_id": None, "project_id": None})

    assert updated.is_personal
    assert updated.assignee_id == manager.id
    assert updated.project_id is None


def test_update_status_via_patch_tracks_completion(lifecycle, clock, manager) -> None:
    task = lifecycle.create_task(manager, {"title": "Ship"})
    clock.advance(hours=2)

    done = lifecycle.update_task(manager, task.id, {"status": "completed"})
    assert done.completed_at == clock()

    reopened = lifecycle.update_task(manager, task.id, {"status": "review"})
    assert reopened.completed_at is None


# ---------------------------------------------------------------- status / assign


def test_status_change_notifies_creator_and_always_emits_event(
    lifecycle, store, bus, manager, employee
) -> None:
    task = lifecycle.create_task(manager, {"title": "Ship", "assignee_id": employee.id})
    bus.messages.clear()

    lifecycle.update_task_status(employee, task.id, TaskStatus.IN_PROGRESS)

    notes = _notes(store, manager.id, NotificationType.TASK_STATUS_CHANGED)
    assert len(notes) == 1
    assert notes[0].message == 'Task "Ship" status changed from todo to in-progress'
    assert notes[0].metadata["previousStatus"] == "todo"

    events = bus.events_of(EventType.TASK_STATUS_CHANGED)
    assert [e["data"]["newStatus"] for e in events] == ["in-progress"]
    assert events[0]["data"]["changedById"] == employee.id

    # creator changing their own task: event only
    lifecycle.update_task_status(manager, task.id, TaskStatus.REVIEW)
    assert len(_notes(store, manager.id, NotificationType.TASK_STATUS_CHANGED)) == 1
    assert len(bus.events_of(EventType.TASK_STATUS_CHANGED)) == 2


def test_status_change_sets_and_clears_completed_at(lifecycle, clock, manager, employee) -> None:
    task = lifecycle.create_task(manager, {"title": "Ship", "assignee_id": employee.id})

    done = lifecycle.update_task_status(employee, task.id, "completed")
    assert done.completed_at == clock()

    clock.advance(days=1)
    again = lifecycle.update_task_status(employee, task.id, "completed")
    assert again.completed_at == clock()

    reopened = lifecycle.update_task_status(employee, task.id, "todo")
    assert reopened.completed_at is None


def test_status_change_permissions(lifecycle, manager, employee, other_employee) -> None:
    task = lifecycle.create_task(manager, {"title": "Ship", "assignee_id": employee.id})

    with pytest.raises(ForbiddenError):
        lifecycle.update_task_status(other_employee, task.id, "review")
    with pytest.raises(ValidationError):
        lifecycle.update_task_status(employee, task.id, "done")
    with pytest.raises(NotFoundError):
        lifecycle.update_task_status(employee, "missing", "review")


def test_assign_task_is_manager_only(lifecycle, store, manager, employee, other_employee) -> None:
    task = lifecycle.create_task(manager, {"title": "Ship", "assignee_id": employee.id})

    with pytest.raises(ForbiddenError):
        lifecycle.assign_task(employee, task.id, other_employee.id)
    with pytest.raises(ValidationError):
        lifecycle.assign_task(manager, task.id, "")
    with pytest.raises(NotFoundError):
        lifecycle.assign_task(manager, task.id, "missing")

    lifecycle.assign_task(manager, task.id, other_employee.id)
    assert store.tasks.find_by_id(task.id).assignee_id == other_employee.id
    assert len(_notes(store, other_employee.id, NotificationType.TASK_ASSIGNED)) == 1


def test_personal_task_cannot_be_given_away(lifecycle, manager, employee, other_employee) -> None:
    personal = lifecycle.create_task(employee, {"title": "Gym", "is_personal": True})
    with pytest.raises(ValidationError):
        lifecycle.assign_task(manager, personal.id, other_employee.id)


# ---------------------------------------------------------------- delete


def test_delete_removes_subtasks_before_task(lifecycle, store, manager, employee, monkeypatch) -> None:
    task = lifecycle.create_task(manager, {"title": "Ship", "assignee_id": employee.id})
    lifecycle.create_subtask(employee, task.id, {"title": "a"})
    lifecycle.create_subtask(employee, task.id, {"title": "b"})

    calls: list[str] = []
    delete_where = store.subtasks.delete_where
    delete = store.tasks.delete
    monkeypatch.setattr(store.subtasks, "delete_where", lambda f: calls.append("subtasks") or delete_where(f))
    monkeypatch.setattr(store.tasks, "delete", lambda i: calls.append("task") or delete(i))

    assert lifecycle.delete_task(manager, task.id) == 2
    assert calls == ["subtasks", "task"]
    assert store.subtasks.count() == 0
    assert not store.tasks.exists(task.id)


def test_employee_delete_permissions(lifecycle, store, manager, employee) -> None:
    assigned = lifecycle.create_task(manager, {"title": "Ship", "assignee_id": employee.id})
    personal = lifecycle.create_task(employee, {"title": "Gym", "is_personal": True})

    with pytest.raises(ForbiddenError):
        lifecycle.delete_task(employee, assigned.id)
    lifecycle.delete_task(employee, personal.id)
    assert not store.tasks.exists(personal.id)
    with pytest.raises(NotFoundError):
        lifecycle.delete_task(employee, personal.id)


# ---------------------------------------------------------------- subtasks


def test_subtask_by_assignee_notifies_task_creator(lifecycle, store, bus, manager, employee) -> None:
    task = lifecycle.create_task(manager, {"title": "Ship", "assignee_id": employee.id})
    bus.messages.clear()

    subtask = lifecycle.create_subtask(employee, task.id, {"title": "Draft notes"})

    notes = _notes(store, manager.id, NotificationType.SUBTASK_ADDED)
    assert len(notes) == 1
    assert notes[0].metadata == {"taskId": task.id, "subtaskId": subtask.id}
    events = bus.events_of(EventType.SUBTASK_ADDED)
    assert len(events) == 1
    assert events[0]["data"]["createdById"] == employee.id


def test_subtask_by_creator_notifies_assignee(lifecycle, store, manager, employee) -> None:
    task = lifecycle.create_task(manager, {"title": "Ship", "assignee_id": employee.id})
    lifecycle.create_subtask(manager, task.id, {"title": "Checklist"})
    assert len(_notes(store, employee.id, NotificationType.SUBTASK_ADDED)) == 1


def test_subtask_on_own_personal_task_only_emits_event(lifecycle, store, bus, employee) -> None:
    personal = lifecycle.create_task(employee, {"title": "Gym", "is_personal": True})
    lifecycle.create_subtask(employee, personal.id, {"title": "Stretch"})
    assert store.notifications.count() == 0
    assert len(bus.events_of(EventType.SUBTASK_ADDED)) == 1


def test_subtask_permissions(lifecycle, manager, employee, other_employee) -> None:
    task = lifecycle.create_task(manager, {"title": "Ship", "assignee_id": employee.id})
    managers_subtask = lifecycle.create_subtask(manager, task.id, {"title": "Checklist"})
    own = lifecycle.create_subtask(employee, task.id, {"title": "Notes"})

    with pytest.raises(ForbiddenError):
        lifecycle.create_subtask(other_employee, task.id, {"title": "x"})
    with pytest.raises(ForbiddenError):
        lifecycle.update_subtask(employee, managers_subtask.id, {"title": "renamed"})
    with pytest.raises(ForbiddenError):
        lifecycle.delete_subtask(employee, managers_subtask.id)

    assert lifecycle.update_subtask(employee, own.id, {"title": "Notes v2"}).title == "Notes v2"
    # status only depends on the parent task
    assert lifecycle.update_subtask_status(employee, managers_subtask.id, "in-progress").status == "in-progress"
    with pytest.raises(ForbiddenError):
        lifecycle.update_subtask_status(other_employee, own.id, "completed")
    with pytest.raises(ValidationError):
        lifecycle.update_subtask_status(employee, own.id, "review")


def test_subtask_progress_rounds(lifecycle, manager, employee) -> None:
    task = lifecycle.create_task(manager, {"title": "Ship", "assignee_id": employee.id})
    ids = [lifecycle.create_subtask(employee, task.id, {"title": t}).id for t in "abc"]

    lifecycle.update_subtask_status(employee, ids[0], "completed")
    detail = lifecycle.get_task(employee, task.id)
    assert detail.progress.percentage == 33
    assert detail.to_dict()["completed_subtasks"] == 1

    lifecycle.update_subtask_status(employee, ids[1], "completed")
    detail = lifecycle.get_task(employee, task.id)
    assert detail.progress.percentage == 67
    assert detail.to_dict()["total_subtasks"] == 3
    assert [s.title for s in detail.subtasks] == ["a", "b", "c"]


def test_subtask_status_tracks_completion(lifecycle, clock, manager, employee) -> None:
    task = lifecycle.create_task(manager, {"title": "Ship", "assignee_id": employee.id})
    subtask = lifecycle.create_subtask(employee, task.id, {"title": "a"})

    assert lifecycle.update_subtask_status(employee, subtask.id, "completed").completed_at == clock()
    assert lifecycle.update_subtask(employee, subtask.id, {"status": "todo"}).completed_at is None


def test_empty_task_has_zero_progress(lifecycle, manager) -> None:
    task = lifecycle.create_task(manager, {"title": "Ship"})
    assert lifecycle.get_task(manager, task.id).progress.percentage == 0


# ---------------------------------------------------------------- listing


def test_employee_sees_assigned_and_own_personal_tasks(lifecycle, manager, employee, other_employee) -> None:
    mine = lifecycle.create_task(manager, {"title": "Mine", "assignee_id": employee.id})
    lifecycle.create_task(manager, {"title": "Theirs", "assignee_id": other_employee.id})
    personal = lifecycle.create_task(employee, {"title": "Gym", "is_personal": True})
    lifecycle.create_task(other_employee, {"title": "Their gym", "is_personal": True})

    ids = {t.id for t in lifecycle.list_tasks(employee).items}
    assert ids == {mine.id, personal.id}
    assert lifecycle.list_tasks(manager).pagination.total_items == 4


def test_search_stays_within_visibility(lifecycle, manager, employee, other_employee) -> None:
    lifecycle.create_task(manager, {"title": "Deploy api", "assignee_id": employee.id})
    lifecycle.create_task(manager, {"title": "Deploy web", "assignee_id": other_employee.id})
    lifecycle.create_task(manager, {"title": "Docs", "description": "explain the DEPLOY", "assignee_id": employee.id})

    titles = sorted(t.title for t in lifecycle.list_tasks(employee, search="deploy").items)
    assert titles == ["Deploy api", "Docs"]


def test_list_sorts_by_due_date_then_priority(lifecycle, manager) -> None:
    base = datetime(2024, 3, 5)
    lifecycle.create_task(manager, {"title": "no due"})
    lifecycle.create_task(manager, {"title": "later", "due_date": base + timedelta(days=2)})
    lifecycle.create_task(manager, {"title": "soon low", "due_date": base, "priority": "low"})
    lifecycle.create_task(manager, {"title": "soon urgent", "due_date": base, "priority": "urgent"})

    titles = [t.title for t in lifecycle.list_tasks(manager).items]
    assert titles == ["soon urgent", "soon low", "later", "no due"]


def test_list_filters_and_pagination(lifecycle, manager, project) -> None:
    for i in range(5):
        lifecycle.create_task(manager, {"title": f"t{i}", "project_id": project.id, "priority": "high"})
    lifecycle.create_task(manager, {"title": "other", "priority": "low"})

    result = lifecycle.list_tasks(manager, project_id=project.id, page=PageRequest(2, 2))
    assert len(result.items) == 2
    assert result.pagination.total_items == 5
    assert result.pagination.total_pages == 3
    assert result.pagination.has_next_page and result.pagination.has_prev_page

    assert lifecycle.list_tasks(manager, priority="low").pagination.total_items == 1
    with pytest.raises(ValidationError):
        lifecycle.list_tasks(manager, status="done")


def test_list_personal_tasks_only_returns_own(lifecycle, employee, other_employee) -> None:
    lifecycle.create_task(employee, {"title": "Gym", "is_personal": True})
    lifecycle.create_task(other_employee, {"title": "Run", "is_personal": True})
    assert [t.title for t in lifecycle.list_personal_tasks(employee).items] == ["Gym"]


def test_upcoming_tasks_window(lifecycle, clock, manager, employee) -> None:
    now = clock()
    lifecycle.create_task(manager, {"title": "overdue", "due_date": now - timedelta(days=1), "assignee_id": employee.id})
    lifecycle.create_task(manager, {"title": "in 5d", "due_date": now + timedelta(days=5), "assignee_id": employee.id})
    lifecycle.create_task(manager, {"title": "in 2d", "due_date": now + timedelta(days=2), "assignee_id": employee.id})
    lifecycle.create_task(manager, {"title": "far", "due_date": now + timedelta(days=8), "assignee_id": employee.id})
    lifecycle.create_task(manager, {"title": "done", "due_date": now + timedelta(days=1),
                                    "assignee_id": employee.id, "status": "completed"})
    lifecycle.create_task(manager, {"title": "not mine", "due_date": now + timedelta(days=1)})

    assert [t.title for t in lifecycle.list_upcoming_tasks(employee)] == ["in 2d", "in 5d"]
    assert [t.title for t in lifecycle.list_upcoming_tasks(manager)] == ["not mine", "in 2d", "in 5d"]


def test_offset_due_dates_mix_with_naive_ones(lifecycle, clock, manager, employee) -> None:
    now = clock()
    utc_text = (now + timedelta(days=2)).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    offset_text = (now + timedelta(days=3)).astimezone().isoformat()

    naive = lifecycle.create_task(manager, {"title": "naive", "due_date": now + timedelta(days=1),
                                            "assignee_id": employee.id})
    zulu = lifecycle.create_task(manager, {"title": "zulu", "due_date": utc_text, "assignee_id": employee.id})
    offset = lifecycle.create_task(manager, {"title": "offset", "due_date": offset_text,
                                             "assignee_id": employee.id})

    assert zulu.due_date == now + timedelta(days=2)
    assert zulu.due_date.tzinfo is None and offset.due_date.tzinfo is None
    assert [t.title for t in lifecycle.list_tasks(manager).items] == ["naive", "zulu", "offset"]
    assert [t.title for t in lifecycle.list_upcoming_tasks(employee)] == ["naive", "zulu", "offset"]

    lifecycle.update_task(manager, naive.id, {"due_date": (now + timedelta(days=4)).astimezone().isoformat()})
    assert [t.title for t in lifecycle.list_tasks(manager).items] == ["zulu", "offset", "naive"]


# ---------------------------------------------------------------- event bus failures


def test_disconnected_bus_keeps_notifications(lifecycle, store, bus, logger, manager, employee) -> None:
    bus.disconnect()

    task = lifecycle.create_task(manager, {"title": "Ship", "assignee_id": employee.id})

    assert store.tasks.exists(task.id)
    assert len(_notes(store, employee.id)) == 1
    assert bus.messages == []
    assert lifecycle.publisher.stats["dropped"] == 1


def test_failing_bus_never_fails_the_operation(lifecycle, store, logger, manager, employee) -> None:
    failing = FailingEventBus()
    lifecycle.publisher.bus = failing

    task = lifecycle.create_task(manager, {"title": "Ship", "assignee_id": employee.id})
    lifecycle.update_task_status(employee, task.id, "review")

    assert failing.attempts == 2
    assert lifecycle.publisher.stats["failed"] == 2
    assert store.tasks.find_by_id(task.id).status == "review"
    assert len(_notes(store, manager.id)) == 1


def test_failing_notification_still_publishes_event(lifecycle, store, bus, side_effects, manager, employee,
                                                     monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise RuntimeError("store offline")

    monkeypatch.setattr(lifecycle.dispatcher, "notify", boom)

    lifecycle.create_task(manager, {"title": "Ship", "assignee_id": employee.id})

    assert len(bus.events_of(EventType.TASK_ASSIGNED)) == 1
    assert side_effects.stats["failed"] == 1
    assert side_effects.stats["succeeded"] == 1


def test_announce_deadline_emits_event(lifecycle, bus, manager, employee) -> None:
    due = datetime(2024, 3, 2, 12)
    task = lifecycle.create_task(manager, {"title": "Ship", "due_date": due, "assignee_id": employee.id})
    bus.messages.clear()

    lifecycle.announce_deadline(task)

    events = bus.events_of(EventType.DEADLINE_APPROACHING)
    assert len(events) == 1
    assert events[0]["data"] == {
        "taskId": task.id,
        "taskTitle": "Ship",
        "dueDate": due.isoformat(),
        "assigneeId": employee.id,
    }
