# tests/test_data_store.py

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest

from taskpro.models import Subtask, Task, TaskPriority, User
from taskpro.storage import (
    AnyOf, Between, Contains, DataStore, DuplicateKeyError, InvalidEntityError,
    Not, OneOf, PageRequest, PageResult, RecordNotFoundError,
)


def _task(store: DataStore, title: str, **attrs) -> Task:
    task = Task(title, attrs.pop("created_by_id", "u1"))
    for name, value in attrs.items():
        setattr(task, name, value)
    return store.tasks.create(task)


def test_repository_returns_detached_copies(store: DataStore) -> None:
    task = _task(store, "Original")
    loaded = store.tasks.find_by_id(task.id)
    loaded.title = "Changed"
    assert store.tasks.find_by_id(task.id).title == "Original"

    store.tasks.update(loaded)
    assert store.tasks.find_by_id(task.id).title == "Changed"


def test_unique_email_is_case_insensitive(store: DataStore) -> None:
    store.users.create(User("Ann", "ann@example.com", "h"))
    with pytest.raises(DuplicateKeyError) as exc:
        store.users.create(User("Other Ann", "ANN@example.com", "h"))
    assert exc.value.field == "email"


def test_update_missing_and_invalid_entities(store: DataStore) -> None:
    with pytest.raises(RecordNotFoundError):
        store.tasks.update(Task("Ghost", "u1"))
    with pytest.raises(InvalidEntityError):
        store.tasks.create(Task("   ", "u1"))


def test_filters(store: DataStore) -> None:
    a = _task(store, "Fix login bug", status="todo")
    b = _task(store, "Write release notes", status="completed", description="mentions LOGIN")
    c = _task(store, "Plan sprint", status="review", due_date=datetime(2024, 3, 5))

    def ids(spec) -> set:
        items, _ = store.tasks.find_all(spec)
        return {t.id for t in items}

    assert ids({"title": Contains("LOGIN")}) == {a.id}
    assert ids(AnyOf({"title": Contains("login")}, {"description": Contains("login")})) == {a.id, b.id}
    assert ids({"status": Not("completed")}) == {a.id, c.id}
    assert ids({"status": OneOf(["todo", "review"])}) == {a.id, c.id}
    assert ids({"due_date": Between(datetime(2024, 3, 1), datetime(2024, 3, 7))}) == {c.id}


def test_sort_by_enum_rank_with_missing_values_last(store: DataStore) -> None:
    low = _task(store, "low", priority=TaskPriority.LOW, due_date=datetime(2024, 1, 2))
    urgent = _task(store, "urgent", priority=TaskPriority.URGENT, due_date=datetime(2024, 1, 2))
    undated = _task(store, "undated", priority=TaskPriority.URGENT)
    early = _task(store, "early", priority=TaskPriority.LOW, due_date=datetime(2024, 1, 1))

    items, total = store.tasks.find_all(sort=[("due_date", "asc"), ("priority", "desc")])
    assert total == 4
    assert [t.id for t in items] == [early.id, urgent.id, low.id, undated.id]

    with pytest.raises(ValueError):
        store.tasks.find_all(sort=[("title", "sideways")])


def test_pagination(store: DataStore) -> None:
    for i in range(5):
        _task(store, f"task {i}")

    page = PageRequest(page=2, limit=2)
    items, total = store.tasks.find_all(page=page)
    result = PageResult.build(items, total, page)

    assert [t.title for t in result.items] == ["task 2", "task 3"]
    assert result.pagination.total_pages == 3
    assert result.pagination.has_next_page and result.pagination.has_prev_page
    assert result.to_dict()["pagination"]["total_items"] == 5

    with pytest.raises(ValueError):
        PageRequest(page=0)


def test_delete_where_and_count(store: DataStore) -> None:
    task = _task(store, "parent")
    for i in range(3):
        store.subtasks.create(Subtask(f"step {i}", task.id, "u1"))
    store.subtasks.create(Subtask("elsewhere", "other", "u1"))

    assert store.subtasks.count({"task_id": task.id}) == 3
    assert store.subtasks.delete_where({"task_id": task.id}) == 3
    assert store.subtasks.count() == 1


def test_persists_and_reloads(tmp_path: Path) -> None:
    store = DataStore(str(tmp_path))
    task = _task(store, "Durable")

    assert (tmp_path / "tasks.json").exists()
    reloaded = DataStore(str(tmp_path))
    assert reloaded.tasks.find_by_id(task.id).title == "Durable"
    assert reloaded.is_persistent


def test_recovers_from_backup_when_file_is_corrupt(tmp_path: Path) -> None:
    store = DataStore(str(tmp_path))
    first = _task(store, "first")
    _task(store, "second")

    (tmp_path / "tasks.json").write_text("{not json", encoding="utf-8")

    reloaded = DataStore(str(tmp_path))
    items, _ = reloaded.tasks.find_all()
    assert [t.id for t in items] == [first.id]


def test_integrity_check_and_orphan_cleanup(store: DataStore) -> None:
    owner = store.users.create(User("Owner", "owner@example.com", "h"))
    task = _task(store, "keep", created_by_id=owner.id)
    store.subtasks.create(Subtask("attached", task.id, owner.id))
    store.subtasks.create(Subtask("orphan", "missing-task", owner.id))

    result = store.validate_data_integrity()
    assert not result["valid"]
    assert any("missing-task" in e for e in result["errors"])

    cleaned = store.cleanup_orphaned_data()
    assert cleaned["deleted_subtasks"] == 1
    assert store.validate_data_integrity()["valid"]


def test_metadata_tracks_file_versions(tmp_path: Path) -> None:
    store = DataStore(str(tmp_path))
    _task(store, "one")
    _task(store, "two")

    metadata = json.loads((tmp_path / "metadata.json").read_text(encoding="utf-8"))
    assert metadata["file_versions"]["tasks"] == 3
