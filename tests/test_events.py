# tests/test_events.py

from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from taskpro.core.event_publisher import EventPublisher, EventTopic, EventType, decode_event, encode_event
from taskpro.core.notification_manager import NotificationDispatcher
from taskpro.events.bus import BusMessage, BusUnavailableError, InMemoryEventBus
from taskpro.events.consumer import DEFAULT_GROUP_ID, NotificationEventConsumer
from taskpro.models import NotificationType, Task, User

from .fakes import RecordingEventBus


@pytest.fixture()
def memory_bus(logger):
    b = InMemoryEventBus(partitions=3, logger=logger)
    yield b
    b.disconnect()


def _message(event_type: str, data: dict) -> BusMessage:
    return BusMessage(EventTopic.TASK_EVENTS, 0, 0, event_type,
                      encode_event(event_type, data, datetime(2024, 3, 1, 9)))


# ---------------------------------------------------------------- envelope


def test_envelope_shape() -> None:
    raw = encode_event(EventType.TASK_ASSIGNED, {"taskId": "t1", "due": datetime(2024, 3, 2)},
                       datetime(2024, 3, 1, 9, 30, 15, 250000, tzinfo=timezone.utc))
    event = decode_event(raw)
    assert event == {
        "type": "TASK_ASSIGNED",
        "data": {"taskId": "t1", "due": "2024-03-02T00:00:00"},
        "timestamp": "2024-03-01T09:30:15.250Z",
    }


@pytest.mark.parametrize("raw", [b"not json", b"[]", b'{"data": {}}'])
def test_decode_rejects_malformed_envelopes(raw: bytes) -> None:
    with pytest.raises(ValueError):
        decode_event(raw)


def test_decode_fills_missing_data() -> None:
    assert decode_event(b'{"type": "X"}')["data"] == {}


# ---------------------------------------------------------------- in-memory bus


def test_bus_rejects_publish_while_disconnected(memory_bus) -> None:
    with pytest.raises(BusUnavailableError):
        memory_bus.publish("t", "k", b"{}")


def test_bus_requires_a_partition() -> None:
    with pytest.raises(ValueError):
        InMemoryEventBus(partitions=0)


def test_same_key_maps_to_same_partition(memory_bus) -> None:
    partitions = {memory_bus.partition_for("TASK_ASSIGNED") for _ in range(5)}
    assert len(partitions) == 1
    assert all(0 <= memory_bus.partition_for(k) < 3 for k in ("a", "b", "c", ""))


def test_messages_with_one_key_arrive_in_order(memory_bus) -> None:
    received: list[int] = []
    memory_bus.subscribe("task-events", "g", lambda m: received.append(m.offset))
    memory_bus.connect()

    for _ in range(20):
        memory_bus.publish("task-events", "TASK_STATUS_CHANGED", b"{}")

    assert memory_bus.wait_idle(2.0)
    assert received == list(range(20))
    assert memory_bus.stats["published"] == 20
    assert memory_bus.stats["delivered"] == 20


def test_each_group_gets_its_own_copy(memory_bus) -> None:
    a: list[str] = []
    b: list[str] = []
    stray: list[str] = []
    memory_bus.connect()
    memory_bus.subscribe("task-events", "a", lambda m: a.append(m.key))
    memory_bus.subscribe("task-events", "b", lambda m: b.append(m.key))
    memory_bus.subscribe("other", "c", lambda m: stray.append(m.key))

    memory_bus.publish("task-events", "k1", b"{}")
    memory_bus.publish("task-events", "k2", b"{}")

    assert memory_bus.wait_idle(2.0)
    assert sorted(a) == sorted(b) == ["k1", "k2"]
    assert stray == []


def test_messages_before_subscription_are_not_delivered(memory_bus) -> None:
    memory_bus.connect()
    memory_bus.publish("task-events", "early", b"{}")

    received: list[str] = []
    memory_bus.subscribe("task-events", "late", lambda m: received.append(m.key))
    memory_bus.publish("task-events", "late", b"{}")

    assert memory_bus.wait_idle(2.0)
    assert received == ["late"]


def test_handler_errors_do_not_stop_delivery(memory_bus) -> None:
    received: list[int] = []

    def handler(message):
        if message.offset == 0:
            raise RuntimeError("bad message")
        received.append(message.offset)

    memory_bus.subscribe("task-events", "g", handler)
    memory_bus.connect()
    for _ in range(3):
        memory_bus.publish("task-events", "same", b"{}")

    assert memory_bus.wait_idle(2.0)
    assert received == [1, 2]
    assert memory_bus.stats["handler_errors"] == 1


def test_duplicate_group_subscription_is_rejected(memory_bus) -> None:
    memory_bus.subscribe("task-events", "g", lambda m: None)
    with pytest.raises(ValueError):
        memory_bus.subscribe("task-events", "g", lambda m: None)


def test_unsubscribe_stops_delivery(memory_bus) -> None:
    received: list[str] = []
    memory_bus.subscribe("task-events", "g", lambda m: received.append(m.key))
    memory_bus.connect()

    assert memory_bus.unsubscribe("task-events", "g")
    assert not memory_bus.unsubscribe("task-events", "g")

    memory_bus.publish("task-events", "k", b"{}")
    assert memory_bus.wait_idle(1.0)
    assert received == []


def test_reconnect_restarts_delivery(memory_bus) -> None:
    delivered = threading.Event()
    memory_bus.subscribe("task-events", "g", lambda m: delivered.set())
    memory_bus.connect()
    memory_bus.disconnect()
    memory_bus.connect()

    memory_bus.publish("task-events", "k", b"{}")
    assert delivered.wait(2.0)


# ---------------------------------------------------------------- publisher


def test_publisher_without_bus_drops_and_logs(logger) -> None:
    publisher = EventPublisher(None, logger)
    task = Task("Ship", "m1")
    assert publisher.deadline_approaching(task) is False
    assert publisher.stats == {"published": 0, "dropped": 1, "failed": 0}


def test_publisher_uses_event_type_as_key(logger, clock) -> None:
    bus = RecordingEventBus()
    bus.connect()
    publisher = EventPublisher(bus, logger, task_topic="custom-topic", clock=clock)

    task = Task("Ship", "m1")
    assignee = User("Eli", "eli@example.com", "h")
    assert publisher.task_assigned(task, assignee, assignee)

    message = bus.messages[0]
    assert message.topic == "custom-topic"
    assert message.key == "TASK_ASSIGNED"
    stamp = bus.events[0]["timestamp"]
    assert stamp.endswith("Z")
    assert datetime.fromisoformat(stamp[:-1] + "+00:00") == clock().astimezone()


# ---------------------------------------------------------------- consumer


@pytest.fixture()
def consumer(store, logger) -> NotificationEventConsumer:
    return NotificationEventConsumer(RecordingEventBus(), NotificationDispatcher(store, logger), logger)


def test_consumer_subscribes_once_with_default_group(consumer) -> None:
    assert consumer.start()
    assert not consumer.start()
    assert consumer.bus.subscriptions == [("task-events", DEFAULT_GROUP_ID)]
    assert consumer.stop()
    assert not consumer.stop()


def test_consumer_turns_assignment_into_notification(consumer, store, employee, manager) -> None:
    consumer.handle_message(_message(EventType.TASK_ASSIGNED, {
        "taskId": "t1", "taskTitle": "Ship",
        "assigneeId": employee.id, "assigneeName": employee.name,
        "assignerId": manager.id, "assignerName": manager.name,
    }))

    notes, _ = store.notifications.find_all({"user_id": employee.id})
    assert len(notes) == 1
    assert notes[0].type == NotificationType.TASK_ASSIGNED
    assert notes[0].message == f'You have been assigned to task: "Ship" by {manager.name}'
    assert notes[0].metadata == {"taskId": "t1", "assignerId": manager.id}
    assert consumer.stats["handled"] == 1


def test_consumer_ignores_status_and_subtask_events(consumer, store, employee) -> None:
    consumer.handle_message(_message(EventType.TASK_STATUS_CHANGED, {
        "taskId": "t1", "taskTitle": "Ship", "previousStatus": "todo", "newStatus": "review",
        "changedById": employee.id, "changedByName": employee.name,
    }))
    consumer.handle_message(_message(EventType.SUBTASK_ADDED, {
        "subtaskId": "s1", "subtaskTitle": "a", "taskId": "t1", "taskTitle": "Ship",
        "createdById": employee.id, "createdByName": employee.name,
    }))

    assert store.notifications.count() == 0
    assert consumer.stats["handled"] == 0
    assert consumer.stats["ignored"] == 2
    assert consumer.stats["unknown"] == 0


def test_consumer_notifies_assignee_about_deadline(consumer, store, employee) -> None:
    consumer.handle_message(_message(EventType.DEADLINE_APPROACHING, {
        "taskId": "t1", "taskTitle": "Ship", "dueDate": "2024-03-02T12:00:00", "assigneeId": employee.id,
    }))

    notes, _ = store.notifications.find_all({"user_id": employee.id})
    assert [n.type for n in notes] == [NotificationType.DEADLINE_APPROACHING]
    assert notes[0].message == 'Task "Ship" is due on 2024-03-02T12:00:00'


def test_consumer_counts_unknown_and_broken_messages(consumer, store) -> None:
    consumer.handle_message(_message("TASK_ARCHIVED", {}))
    consumer.handle_message(BusMessage("task-events", 0, 1, "x", b"\xff not json"))

    assert consumer.stats == {"received": 2, "handled": 0, "ignored": 0, "unknown": 1, "errors": 1}
    assert store.notifications.count() == 0


def test_consumer_over_in_memory_bus(memory_bus, store, logger, employee, manager) -> None:
    consumer = NotificationEventConsumer(memory_bus, NotificationDispatcher(store, logger), logger)
    consumer.start()
    memory_bus.connect()

    publisher = EventPublisher(memory_bus, logger)
    task = Task("Ship", manager.id)
    assignee = store.users.find_by_id(employee.id)
    publisher.task_assigned(task, assignee, manager)

    assert memory_bus.wait_idle(2.0)
    assert store.notifications.count({"user_id": employee.id}) == 1

    consumer.stop()
