# tests/conftest.py

from __future__ import annotations

from typing import Callable

import pytest

from taskpro.config.settings import SystemSettings, reset_global_settings
from taskpro.core.access_policy import AccessPolicy
from taskpro.core.event_publisher import EventPublisher
from taskpro.core.identity import Principal
from taskpro.core.logger import ProjectLogger
from taskpro.core.manager import TaskManagementSystem
from taskpro.core.notification_manager import NotificationDispatcher
from taskpro.core.task_lifecycle import TaskLifecycleManager
from taskpro.models import Project, Team, User, UserRole
from taskpro.storage.data_store import DataStore

from .fakes import FakeClock, InlineSideEffectQueue, RecordingEventBus


@pytest.fixture(autouse=True)
def _fresh_global_settings():
    reset_global_settings()
    yield
    reset_global_settings()


@pytest.fixture()
def settings() -> SystemSettings:
    """
    In-memory settings, isolated from the process environment.

    Password hashing is cheapened so auth tests stay fast.
    """
    s = SystemSettings(env={})
    s.database.persist_to_disk = False
    s.logging.enable_file_output = False
    s.security.token_secret = "test-secret"
    s.security.password_hash_iterations = 1000
    return s


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> DataStore:
    return DataStore()


@pytest.fixture()
def logger() -> ProjectLogger:
    return ProjectLogger(max_entries_in_memory=500)


@pytest.fixture()
def bus() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture()
def make_user(store: DataStore) -> Callable[..., Principal]:
    """Insert a user straight into the store and return its Principal."""

    def _make(name: str, role: str = UserRole.EMPLOYEE, team_id: str | None = None,
              email: str | None = None) -> Principal:
        user = User(name, email or f"{name.lower().replace(' ', '.')}@example.com", "unused", role)
        user.team_id = team_id
        store.users.create(user)
        return Principal.from_user(user)

    return _make


@pytest.fixture()
def team(store: DataStore) -> Team:
    t = Team("Platform")
    store.teams.create(t)
    return t


@pytest.fixture()
def manager(make_user, team: Team) -> Principal:
    return make_user("Mia Manager", UserRole.MANAGER, team.id)


@pytest.fixture()
def employee(make_user, team: Team) -> Principal:
    return make_user("Eli Employee", UserRole.EMPLOYEE, team.id)


@pytest.fixture()
def other_employee(make_user, team: Team) -> Principal:
    return make_user("Oda Other", UserRole.EMPLOYEE, team.id)


@pytest.fixture()
def project(store: DataStore, team: Team, manager: Principal) -> Project:
    p = Project("Launch", team.id, manager.id)
    store.projects.create(p)
    return p


@pytest.fixture()
def side_effects(logger: ProjectLogger) -> InlineSideEffectQueue:
    return InlineSideEffectQueue(logger)


@pytest.fixture()
def lifecycle(store, logger, bus, side_effects, clock) -> TaskLifecycleManager:
    """
    Lifecycle manager with inline side effects and a connected recording bus.
    """
    bus.connect()
    policy = AccessPolicy()
    return TaskLifecycleManager(
        store,
        policy,
        NotificationDispatcher(store, logger, policy),
        EventPublisher(bus, logger, clock=clock),
        side_effects,
        logger,
        clock=clock,
    )


@pytest.fixture()
def system(settings, store, logger, bus):
    """
    Fully wired facade on the in-memory store.

    Side effects run on the real background queue; call system.flush()
    before asserting on notifications or events.
    """
    s = TaskManagementSystem(settings=settings, data_store=store, logger=logger, event_bus=bus)
    s.start()
    yield s
    s.stop()
