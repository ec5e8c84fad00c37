from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

import schedule_editor.db as app_db
from schedule_editor.applier import next_order_index
from schedule_editor.models import ROLE_ADMIN, ROLE_SUPPORT, Activity, Day, Label, User, Week
from schedule_editor.notifications import NotificationEvent, get_dispatcher
from schedule_editor.security import hash_password
from schedule_editor.seed import seed_weeks

os.environ.setdefault("BOOTSTRAP_TOKEN", "test-bootstrap-token")

BOOTSTRAP_TOKEN = "test-bootstrap-token"
ADMIN_PASSWORD = "admin-password-123"
SUPPORT_PASSWORD = "support-password-123"


class RecordingDispatcher:
    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def dispatch(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [event.event for event in self.events]


class FailingDispatcher:
    def __init__(self) -> None:
        self.calls = 0

    def dispatch(self, event: NotificationEvent) -> None:
        self.calls += 1
        raise RuntimeError("webhook unreachable")


@pytest.fixture(autouse=True)
def reset_database(tmp_path, monkeypatch):
    db_file = tmp_path / "test_schedule.db"
    db_url = f"sqlite:///{db_file}"
    monkeypatch.setenv("DATABASE_URL", db_url)

    # Rebuild DB bindings per test so every test gets its own writable SQLite file.
    app_db.engine.dispose()
    app_db.DATABASE_URL = app_db.get_database_url()
    app_db.engine = app_db.build_engine(app_db.DATABASE_URL)
    app_db.SessionLocal = app_db.build_sessionmaker(app_db.engine)

    app_db.Base.metadata.drop_all(bind=app_db.engine)
    app_db.Base.metadata.create_all(bind=app_db.engine)
    yield
    app_db.Base.metadata.drop_all(bind=app_db.engine)
    app_db.engine.dispose()


@pytest.fixture
def db():
    session = app_db.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def weeks(db):
    return seed_weeks(db, 4)


@pytest.fixture
def admin(db):
    return make_user(db, "admin@example.com", "Avery Admin", ROLE_ADMIN, ADMIN_PASSWORD)


@pytest.fixture
def support(db):
    return make_user(db, "support@example.com", "Sam Support", ROLE_SUPPORT, SUPPORT_PASSWORD)


@pytest.fixture
def other_support(db):
    return make_user(db, "other@example.com", "Olive Other", ROLE_SUPPORT, SUPPORT_PASSWORD)


@pytest.fixture
def recorder():
    return RecordingDispatcher()


@pytest.fixture
def client(recorder):
    from schedule_editor.main import app

    app.dependency_overrides[get_dispatcher] = lambda: recorder
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def make_user(db, email: str, name: str, role: str, password: str) -> User:
    user = User(email=email, name=name, role=role, password_hash=hash_password(password), is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def day_of(db, week_number: int, day_name: str) -> Day:
    return db.scalar(
        select(Day).join(Week, Day.week_id == Week.id).where(Week.week_number == week_number, Day.day_name == day_name)
    )


def week_of(db, week_number: int) -> Week:
    return db.scalar(select(Week).where(Week.week_number == week_number))


def add_activity(db, week_number: int, day_name: str, time: str, description: str, period: str = "MORNING", order_index: int | None = None) -> Activity:
    day = day_of(db, week_number, day_name)
    if order_index is None:
        order_index = next_order_index(db, day.id, period)
    activity = Activity(day_id=day.id, time=time, description=description, period=period, order_index=order_index)
    activity.day = day
    db.add(activity)
    db.commit()
    db.refresh(activity)
    return activity


def add_label(db, name: str, color: str = "#3366FF") -> Label:
    label = Label(name=name, color=color)
    db.add(label)
    db.commit()
    db.refresh(label)
    return label


def login(client: TestClient, email: str, password: str):
    return client.post("/auth/login", json={"email": email, "password": password})
