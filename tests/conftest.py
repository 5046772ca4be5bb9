"""
Test configuration and fixtures.

The store is a mongomock database with the real indexes applied, so the
unique-key behaviour the coordination logic depends on is exercised.
"""
import functools
import os
import threading
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Callable, Dict, List

# Set before the application modules read their settings
os.environ["MONGODB_URI"] = ""
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-for-testing"
os.environ["LOG_LEVEL"] = "WARNING"

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app
from notifications import RecordingNotificationSink, get_notifier
from schemas import RubricItem, Role, SignupRequest, TaskCreate
from security import Principal
import tasks
import users


@pytest.fixture()
def db():
    database = mongomock.MongoClient()["marketplace_test"]
    ensure_indexes(database)
    return database


@pytest.fixture()
def notifier() -> RecordingNotificationSink:
    return RecordingNotificationSink()


# Writes a MongoDB server applies atomically per document
ATOMIC_WRITES = ("insert_one", "update_one", "find_one_and_update", "delete_one")


@pytest.fixture()
def atomic_store(monkeypatch) -> None:
    """
    Serialize single-document writes on every mongomock collection.

    mongomock checks unique indexes and update filters outside its own
    locks; a server does not. Interleavings between separate writes are
    left as they are.
    """
    lock = threading.RLock()

    def locked(method):
        @functools.wraps(method)
        def wrapper(*args, **kwargs):
            with lock:
                return method(*args, **kwargs)

        return wrapper

    for name in ATOMIC_WRITES:
        monkeypatch.setattr(mongomock.collection.Collection, name, locked(getattr(mongomock.collection.Collection, name)))


def run_concurrently(calls: List[Callable[[], Any]]) -> List[Any]:
    """Release all calls at once from their own threads; returns each result or raised exception."""
    barrier = threading.Barrier(len(calls))
    outcomes: List[Any] = [None] * len(calls)

    def worker(index: int, call: Callable[[], Any]) -> None:
        barrier.wait()
        try:
            outcomes[index] = call()
        except Exception as exc:
            outcomes[index] = exc

    threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


@pytest.fixture()
def make_principal(db) -> Callable[..., Principal]:
    """Create a stored user and return its principal."""
    counter = {"n": 0}

    def _make(name: str = "user", role: Role = Role.STUDENT) -> Principal:
        counter["n"] += 1
        user = users.signup(
            db,
            SignupRequest(
                name=name,
                email=f"{name.lower()}{counter['n']}@example.com",
                password="password123",
                role=role,
            ),
        )
        return Principal(id=user["id"], role=role)

    return _make


@pytest.fixture()
def mentor(make_principal) -> Principal:
    return make_principal("Mentor", Role.MENTOR)


@pytest.fixture()
def student(make_principal) -> Principal:
    return make_principal("Student", Role.STUDENT)


def task_body(**overrides) -> TaskCreate:
    data = {
        "title": "Build a REST API",
        "description": "CRUD service with tests",
        "deadline": datetime.now(timezone.utc) + timedelta(days=14),
        "tags": ["python", "api"],
        "rubric": [RubricItem(criteria="X", points=60), RubricItem(criteria="Y", points=40)],
    }
    data.update(overrides)
    return TaskCreate(**data)


@pytest.fixture()
def task(db, mentor, notifier) -> Dict:
    return tasks.create_task(db, mentor, task_body(totalPoints=100), notifier)


@pytest.fixture()
def client(db, notifier):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def register(client) -> Callable[..., SimpleNamespace]:
    """Sign up through the API and return bearer headers plus the user id."""
    counter = {"n": 0}

    def _register(name: str, role: str = "student") -> SimpleNamespace:
        counter["n"] += 1
        response = client.post(
            "/signup",
            json={
                "name": name,
                "email": f"{name.lower()}{counter['n']}@example.com",
                "password": "password123",
                "role": role,
            },
        )
        assert response.status_code == 200, response.text
        body = response.json()
        # requests below authenticate by header only
        client.cookies.clear()
        return SimpleNamespace(headers={"Authorization": f"Bearer {body['token']}"}, id=body["user"]["id"])

    return _register
