import pytest

import tasks
from errors import Forbidden, NotFound, ValidationError
from schemas import Role, TaskStatus
from tests.conftest import task_body


def test_create_task_initial_state(db, mentor, notifier) -> None:
    task = tasks.create_task(db, mentor, task_body(), notifier)

    assert task["status"] == "active"
    assert task["applicants"] == 0
    assert task["activeTeams"] == 0
    assert task["teamIds"] == []
    assert task["mentorId"] == mentor.id
    assert task["totalPoints"] == 100
    assert [r["criteria"] for r in task["rubric"]] == ["X", "Y"]
    assert notifier.names() == ["task.created"]


def test_create_task_requires_mentor(db, student) -> None:
    with pytest.raises(Forbidden):
        tasks.create_task(db, student, task_body())


def test_create_task_rejects_blank_title(db, mentor) -> None:
    with pytest.raises(ValidationError):
        tasks.create_task(db, mentor, task_body(title="   "))


def test_browse_lists_only_active(db, mentor) -> None:
    open_task = tasks.create_task(db, mentor, task_body(title="Open"))
    closed = tasks.create_task(db, mentor, task_body(title="Closed"))
    tasks.set_task_status(db, mentor, closed["id"], TaskStatus.CLOSED)

    listed = tasks.list_tasks(db)

    assert [t["id"] for t in listed] == [open_task["id"]]
    assert listed[0]["mentor"]["name"] == "Mentor"
    assert [t["id"] for t in tasks.list_tasks(db, status="closed")] == [closed["id"]]


def test_browse_by_tag(db, mentor) -> None:
    tasks.create_task(db, mentor, task_body(title="Py", tags=["python"]))
    tasks.create_task(db, mentor, task_body(title="Go", tags=["go"]))

    assert [t["title"] for t in tasks.list_tasks(db, tag="go")] == ["Go"]


def test_browse_unknown_status(db) -> None:
    with pytest.raises(ValidationError):
        tasks.list_tasks(db, status="archived")


def test_mentor_listing_includes_all_statuses(db, mentor, make_principal) -> None:
    other = make_principal("Other", Role.MENTOR)
    tasks.create_task(db, mentor, task_body(title="A"))
    draft = tasks.create_task(db, mentor, task_body(title="B"))
    tasks.set_task_status(db, mentor, draft["id"], TaskStatus.DRAFT)
    tasks.create_task(db, other, task_body(title="C"))

    mine = tasks.list_mentor_tasks(db, mentor)

    assert sorted(t["title"] for t in mine) == ["A", "B"]
    assert {t["status"] for t in mine} == {"active", "draft"}


def test_get_task(db, task) -> None:
    fetched = tasks.get_task(db, task["id"])
    assert fetched["title"] == task["title"]
    assert fetched["mentor"]["role"] == "mentor"

    with pytest.raises(NotFound):
        tasks.get_task(db, "0123456789abcdef01234567")
    with pytest.raises(NotFound):
        tasks.get_task(db, "garbage")


def test_only_owner_changes_status(db, task, make_principal) -> None:
    other = make_principal("Other", Role.MENTOR)

    with pytest.raises(Forbidden):
        tasks.set_task_status(db, other, task["id"], TaskStatus.CLOSED)
    with pytest.raises(NotFound):
        tasks.set_task_status(db, other, "0123456789abcdef01234567", TaskStatus.CLOSED)

    assert tasks.get_task(db, task["id"])["status"] == "active"
