import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from database import (
    TASKS,
    USERS,
    create_document,
    find_and_update,
    get_document,
    get_documents,
    lookup_display,
    serialize_document,
    to_object_id,
)
from errors import Forbidden, NotFound, ValidationError
from notifications import NotificationSink, get_notifier
from schemas import Role, Task, TaskCreate, TaskStatus
from security import Principal, require_role

logger = logging.getLogger("marketplace.tasks")

DEFAULT_TOTAL_POINTS = 100


def create_task(
    db: Database,
    principal: Principal,
    data: TaskCreate,
    notifier: Optional[NotificationSink] = None,
) -> Dict[str, Any]:
    require_role(principal, Role.MENTOR)
    notifier = notifier or get_notifier()

    title = data.title.strip()
    description = data.description.strip()
    if not title:
        raise ValidationError("Title is required", field="title")
    if not description:
        raise ValidationError("Description is required", field="description")

    task = Task(
        title=title,
        description=description,
        deadline=data.deadline,
        totalPoints=data.totalPoints if data.totalPoints is not None else DEFAULT_TOTAL_POINTS,
        tags=[t.strip() for t in data.tags if t.strip()],
        rubric=data.rubric,
        mentorId=principal.id,
        status=TaskStatus.ACTIVE,
        applicants=0,
        activeTeams=0,
    )
    task_id = create_document(db, TASKS, task)
    logger.info("Task %s created by mentor %s", task_id, principal.id)
    notifier.publish("task.created", {"taskId": task_id, "mentorId": principal.id})
    return serialize_document(get_document(db, TASKS, task_id, "Task"))


def _attach_mentors(db: Database, tasks: List[Dict[str, Any]], fields: List[str]) -> List[Dict[str, Any]]:
    mentors = lookup_display(db, USERS, [t.get("mentorId") for t in tasks], fields)
    out = []
    for task in tasks:
        item = serialize_document(task)
        item["mentor"] = mentors.get(item.get("mentorId"))
        out.append(item)
    return out


def list_tasks(db: Database, status: Optional[str] = TaskStatus.ACTIVE.value, tag: Optional[str] = None) -> List[Dict[str, Any]]:
    """Browse view; active tasks only unless another status is asked for."""
    filter_dict: Dict[str, Any] = {}
    if status:
        try:
            filter_dict["status"] = TaskStatus(status).value
        except ValueError:
            raise ValidationError(f"Unknown task status '{status}'", field="status")
    if tag:
        filter_dict["tags"] = tag
    tasks = get_documents(db, TASKS, filter_dict, sort=[("createdAt", -1)])
    return _attach_mentors(db, tasks, ["name", "company"])


def list_mentor_tasks(db: Database, principal: Principal) -> List[Dict[str, Any]]:
    require_role(principal, Role.MENTOR)
    tasks = get_documents(db, TASKS, {"mentorId": principal.id}, sort=[("createdAt", -1)])
    return [serialize_document(t) for t in tasks]


def get_task(db: Database, task_id: str) -> Dict[str, Any]:
    task = get_document(db, TASKS, task_id, "Task")
    return _attach_mentors(db, [task], ["name", "company", "role"])[0]


def set_task_status(db: Database, principal: Principal, task_id: str, status: TaskStatus) -> Dict[str, Any]:
    require_role(principal, Role.MENTOR)
    oid = to_object_id(task_id, "Task")
    updated = find_and_update(
        db,
        TASKS,
        {"_id": oid, "mentorId": principal.id},
        {"$set": {"status": TaskStatus(status).value}},
    )
    if updated is None:
        if db[TASKS].find_one({"_id": oid}, {"_id": 1}) is None:
            raise NotFound("Task not found", resource="task")
        raise Forbidden("Only the task owner can change its status")
    logger.info("Task %s status set to %s by %s", task_id, updated["status"], principal.id)
    return serialize_document(updated)
