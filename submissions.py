"""
Submission state machine: pending -> submitted -> reviewed.

Transitions are conditional updates keyed on the current status, so a
submission never moves backwards even when requests race. The unique
``(taskId, studentId)`` index is the only guard against double applications.
"""

import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import (
    SUBMISSIONS,
    TASKS,
    TEAMS,
    USERS,
    create_document,
    delete_document,
    find_and_update,
    get_document,
    get_documents,
    lookup_display,
    serialize_document,
    to_object_id,
    utcnow,
)
from errors import Conflict, Forbidden, NotFound, ValidationError
from notifications import NotificationSink, get_notifier
from schemas import EvaluateRequest, Role, Submission, SubmissionStatus, SubmitWorkRequest, TaskStatus
from security import Principal, require_role

logger = logging.getLogger("marketplace.submissions")

OPEN_STATUSES = [SubmissionStatus.PENDING.value, SubmissionStatus.SUBMITTED.value]


def _rollback_application(db: Database, submission_id: str) -> None:
    delete_document(db, SUBMISSIONS, {"_id": ObjectId(submission_id), "status": SubmissionStatus.PENDING.value})
    logger.warning("Rolled back application %s after failed counter update", submission_id)


def apply(
    db: Database,
    principal: Principal,
    task_id: str,
    team_id: Optional[str] = None,
    notifier: Optional[NotificationSink] = None,
) -> Dict[str, Any]:
    """
    Register ``principal`` as an applicant of the task.

    The insert goes first; only a successful insert bumps ``Task.applicants``
    (``$inc``), and a failed bump removes the insert again.

    The two writes are not a transaction. If the process dies after the
    insert and before the ``$inc``, the pending submission stays and the
    counter is one short. Nothing repairs that automatically; recount with
    ``count_documents({"taskId": ...})`` on the submissions collection.
    """
    require_role(principal, Role.STUDENT)
    notifier = notifier or get_notifier()

    task_oid = to_object_id(task_id, "Task")
    task = db[TASKS].find_one({"_id": task_oid}, {"status": 1})
    if task is None:
        raise NotFound("Task not found", resource="task")
    if task.get("status") != TaskStatus.ACTIVE.value:
        raise Conflict("Task is not accepting applications")

    if team_id:
        team = get_document(db, TEAMS, team_id, "Team")
        if principal.id not in team.get("members", []):
            raise Forbidden("You are not a member of this team")
        team_id = str(team["_id"])

    submission = Submission(
        taskId=str(task_oid),
        studentId=principal.id,
        teamId=team_id or None,
        status=SubmissionStatus.PENDING,
        appliedAt=utcnow(),
    )
    try:
        submission_id = create_document(db, SUBMISSIONS, submission)
    except DuplicateKeyError:
        raise Conflict("Already applied to this task")

    try:
        result = db[TASKS].update_one({"_id": task_oid}, {"$inc": {"applicants": 1}})
    except PyMongoError:
        _rollback_application(db, submission_id)
        raise
    if result.matched_count == 0:
        _rollback_application(db, submission_id)
        raise NotFound("Task not found", resource="task")

    if team_id:
        # first application under this team counts the team once
        db[TASKS].update_one(
            {"_id": task_oid, "teamIds": {"$ne": team_id}},
            {"$addToSet": {"teamIds": team_id}, "$inc": {"activeTeams": 1}},
        )

    logger.info("Student %s applied to task %s (submission %s)", principal.id, task_id, submission_id)
    notifier.publish(
        "submission.applied",
        {"submissionId": submission_id, "taskId": str(task_oid), "userId": principal.id},
    )
    return serialize_document(get_document(db, SUBMISSIONS, submission_id, "Submission"))


def submit_work(
    db: Database,
    principal: Principal,
    task_id: str,
    payload: SubmitWorkRequest,
    notifier: Optional[NotificationSink] = None,
) -> Dict[str, Any]:
    """Record work for an open submission; resubmission is allowed until review."""
    require_role(principal, Role.STUDENT)
    notifier = notifier or get_notifier()
    task_key = str(to_object_id(task_id, "Task"))

    updated = find_and_update(
        db,
        SUBMISSIONS,
        {"taskId": task_key, "studentId": principal.id, "status": {"$in": OPEN_STATUSES}},
        {
            "$set": {
                "githubUrl": payload.githubUrl,
                "demoUrl": payload.demoUrl,
                "driveLink": payload.driveLink,
                "notes": payload.notes,
                "status": SubmissionStatus.SUBMITTED.value,
                "submittedAt": utcnow(),
            }
        },
    )
    if updated is None:
        existing = db[SUBMISSIONS].find_one({"taskId": task_key, "studentId": principal.id}, {"status": 1})
        if existing is None:
            raise NotFound("Submission not found, apply to the task first", resource="submission")
        raise Conflict("Submission has already been reviewed")

    submission_id = str(updated["_id"])
    logger.info("Student %s submitted work for task %s", principal.id, task_key)
    notifier.publish(
        "submission.submitted",
        {"submissionId": submission_id, "taskId": task_key, "userId": principal.id},
    )
    return serialize_document(updated)


def _check_scores(scores: Dict[str, float], rubric: List[Dict[str, Any]]) -> Dict[str, float]:
    checked = {}
    for key, value in scores.items():
        try:
            index = int(key)
        except (TypeError, ValueError):
            raise ValidationError(f"Score key '{key}' is not a rubric index", field="scores")
        if rubric and not 0 <= index < len(rubric):
            raise ValidationError(f"Rubric index {index} out of range", field="scores")
        checked[str(index)] = value
    return checked


def evaluate(
    db: Database,
    principal: Principal,
    submission_id: str,
    evaluation: EvaluateRequest,
    notifier: Optional[NotificationSink] = None,
) -> Dict[str, Any]:
    require_role(principal, Role.MENTOR)
    notifier = notifier or get_notifier()

    submission = get_document(db, SUBMISSIONS, submission_id, "Submission")
    task = db[TASKS].find_one({"_id": to_object_id(submission["taskId"], "Task")}, {"mentorId": 1, "rubric": 1})
    if task is None:
        raise NotFound("Task not found", resource="task")
    if task.get("mentorId") != principal.id:
        raise Forbidden("Only the task owner can evaluate this submission")

    scores = _check_scores(evaluation.scores, task.get("rubric") or [])
    # totalScore is the mentor's call; a mismatch is only reported
    if scores and abs(sum(scores.values()) - evaluation.totalScore) > 1e-9:
        logger.warning(
            "Submission %s: totalScore %s differs from sum of scores %s",
            submission_id,
            evaluation.totalScore,
            sum(scores.values()),
        )

    updated = find_and_update(
        db,
        SUBMISSIONS,
        {"_id": submission["_id"], "status": SubmissionStatus.SUBMITTED.value},
        {
            "$set": {
                "scores": scores,
                "feedback": evaluation.feedback,
                "totalScore": evaluation.totalScore,
                "status": SubmissionStatus.REVIEWED.value,
                "reviewedAt": utcnow(),
            }
        },
    )
    if updated is None:
        current = db[SUBMISSIONS].find_one({"_id": submission["_id"]}, {"status": 1})
        if current is None:
            raise NotFound("Submission not found", resource="submission")
        raise Conflict(f"Cannot evaluate a submission in status '{current['status']}'")

    logger.info("Mentor %s reviewed submission %s (total %s)", principal.id, submission_id, evaluation.totalScore)
    notifier.publish(
        "submission.reviewed",
        {"submissionId": submission_id, "taskId": submission["taskId"], "userId": submission["studentId"]},
    )
    return serialize_document(updated)


def list_for_mentor(
    db: Database,
    principal: Principal,
    status: Optional[str] = SubmissionStatus.SUBMITTED.value,
) -> List[Dict[str, Any]]:
    """Submissions on the mentor's tasks; the review queue by default."""
    require_role(principal, Role.MENTOR)
    task_ids = [str(t["_id"]) for t in db[TASKS].find({"mentorId": principal.id}, {"_id": 1})]
    if not task_ids:
        return []

    filter_dict: Dict[str, Any] = {"taskId": {"$in": task_ids}}
    if status and status != "all":
        try:
            filter_dict["status"] = SubmissionStatus(status).value
        except ValueError:
            raise ValidationError(f"Unknown submission status '{status}'", field="status")

    submissions = get_documents(db, SUBMISSIONS, filter_dict, sort=[("appliedAt", 1)])
    students = lookup_display(db, USERS, [s["studentId"] for s in submissions], ["name", "email"])
    tasks = lookup_display(db, TASKS, [s["taskId"] for s in submissions], ["title", "rubric", "totalPoints"])
    teams = lookup_display(db, TEAMS, [s.get("teamId") for s in submissions], ["name"])

    out = []
    for sub in submissions:
        item = serialize_document(sub)
        item["student"] = students.get(sub["studentId"])
        item["task"] = tasks.get(sub["taskId"])
        item["team"] = teams.get(sub.get("teamId")) if sub.get("teamId") else None
        out.append(item)
    return out


def list_for_student(db: Database, principal: Principal) -> List[Dict[str, Any]]:
    require_role(principal, Role.STUDENT)
    submissions = get_documents(db, SUBMISSIONS, {"studentId": principal.id}, sort=[("appliedAt", -1)])
    tasks = lookup_display(
        db, TASKS, [s["taskId"] for s in submissions], ["title", "deadline", "totalPoints", "status", "tags"]
    )
    out = []
    for sub in submissions:
        item = serialize_document(sub)
        item["task"] = tasks.get(sub["taskId"])
        out.append(item)
    return out


def student_dashboard(db: Database, principal: Principal) -> Dict[str, Any]:
    submissions = list_for_student(db, principal)
    completed = [s for s in submissions if s["status"] == SubmissionStatus.REVIEWED.value]
    active = [s for s in submissions if s["status"] in OPEN_STATUSES]
    return {
        "stats": {
            "tasksCompleted": len(completed),
            "tasksActive": len(active),
        },
        "activeTasks": submissions,
    }
