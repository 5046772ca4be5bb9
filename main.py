import logging
import time
from typing import Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
import submissions
import tasks
import teams
import users
from config import settings
from database import get_db
from errors import MarketplaceError, ValidationError
from logging_config import generate_request_id, set_request_id, setup_logging
from notifications import NotificationSink, get_notifier
from schemas import (
    ApplyRequest,
    CreateTeamRequest,
    EvaluateRequest,
    JoinTeamRequest,
    LoginRequest,
    MentorProfileUpdate,
    SignupRequest,
    StudentProfileUpdate,
    SubmitWorkRequest,
    TaskCreate,
    TaskStatusUpdate,
)
from security import (
    Principal,
    authenticate,
    create_access_token,
    get_current_principal,
    require_mentor,
    require_student,
)

setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
logger = logging.getLogger("marketplace")

app = FastAPI(title=settings.APP_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or generate_request_id()
    set_request_id(request_id)
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request_id
    logger.debug("%s %s -> %d (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


# ---------- Error envelope ----------

@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=ValidationError.status_code,
        content={"error": f"{location}: {message}" if location else message, "code": "VALIDATION_ERROR"},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    message = "Internal server error"
    if settings.DEBUG:
        message = f"{message}: {exc}"
    return JSONResponse(status_code=500, content={"error": message})


# ---------- Startup ----------

@app.on_event("startup")
def prepare_indexes():
    if database.db is None:
        logger.warning("Database not configured; skipping index setup.")
        return
    try:
        database.ensure_indexes(database.db)
    except Exception as e:
        # Keep serving; requests will surface store errors individually
        logger.error("Index setup failed: %s", str(e))


@app.on_event("shutdown")
def close_database():
    database.close_client()


def _set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        settings.AUTH_COOKIE_NAME,
        token,
        httponly=True,
        max_age=settings.ACCESS_TOKEN_EXPIRE_DAYS * 24 * 3600,
        samesite="lax",
    )


# ---------- Basic health/test ----------

@app.get("/")
def root():
    return {"message": f"{settings.APP_NAME} running"}


@app.get("/test")
def test_database():
    resp = {
        "backend": "running",
        "database": "connected" if database.db is not None else "not_configured",
        "collections": [],
    }
    try:
        if database.db is not None:
            resp["collections"] = database.db.list_collection_names()
    except Exception as e:
        resp["database"] = f"error: {str(e)[:120]}"
    return resp


# ---------- Authentication ----------

@app.post("/signup")
def signup(body: SignupRequest, response: Response, db: Database = Depends(get_db)):
    user = users.signup(db, body)
    token = create_access_token(Principal(id=user["id"], role=body.role))
    _set_auth_cookie(response, token)
    return {"success": True, "message": "Signup successful", "user": user, "token": token}


@app.post("/login")
def login(body: LoginRequest, response: Response, db: Database = Depends(get_db)):
    principal = authenticate(db, body.email, body.password, body.role)
    token = create_access_token(principal)
    _set_auth_cookie(response, token)
    user = users.get_profile(db, principal)
    return {"success": True, "message": "Login successful", "user": user, "token": token}


@app.get("/logout")
def logout(response: Response):
    response.delete_cookie(settings.AUTH_COOKIE_NAME)
    return {"success": True, "message": "Logged out successfully"}


# ---------- Profiles ----------

@app.get("/student/profile")
def student_profile(principal: Principal = Depends(require_student), db: Database = Depends(get_db)):
    return {"success": True, "user": users.get_profile(db, principal)}


@app.post("/student/profile/update")
def update_student_profile(
    body: StudentProfileUpdate,
    principal: Principal = Depends(require_student),
    db: Database = Depends(get_db),
):
    user = users.update_profile(db, principal, body)
    return {"success": True, "message": "Profile updated", "user": user}


@app.get("/student/dashboard")
def student_dashboard(principal: Principal = Depends(require_student), db: Database = Depends(get_db)):
    return {"success": True, **submissions.student_dashboard(db, principal)}


@app.get("/student/submissions")
def student_submissions(principal: Principal = Depends(require_student), db: Database = Depends(get_db)):
    return {"success": True, "submissions": submissions.list_for_student(db, principal)}


@app.get("/mentor/profile")
def mentor_profile(principal: Principal = Depends(require_mentor), db: Database = Depends(get_db)):
    return {"success": True, "user": users.get_profile(db, principal)}


@app.post("/mentor/profile/update")
def update_mentor_profile(
    body: MentorProfileUpdate,
    principal: Principal = Depends(require_mentor),
    db: Database = Depends(get_db),
):
    user = users.update_profile(db, principal, body)
    return {"success": True, "message": "Profile updated", "user": user}


# ---------- Tasks ----------

@app.get("/tasks")
def browse_tasks(
    tag: Optional[str] = None,
    _: Principal = Depends(get_current_principal),
    db: Database = Depends(get_db),
):
    return {"success": True, "tasks": tasks.list_tasks(db, tag=tag)}


@app.get("/tasks/{task_id}")
def task_detail(task_id: str, _: Principal = Depends(get_current_principal), db: Database = Depends(get_db)):
    return {"success": True, "task": tasks.get_task(db, task_id)}


@app.post("/tasks/{task_id}/apply")
def apply_to_task(
    task_id: str,
    body: Optional[ApplyRequest] = None,
    principal: Principal = Depends(require_student),
    db: Database = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    team_id = body.teamId if body else None
    submission = submissions.apply(db, principal, task_id, team_id, notifier)
    return {"success": True, "message": "Applied successfully", "submission": submission}


@app.post("/tasks/{task_id}/submit")
def submit_task(
    task_id: str,
    body: SubmitWorkRequest,
    principal: Principal = Depends(require_student),
    db: Database = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    submission = submissions.submit_work(db, principal, task_id, body, notifier)
    return {"success": True, "message": "Submitted successfully", "submission": submission}


# ---------- Mentor ----------

@app.post("/mentor/task/create")
def create_task(
    body: TaskCreate,
    principal: Principal = Depends(require_mentor),
    db: Database = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    task = tasks.create_task(db, principal, body, notifier)
    return {"success": True, "message": "Task created", "task": task}


@app.post("/mentor/task/{task_id}/status")
def change_task_status(
    task_id: str,
    body: TaskStatusUpdate,
    principal: Principal = Depends(require_mentor),
    db: Database = Depends(get_db),
):
    task = tasks.set_task_status(db, principal, task_id, body.status)
    return {"success": True, "message": "Task status updated", "task": task}


@app.get("/mentor/tasks")
def mentor_tasks(principal: Principal = Depends(require_mentor), db: Database = Depends(get_db)):
    return {"success": True, "tasks": tasks.list_mentor_tasks(db, principal)}


@app.get("/mentor/submissions")
def mentor_submissions(
    status: Optional[str] = "submitted",
    principal: Principal = Depends(require_mentor),
    db: Database = Depends(get_db),
):
    return {"success": True, "submissions": submissions.list_for_mentor(db, principal, status)}


@app.post("/mentor/evaluate/{submission_id}")
def evaluate_submission(
    submission_id: str,
    body: EvaluateRequest,
    principal: Principal = Depends(require_mentor),
    db: Database = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    submission = submissions.evaluate(db, principal, submission_id, body, notifier)
    return {"success": True, "message": "Evaluation submitted", "submission": submission}


# ---------- Teams ----------

@app.post("/team/create")
def create_team(
    body: CreateTeamRequest,
    principal: Principal = Depends(require_student),
    db: Database = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    team = teams.create_team(db, principal, body.name, notifier)
    return {"success": True, "message": "Team created", "team": team}


@app.post("/team/join")
def join_team(
    body: JoinTeamRequest,
    principal: Principal = Depends(require_student),
    db: Database = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    team = teams.join_team(db, principal, body.code, notifier)
    return {"success": True, "message": "Joined team successfully", "team": team}


@app.get("/team/mine")
def my_teams(principal: Principal = Depends(require_student), db: Database = Depends(get_db)):
    return {"success": True, "teams": teams.list_teams_for_member(db, principal)}


@app.get("/team/{team_id}")
def team_detail(team_id: str, _: Principal = Depends(get_current_principal), db: Database = Depends(get_db)):
    return {"success": True, "team": teams.get_team(db, team_id)}


@app.post("/team/{team_id}/leave")
def leave_team(
    team_id: str,
    principal: Principal = Depends(require_student),
    db: Database = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
):
    team, deleted = teams.leave_team(db, principal, team_id, notifier)
    if deleted:
        return {"success": True, "message": "Team deleted", "deleted": True}
    return {"success": True, "message": "Left team successfully", "deleted": False, "team": team}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
