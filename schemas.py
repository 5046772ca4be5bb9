from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Collections:
# - users
# - tasks
# - teams
# - submissions


class Role(str, Enum):
    STUDENT = "student"
    MENTOR = "mentor"


class TaskStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    DRAFT = "draft"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"


# ---------- Stored documents ----------

class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., description="Unique, stored lower-cased")
    passwordHash: str
    role: Role = Role.STUDENT
    bio: str = ""
    githubUrl: str = ""
    linkedinUrl: str = ""
    # student
    skills: List[str] = Field(default_factory=list)
    education: str = ""
    githubUsername: str = ""
    # mentor
    company: str = ""
    jobRole: str = ""
    expertise: List[str] = Field(default_factory=list)
    yearsOfExperience: str = ""


class RubricItem(BaseModel):
    criteria: str = Field(..., min_length=1)
    points: float = Field(..., ge=0)


class Task(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    title: str
    description: str
    deadline: datetime
    totalPoints: float = 100
    tags: List[str] = Field(default_factory=list)
    mentorId: str
    status: TaskStatus = TaskStatus.ACTIVE
    applicants: int = 0
    activeTeams: int = 0
    teamIds: List[str] = Field(default_factory=list, description="Distinct teams with an application")
    rubric: List[RubricItem] = Field(default_factory=list)


class Team(BaseModel):
    name: str
    code: str = Field(..., description="Unique join code, uppercase alphanumeric")
    leaderId: str
    members: List[str] = Field(..., min_length=1, description="Join order; leader always included")


class Submission(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    taskId: str
    studentId: str
    teamId: Optional[str] = None
    githubUrl: str = ""
    demoUrl: str = ""
    driveLink: str = ""
    notes: str = ""
    status: SubmissionStatus = SubmissionStatus.PENDING
    scores: Dict[str, float] = Field(default_factory=dict, description="Rubric index -> score")
    feedback: str = ""
    totalScore: float = 0
    appliedAt: datetime
    submittedAt: Optional[datetime] = None
    reviewedAt: Optional[datetime] = None


# ---------- Request bodies ----------

class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=6)
    role: Role = Role.STUDENT
    githubUsername: Optional[str] = ""


class LoginRequest(BaseModel):
    email: str
    password: str
    role: Role


class StudentProfileUpdate(BaseModel):
    name: Optional[str] = None
    bio: Optional[str] = None
    skills: Optional[List[str]] = None
    education: Optional[str] = None
    githubUrl: Optional[str] = None
    linkedinUrl: Optional[str] = None


class MentorProfileUpdate(BaseModel):
    name: Optional[str] = None
    bio: Optional[str] = None
    company: Optional[str] = None
    jobRole: Optional[str] = None
    expertise: Optional[List[str]] = None
    yearsOfExperience: Optional[str] = None
    githubUrl: Optional[str] = None
    linkedinUrl: Optional[str] = None


class TaskCreate(BaseModel):
    title: str
    description: str
    deadline: datetime
    totalPoints: Optional[float] = Field(default=None, ge=0)
    tags: List[str] = Field(default_factory=list)
    rubric: List[RubricItem] = Field(default_factory=list)


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class ApplyRequest(BaseModel):
    teamId: Optional[str] = None


class SubmitWorkRequest(BaseModel):
    githubUrl: str = ""
    demoUrl: str = ""
    driveLink: str = ""
    notes: str = ""


class EvaluateRequest(BaseModel):
    scores: Dict[str, float] = Field(default_factory=dict)
    feedback: str = ""
    totalScore: float = 0


class CreateTeamRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)


class JoinTeamRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=16)
