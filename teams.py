"""
Team coordination: creation with unique join codes, joining, and leaving with
leader succession.

Membership changes are single-document conditional updates so that concurrent
joins and leaves never act on a stale member list.
"""

import logging
import secrets
import string
from typing import Any, Callable, Dict, List, Optional, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import settings
from database import (
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
)
from errors import Conflict, NotFound, ResourceExhausted, ValidationError
from notifications import NotificationSink, get_notifier
from schemas import Role, Team
from security import Principal, require_role

logger = logging.getLogger("marketplace.teams")

CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_team_code(length: Optional[int] = None) -> str:
    length = length or settings.TEAM_CODE_LENGTH
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def create_team(
    db: Database,
    principal: Principal,
    name: str,
    notifier: Optional[NotificationSink] = None,
    code_factory: Callable[[], str] = generate_team_code,
) -> Dict[str, Any]:
    """
    Create a team led by ``principal``.

    The unique index on ``code`` decides collisions: a duplicate-key error on
    insert draws a new code, up to ``TEAM_CODE_MAX_ATTEMPTS`` times.
    """
    require_role(principal, Role.STUDENT)
    notifier = notifier or get_notifier()
    name = (name or "").strip()
    if not name:
        raise ValidationError("Team name is required", field="name")

    for attempt in range(1, settings.TEAM_CODE_MAX_ATTEMPTS + 1):
        code = code_factory()
        team = Team(name=name, code=code, leaderId=principal.id, members=[principal.id])
        try:
            team_id = create_document(db, TEAMS, team)
        except DuplicateKeyError:
            logger.warning("Team code collision on attempt %d (code=%s)", attempt, code)
            continue

        logger.info("Team %s created by %s with code %s", team_id, principal.id, code)
        notifier.publish("team.created", {"teamId": team_id, "userId": principal.id})
        return serialize_document(get_document(db, TEAMS, team_id, "Team"))

    raise ResourceExhausted(
        f"Could not generate a unique team code after {settings.TEAM_CODE_MAX_ATTEMPTS} attempts"
    )


def join_team(
    db: Database,
    principal: Principal,
    code: str,
    notifier: Optional[NotificationSink] = None,
) -> Dict[str, Any]:
    require_role(principal, Role.STUDENT)
    notifier = notifier or get_notifier()
    code = (code or "").strip().upper()

    team = find_and_update(
        db,
        TEAMS,
        {"code": code, "members": {"$ne": principal.id}},
        {"$push": {"members": principal.id}},
    )
    if team is None:
        if db[TEAMS].find_one({"code": code}, {"_id": 1}) is None:
            raise NotFound("Invalid team code", resource="team")
        raise Conflict("Already a member")

    team_id = str(team["_id"])
    logger.info("User %s joined team %s", principal.id, team_id)
    notifier.publish("team.joined", {"teamId": team_id, "userId": principal.id})
    return serialize_document(team)


def leave_team(
    db: Database,
    principal: Principal,
    team_id: str,
    notifier: Optional[NotificationSink] = None,
) -> Tuple[Optional[Dict[str, Any]], bool]:
    """
    Remove ``principal`` from the team.

    Returns ``(team, deleted)``. When the leader leaves, the earliest-joined
    remaining member takes over; when the last member leaves, the team is
    deleted. Each write is conditioned on the member list it was computed
    from and retried if another leave or join got there first.
    """
    require_role(principal, Role.STUDENT)
    notifier = notifier or get_notifier()
    oid = to_object_id(team_id, "Team")

    for _ in range(settings.LEAVE_MAX_ATTEMPTS):
        team = db[TEAMS].find_one({"_id": oid})
        if team is None:
            raise NotFound("Team not found", resource="team")

        members: List[str] = list(team.get("members", []))
        if principal.id not in members:
            raise Conflict("Not a member of this team")

        remaining = [m for m in members if m != principal.id]
        if not remaining:
            if delete_document(db, TEAMS, {"_id": oid, "members": members}):
                logger.info("Team %s deleted after last member %s left", team_id, principal.id)
                notifier.publish("team.deleted", {"teamId": team_id, "userId": principal.id})
                return None, True
            continue

        leader_id = team["leaderId"]
        new_leader = remaining[0] if leader_id == principal.id else leader_id
        updated = find_and_update(
            db,
            TEAMS,
            {"_id": oid, "members": members, "leaderId": leader_id},
            {"$set": {"members": remaining, "leaderId": new_leader}},
        )
        if updated is None:
            continue

        if new_leader != leader_id:
            logger.info("Leadership of team %s passed from %s to %s", team_id, leader_id, new_leader)
        notifier.publish(
            "team.left",
            {"teamId": team_id, "userId": principal.id, "leaderId": new_leader},
        )
        return serialize_document(updated), False

    raise Conflict("Team is being modified concurrently, please retry")


def resolve_team(db: Database, team: Dict[str, Any]) -> Dict[str, Any]:
    """Read-side join of members and leader to display fields."""
    out = serialize_document(team)
    people = lookup_display(db, USERS, out.get("members", []), ["name", "email"])
    out["members"] = [people.get(m, {"id": m, "name": None, "email": None}) for m in out.get("members", [])]
    out["leader"] = people.get(out.get("leaderId"))
    return out


def get_team(db: Database, team_id: str) -> Dict[str, Any]:
    return resolve_team(db, get_document(db, TEAMS, team_id, "Team"))


def list_teams_for_member(db: Database, principal: Principal) -> List[Dict[str, Any]]:
    teams = get_documents(db, TEAMS, {"members": principal.id}, sort=[("createdAt", 1)])
    return [resolve_team(db, t) for t in teams]
