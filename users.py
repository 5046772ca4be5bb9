import logging
from typing import Any, Dict, Union

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import USERS, create_document, find_and_update, get_document, serialize_document, to_object_id
from errors import Conflict, NotFound, ValidationError
from schemas import MentorProfileUpdate, Role, SignupRequest, StudentProfileUpdate, User
from security import Principal, hash_password, require_role

logger = logging.getLogger("marketplace.users")

PRIVATE_FIELDS = ("passwordHash",)


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize_document(doc)
    for field in PRIVATE_FIELDS:
        out.pop(field, None)
    return out


def signup(db: Database, data: SignupRequest) -> Dict[str, Any]:
    email = data.email.strip().lower()
    if "@" not in email:
        raise ValidationError("Invalid email address", field="email")

    user = User(
        name=data.name.strip(),
        email=email,
        passwordHash=hash_password(data.password),
        role=data.role,
        githubUsername=data.githubUsername or "",
    )
    try:
        user_id = create_document(db, USERS, user)
    except DuplicateKeyError:
        raise Conflict("User already exists")

    logger.info("New %s account %s", user.role, user_id)
    return public_user(get_document(db, USERS, user_id, "User"))


def get_profile(db: Database, principal: Principal) -> Dict[str, Any]:
    return public_user(get_document(db, USERS, principal.id, "User"))


def update_profile(
    db: Database,
    principal: Principal,
    changes: Union[StudentProfileUpdate, MentorProfileUpdate],
) -> Dict[str, Any]:
    """Apply the fields that were sent; students and mentors have separate field sets."""
    require_role(principal, Role.STUDENT if isinstance(changes, StudentProfileUpdate) else Role.MENTOR)

    fields = changes.model_dump(exclude_none=True)
    if "name" in fields:
        fields["name"] = fields["name"].strip()
        if not fields["name"]:
            raise ValidationError("Name cannot be empty", field="name")
    if not fields:
        return get_profile(db, principal)

    updated = find_and_update(db, USERS, {"_id": to_object_id(principal.id, "User")}, {"$set": fields})
    if updated is None:
        raise NotFound("User not found", resource="user")
    logger.info("Profile of %s updated (%s)", principal.id, ", ".join(sorted(fields)))
    return public_user(updated)
