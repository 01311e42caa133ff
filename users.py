import logging
from datetime import datetime, timezone
from typing import Optional

from auth import normalize_email, public_user, verify_password
from database import to_object_id
from errors import ConflictError, InvalidCredentialsError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def get_profile(db, user_id: str) -> dict:
    user = db["user"].find_one({"_id": to_object_id(user_id, "user id")})
    if not user:
        raise NotFoundError("User not found")
    return public_user(user)


def update_profile(db, user_id: str, name: Optional[str], email: Optional[str], current_password: Optional[str]):
    """Change name and/or email after re-checking the current password.

    Returns the updated projection and whether the email address changed,
    in which case the account is unverified again.
    """
    if not current_password:
        raise ValidationError("Password is required to update your profile info")

    user = db["user"].find_one({"_id": to_object_id(user_id, "user id")})
    if not user:
        raise NotFoundError("User not found")
    if not verify_password(current_password, user.get("password_hash", "")):
        raise InvalidCredentialsError("Incorrect password!")

    changes = {}
    if name is not None:
        if not name.strip():
            raise ValidationError("Name must be a non-empty string.")
        changes["name"] = name.strip()

    email_changed = False
    if email is not None:
        email = normalize_email(email)
        if email != user["email"]:
            if db["user"].find_one({"email": email, "_id": {"$ne": user["_id"]}}):
                raise ConflictError("Email already exists")
            changes["email"] = email
            changes["is_email_verified"] = False
            email_changed = True

    if changes:
        changes["updated_at"] = datetime.now(timezone.utc)
        db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
        user.update(changes)
        logger.info("User %s updated profile fields %s", user_id, sorted(k for k in changes if k != "updated_at"))
    return public_user(user), email_changed


def list_users(db) -> list:
    cursor = db["user"].find({}).sort([("created_at", -1), ("_id", -1)])
    return [public_user(u) for u in cursor]
