"""
Registration, login, email verification and the bearer-token gate.

Tokens are stateless: the signed payload is the only credential and nothing
about a session is stored server side.
"""
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple

from email_validator import EmailNotValidError, validate_email
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from config import Settings, get_settings
from database import create_document, to_object_id
from errors import (
    ConflictError,
    ForbiddenError,
    InvalidCredentialsError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
    WeakPasswordError,
)
from schemas import Role, User as UserSchema

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=10)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

PASSWORD_MIN_LENGTH = 8
PASSWORD_DENYLIST = {"123", "1234", "password", "12345678", "password1", "qwerty123"}
VERIFICATION_PURPOSE = "email_verification"


class CurrentUser(BaseModel):
    id: str
    name: str
    email: str
    role: Role


class VerificationOutcome(str, Enum):
    VERIFIED = "verified"
    ALREADY_VERIFIED = "already_verified"


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def normalize_email(email) -> str:
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("Email is required and must be a valid email address.")
    email = email.strip().lower()
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        raise ValidationError("Email is required and must be a valid email address.")
    return email


def password_policy_failures(password) -> list:
    if not isinstance(password, str):
        return ["password is required"]
    failures = []
    if len(password) < PASSWORD_MIN_LENGTH:
        failures.append(f"must be at least {PASSWORD_MIN_LENGTH} characters long")
    if not any(c.isupper() for c in password):
        failures.append("must contain an uppercase letter")
    if not any(c.islower() for c in password):
        failures.append("must contain a lowercase letter")
    if not any(c.isdigit() for c in password):
        failures.append("must contain a digit")
    if password.lower() in PASSWORD_DENYLIST:
        failures.append("is too common")
    return failures


def public_user(doc) -> dict:
    return {
        "id": str(doc["_id"]),
        "name": doc.get("name"),
        "email": doc.get("email"),
        "role": doc.get("role"),
        "is_email_verified": doc.get("is_email_verified", False),
    }


def register_user(db, name, email, password, role: Role) -> dict:
    """Validate and store a new account. Shared by every registration path."""
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Name is required and must be a non-empty string.")
    email = normalize_email(email)
    failures = password_policy_failures(password)
    if failures:
        raise WeakPasswordError(failures)
    if db["user"].find_one({"email": email}):
        raise ConflictError("Email already registered")

    user = UserSchema(
        name=name.strip(),
        email=email,
        password_hash=get_password_hash(password),
        role=role,
        is_email_verified=False,
    )
    user_id = create_document(db, "user", user)
    logger.info("Registered %s account %s", role.value, user_id)
    return public_user(db["user"].find_one({"_id": to_object_id(user_id)}))


def register_buyer(db, name, email, password) -> dict:
    return register_user(db, name, email, password, Role.buyer)


def register_admin(db, name, email, password) -> dict:
    return register_user(db, name, email, password, Role.admin)


def create_access_token(settings: Settings, user: dict) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role"),
        "iat": now,
        "exp": now + timedelta(minutes=settings.access_token_expire_minutes),
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def login(db, settings: Settings, email, password) -> str:
    email = normalize_email(email)
    user = db["user"].find_one({"email": email})
    if not user:
        raise NotFoundError("User not found")
    if not isinstance(password, str) or not verify_password(password, user.get("password_hash", "")):
        logger.warning("Failed login for user %s", user["_id"])
        raise InvalidCredentialsError("Invalid password")
    logger.info("User %s logged in", user["_id"])
    return create_access_token(settings, user)


def create_verification_token(settings: Settings, user: dict) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": str(user.get("_id", user.get("id"))),
        "email": user.get("email"),
        "purpose": VERIFICATION_PURPOSE,
        "iat": now,
        "exp": now + timedelta(minutes=settings.verification_token_expire_minutes),
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def verify_account(db, settings: Settings, token: Optional[str], requesting_user_id: str) -> Tuple[VerificationOutcome, dict]:
    if not token:
        raise UnauthorizedError("Verification token is missing")
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError:
        logger.warning("Expired verification token presented by %s", requesting_user_id)
        raise UnauthorizedError("Verification link has expired")
    except JWTError:
        logger.warning("Invalid verification token presented by %s", requesting_user_id)
        raise UnauthorizedError("Invalid verification link")

    if payload.get("purpose") != VERIFICATION_PURPOSE:
        raise UnauthorizedError("Invalid verification link")
    if payload.get("sub") != requesting_user_id:
        logger.warning("Verification token subject does not match user %s", requesting_user_id)
        raise UnauthorizedError("This verification link belongs to another account")

    user = db["user"].find_one({"_id": to_object_id(requesting_user_id, "user id")})
    if not user:
        raise NotFoundError("User not found")
    if payload.get("email") != user.get("email"):
        logger.warning("Verification token for user %s was issued to a previous email address", requesting_user_id)
        raise UnauthorizedError("This verification link is for a different email address")
    if user.get("is_email_verified"):
        return VerificationOutcome.ALREADY_VERIFIED, public_user(user)

    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"is_email_verified": True, "updated_at": datetime.now(timezone.utc)}},
    )
    user["is_email_verified"] = True
    logger.info("User %s verified their email address", requesting_user_id)
    return VerificationOutcome.VERIFIED, public_user(user)


def ensure_admin(db, settings: Settings) -> Optional[dict]:
    """Create the configured bootstrap admin unless that email already exists."""
    if not settings.admin_email or not settings.admin_password:
        return None
    email = normalize_email(settings.admin_email)
    if db["user"].find_one({"email": email}):
        return None
    admin = register_admin(db, settings.admin_name, email, settings.admin_password)
    logger.info("Bootstrap admin %s created", admin["id"])
    return admin


def get_current_user(token: Optional[str] = Depends(oauth2_scheme), settings: Settings = Depends(get_settings)) -> CurrentUser:
    if not token:
        raise UnauthorizedError("Unauthorized: No token provided")
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise UnauthorizedError("Could not validate credentials")
    try:
        return CurrentUser(id=payload["id"], name=payload["name"], email=payload["email"], role=payload["role"])
    except (KeyError, ValueError):
        raise UnauthorizedError("Could not validate credentials")


def require_roles(*roles: Role):
    allowed = {Role(r) for r in roles}

    def checker(current: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current.role not in allowed:
            raise ForbiddenError("You do not have permission to perform this action")
        return current

    return checker
