"""
Sign-up, sign-in and session handling.

Sessions are opaque tokens stored in the ``sessions`` table. The HTTP layer
accepts them from the ``session_token`` cookie or an ``Authorization: Bearer``
header.
"""

from __future__ import annotations

import logging
import re
import secrets
import time
from typing import Optional

import bcrypt

from rewear.db import DbClient, SessionRecord, UserRecord
from rewear.errors import AuthError, BackendError, Conflict, ValidationError

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_BYTES = 72
DEFAULT_SESSION_TTL_HOURS = 24 * 7

INVALID_CREDENTIALS = "Invalid email or password"
DUPLICATE_EMAIL = "An account with this email already exists. Please sign in instead."


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email or ""))


def validate_password(password: str) -> tuple[bool, Optional[str]]:
    if not password:
        return False, "Password is required"
    if len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return False, f"Password must be at most {MAX_PASSWORD_BYTES} bytes"
    return True, None


def password_strength(password: str) -> int:
    """Score 0-100 in steps of 25: length >= 6, length >= 8, an uppercase letter, a digit."""
    strength = 0
    if len(password) >= 6:
        strength += 25
    if len(password) >= 8:
        strength += 25
    if re.search(r"[A-Z]", password):
        strength += 25
    if re.search(r"[0-9]", password):
        strength += 25
    return strength


def validate_signup(
    name: str,
    email: str,
    password: str,
    confirm_password: Optional[str] = None,
) -> dict[str, str]:
    """Return field -> message for every failing field (empty when valid)."""
    errors: dict[str, str] = {}

    name = (name or "").strip()
    if not name:
        errors["name"] = "Full name is required"
    elif len(name) < 2:
        errors["name"] = "Name must be at least 2 characters"
    elif len(name) > 50:
        errors["name"] = "Name must be at most 50 characters"

    if not (email or "").strip():
        errors["email"] = "Email is required"
    elif not is_valid_email(email.strip()):
        errors["email"] = "Please enter a valid email address"

    ok, message = validate_password(password)
    if not ok:
        errors["password"] = message

    if confirm_password is not None:
        if not confirm_password:
            errors["confirm_password"] = "Please confirm your password"
        elif confirm_password != password:
            errors["confirm_password"] = "Passwords do not match"

    return errors


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def _start_session(db: DbClient, user_id: str, ttl_hours: int) -> SessionRecord:
    now = time.time()
    session = SessionRecord(
        token=secrets.token_urlsafe(32),
        user_id=user_id,
        created_at=now,
        expires_at=now + ttl_hours * 3600,
    )
    return db.create_session(session)


def sign_up(
    db: DbClient,
    name: str,
    email: str,
    password: str,
    *,
    ttl_hours: int = DEFAULT_SESSION_TTL_HOURS,
) -> tuple[UserRecord, SessionRecord]:
    errors = validate_signup(name, email, password)
    if errors:
        field, message = next(iter(errors.items()))
        raise ValidationError(message, field=field)

    email = email.strip().lower()
    if db.get_user_by_email(email):
        raise Conflict(DUPLICATE_EMAIL)

    user = UserRecord(
        email=email,
        name=name.strip(),
        password_hash=hash_password(password),
        points=0,
    )
    try:
        db.create_user(user)
    except ValueError as exc:
        # Lost a race with a concurrent sign-up for the same address.
        raise Conflict(DUPLICATE_EMAIL) from exc
    except Exception as exc:
        logger.exception("auth.sign_up error: %s", exc)
        raise BackendError("Signup failed.") from exc

    session = _start_session(db, user.id, ttl_hours)
    logger.info("New user signed up: %s", user.id)
    return user, session


def sign_in(
    db: DbClient,
    email: str,
    password: str,
    *,
    ttl_hours: int = DEFAULT_SESSION_TTL_HOURS,
) -> tuple[UserRecord, SessionRecord]:
    if not (email or "").strip():
        raise ValidationError("Email is required", field="email")
    if not password:
        raise ValidationError("Password is required", field="password")

    user = db.get_user_by_email(email.strip())
    if not user or not verify_password(password, user.password_hash):
        raise AuthError(INVALID_CREDENTIALS)
    return user, _start_session(db, user.id, ttl_hours)


def sign_out(db: DbClient, token: Optional[str]) -> None:
    if not token:
        return
    try:
        db.delete_session(token)
    except Exception as exc:
        logger.exception("auth.sign_out error: %s", exc)
        raise BackendError("Failed to sign out.") from exc


def get_current_user(db: DbClient, token: Optional[str]) -> Optional[UserRecord]:
    if not token:
        return None
    session = db.get_session(token)
    if not session:
        return None
    if session.is_expired():
        db.delete_session(token)
        return None
    return db.get_user(session.user_id)


def get_user_profile(db: DbClient, user_id: str) -> Optional[dict]:
    try:
        user = db.get_user(user_id)
    except Exception as exc:
        logger.exception("auth.get_user_profile error: %s", exc)
        raise BackendError("Failed to fetch user profile.") from exc
    if not user:
        return None
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "avatar_url": user.avatar_url,
        "points": user.points,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }
