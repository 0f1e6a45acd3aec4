"""
Authentication: Google sign-in, passwords, JWT sessions and magic links

Lawyers sign in with Google or email + password; clients sign in with a
one-time magic link delivered by SMS. Every successful sign-in ends in a
session JWT carrying the user's role.
"""

import os
import logging
import secrets
from typing import Optional
from datetime import datetime, timezone, timedelta

import jwt
from google.oauth2 import id_token
from google.auth.transport import requests as google_requests
from werkzeug.security import generate_password_hash, check_password_hash

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
SESSION_TOKEN_TYPE = "session"
MAGIC_LINK_TOKEN_TYPE = "magic_link"
MAGIC_LINK_EXPIRY_MINUTES = 60

PASSWORD_METHOD = "pbkdf2:sha256:600000"
MIN_PASSWORD_LENGTH = 8

ROLES = ("lawyer", "client")


def _get_google_client_id() -> str:
    val = os.getenv("GOOGLE_CLIENT_ID", "")
    if not val:
        raise RuntimeError(
            "GOOGLE_CLIENT_ID environment variable is not set. "
            "Set it in .env or as an environment variable."
        )
    return val


def _get_jwt_secret() -> str:
    val = os.getenv("JWT_SECRET", "")
    if not val:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate a random secret string and set it in .env or as an environment variable."
        )
    return val


def _get_jwt_expiry_hours() -> int:
    return int(os.getenv("JWT_EXPIRY_HOURS", "168"))  # 7 days default


def verify_google_token(token: str) -> Optional[dict]:
    """
    Verify a Google ID token and extract user info.

    Returns:
        Dict with google_sub, email, name, avatar_url if valid; None if invalid
    """
    try:
        idinfo = id_token.verify_oauth2_token(
            token, google_requests.Request(), _get_google_client_id()
        )

        if idinfo["iss"] not in ("accounts.google.com", "https://accounts.google.com"):
            logger.warning("Invalid issuer in Google token")
            return None

        return {
            "google_sub": idinfo["sub"],
            "email": idinfo.get("email", ""),
            "name": idinfo.get("name", ""),
            "avatar_url": idinfo.get("picture", ""),
        }
    except ValueError as e:
        logger.warning(f"Google token verification failed: {e}")
        return None


# =============================================================================
# Passwords
# =============================================================================

def hash_password(password: str) -> str:
    """Salted hash in werkzeug's `method$salt$hash` format."""
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return generate_password_hash(password, method=PASSWORD_METHOD)


def verify_password(password: str, stored: Optional[str]) -> bool:
    if not password or not stored:
        return False
    try:
        return check_password_hash(stored, password)
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


# =============================================================================
# Session and magic-link tokens
# =============================================================================

def create_session_jwt(user_id: str, email: str, name: str, role: str = "lawyer") -> str:
    """
    Create a JWT for session authentication.

    Args:
        user_id: The internal user UUID
        email: User's email
        name: User's display name
        role: "lawyer" or "client"

    Returns:
        Encoded JWT string
    """
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "name": name,
        "role": role,
        "type": SESSION_TOKEN_TYPE,
        "iat": now,
        "exp": now + timedelta(hours=_get_jwt_expiry_hours()),
    }
    return jwt.encode(payload, _get_jwt_secret(), algorithm=JWT_ALGORITHM)


def _decode(token: str, token_type: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, _get_jwt_secret(), algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.debug(f"{token_type} token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"{token_type} token invalid: {e}")
        return None
    if payload.get("type") != token_type:
        logger.debug(f"Token type mismatch: expected {token_type}, got {payload.get('type')}")
        return None
    return payload


def verify_session_jwt(token: str) -> Optional[dict]:
    """
    Verify a session JWT and extract user info.

    Returns:
        Dict with user_id, email, name, role if valid; None if invalid/expired
    """
    payload = _decode(token, SESSION_TOKEN_TYPE)
    if payload is None:
        return None
    return {
        "user_id": payload["sub"],
        "email": payload.get("email", ""),
        "name": payload.get("name", ""),
        "role": payload.get("role", "lawyer"),
    }


def create_magic_link_token(email: str, client_id: str, minutes: int = MAGIC_LINK_EXPIRY_MINUTES) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": client_id,
        "email": email,
        "type": MAGIC_LINK_TOKEN_TYPE,
        "jti": secrets.token_urlsafe(8),
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, _get_jwt_secret(), algorithm=JWT_ALGORITHM)


def verify_magic_link_token(token: str) -> Optional[dict]:
    """Returns {"client_id", "email", "jti"} for a valid, unexpired magic-link token.

    Single use is enforced by the caller, which records the jti.
    """
    payload = _decode(token, MAGIC_LINK_TOKEN_TYPE)
    if payload is None or not payload.get("jti"):
        return None
    return {"client_id": payload["sub"], "email": payload.get("email", ""), "jti": payload["jti"]}


def generate_invitation_token() -> str:
    return secrets.token_urlsafe(32)
