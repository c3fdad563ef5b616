"""
Signed bearer tokens for the JSON API.

Access and refresh tokens are itsdangerous timed signatures over {"uid", "jti"} using the
app SECRET_KEY, with a distinct salt per kind so one can never be replayed as the other.
Refresh tokens are single-use: rotation and logout store them in `revoked_tokens`.
Password-reset / set-password links use the same mechanism with their own salt.
"""
from __future__ import annotations

import secrets
from datetime import datetime

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from app.lodgeflow.audit import record_event
from app.lodgeflow.models import RevokedToken, User

ACCESS_SALT = "lodgeflow.access"
REFRESH_SALT = "lodgeflow.refresh"
PASSWORD_SALT = "lodgeflow.password"
PASSWORD_TOKEN_MAX_AGE = 3600


class TokenError(ValueError):
    def __init__(self, message: str, status: int = 401):
        super().__init__(message)
        self.message = message
        self.status = status


def _serializer(salt: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=salt)


def _sign(user: User, salt: str) -> str:
    return _serializer(salt).dumps({"uid": user.id, "jti": secrets.token_hex(8)})


def _load(token: str, salt: str, max_age: int) -> int:
    try:
        data = _serializer(salt).loads(token, max_age=max_age)
    except SignatureExpired as e:
        raise TokenError("Token has expired") from e
    except BadSignature as e:
        raise TokenError("Token is invalid") from e
    uid = data.get("uid") if isinstance(data, dict) else None
    if not isinstance(uid, int):
        raise TokenError("Token is invalid")
    return uid


def issue_token_pair(user: User) -> dict[str, str]:
    return {"access": _sign(user, ACCESS_SALT), "refresh": _sign(user, REFRESH_SALT)}


def verify_access(token: str) -> int:
    return _load(token, ACCESS_SALT, int(current_app.config.get("ACCESS_TOKEN_TTL_SECONDS") or 900))


def verify_refresh(token: str) -> int:
    return _load(token, REFRESH_SALT, int(current_app.config.get("REFRESH_TOKEN_TTL_SECONDS") or 604800))


def is_revoked(s: Session, token: str) -> bool:
    return s.query(RevokedToken.id).filter(RevokedToken.token == token).first() is not None


def revoke(s: Session, refresh: str) -> int:
    """Blacklist a refresh token (logout). Returns the user id it belonged to."""
    uid = verify_refresh(refresh)
    if not is_revoked(s, refresh):
        s.add(RevokedToken(token=refresh, revoked_at=datetime.utcnow()))
    return uid


def rotate_refresh(s: Session, refresh: str) -> tuple[User, dict[str, str]]:
    if is_revoked(s, refresh):
        raise TokenError("Token has been revoked", 401)
    uid = verify_refresh(refresh)
    user = s.get(User, uid)
    if not user or not user.is_active:
        raise TokenError("User not found", 404)
    s.add(RevokedToken(token=refresh, revoked_at=datetime.utcnow()))
    record_event(s, actor=user, action="auth.token_refresh", entity_type="User", entity_id=str(user.id))
    return user, issue_token_pair(user)


def make_password_token(user: User) -> str:
    # Bound to the current hash so a link stops working once the password changes.
    return _serializer(PASSWORD_SALT).dumps({"uid": user.id, "ph": user.password_hash[-12:]})


def load_password_token(s: Session, token: str) -> User:
    try:
        data = _serializer(PASSWORD_SALT).loads(token, max_age=PASSWORD_TOKEN_MAX_AGE)
    except SignatureExpired as e:
        raise TokenError("This link has expired. Please request a new one.", 400) from e
    except BadSignature as e:
        raise TokenError("This link is invalid.", 400) from e
    user = s.get(User, data.get("uid")) if isinstance(data, dict) else None
    if not user or user.password_hash[-12:] != data.get("ph"):
        raise TokenError("This link is invalid.", 400)
    return user
