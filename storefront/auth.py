"""
Credentials, sessions and the admin gate.

Passwords are hashed with PBKDF2-SHA512 through passlib; each hash embeds its
own random salt and round count. Sessions are opaque random tokens. Only the
token's SHA-256 digest is stored, together with an explicit expiry, so a token
carries no user data and a leaked table does not leak live sessions.
"""
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Tuple

from passlib.context import CryptContext
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .config import get_settings
from .db import utcnow
from .utils import normalize_username
from .errors import (
    DuplicateEmail,
    DuplicateUsername,
    Forbidden,
    InternalError,
    InvalidCredentials,
    NotFound,
    Unauthenticated,
    ValidationError,
)

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["pbkdf2_sha512"],
    deprecated="auto",
    pbkdf2_sha512__rounds=get_settings().password_rounds,
)


@dataclass(frozen=True)
class Principal:
    id: int
    username: str
    is_admin: bool = False

    @classmethod
    def from_user(cls, user: models.User) -> "Principal":
        return cls(id=user.id, username=user.username, is_admin=bool(user.is_admin))


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# -------------------- Credential store --------------------

def get_user_by_username(db: Session, username: str) -> Optional[models.User]:
    username = normalize_username(username)
    return db.execute(select(models.User).where(models.User.username == username)).scalar_one_or_none()


def create_user(db: Session, username: str, email: str, raw_password: str) -> models.User:
    username = normalize_username(username)
    if not username:
        raise ValidationError("username is required", [{"field": "username", "value": username}])
    if get_user_by_username(db, username) is not None:
        raise DuplicateUsername(username)
    if db.execute(select(models.User.id).where(models.User.email == email)).first() is not None:
        raise DuplicateEmail(email)

    user = models.User(
        username=username,
        email=email,
        password_hash=hash_password(raw_password),
        is_admin=False,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        # Lost a race with a concurrent signup; report which field collided
        if get_user_by_username(db, username) is not None:
            raise DuplicateUsername(username) from e
        if db.execute(select(models.User.id).where(models.User.email == email)).first() is not None:
            raise DuplicateEmail(email) from e
        raise InternalError("could not create user") from e
    db.refresh(user)
    logger.info("Created user id=%s username=%s", user.id, user.username)
    return user


def verify_credentials(db: Session, username: str, raw_password: str) -> models.User:
    user = get_user_by_username(db, username)
    if user is None:
        # Spend the same work as a real check so timing does not reveal unknown usernames
        pwd_context.dummy_verify()
        raise InvalidCredentials()

    ok, new_hash = pwd_context.verify_and_update(raw_password, user.password_hash)
    if not ok:
        raise InvalidCredentials()
    if new_hash:
        user.password_hash = new_hash
        db.commit()
        logger.info("Upgraded password hash for user id=%s", user.id)
    return user


def promote_to_admin(db: Session, username: str) -> models.User:
    """Grant admin rights. Only called from the storefront-admin console script."""
    user = get_user_by_username(db, username)
    if user is None:
        raise NotFound("user not found", {"username": username})
    user.is_admin = True
    db.commit()
    db.refresh(user)
    logger.warning("Promoted user id=%s username=%s to admin", user.id, user.username)
    return user


# -------------------- Session manager --------------------

def create_session(db: Session, user: models.User, ttl_seconds: Optional[int] = None) -> str:
    ttl = ttl_seconds if ttl_seconds is not None else get_settings().session_ttl_seconds
    token = secrets.token_urlsafe(32)
    db.add(
        models.AuthSession(
            token_hash=_hash_token(token),
            user_id=user.id,
            expires_at=utcnow() + timedelta(seconds=ttl),
        )
    )
    db.commit()
    return token


def login(db: Session, username: str, raw_password: str, ttl_seconds: Optional[int] = None) -> Tuple[models.User, str]:
    try:
        user = verify_credentials(db, username, raw_password)
    except InvalidCredentials:
        logger.info("Failed login for username=%s", username)
        raise
    purge_expired_sessions(db)
    token = create_session(db, user, ttl_seconds)
    logger.info("User id=%s logged in", user.id)
    return user, token


def resolve_principal(db: Session, token: Optional[str]) -> Optional[Principal]:
    if not token:
        return None
    row = db.execute(
        select(models.AuthSession).where(models.AuthSession.token_hash == _hash_token(token))
    ).scalar_one_or_none()
    if row is None:
        return None
    if row.expires_at <= utcnow():
        db.delete(row)
        db.commit()
        return None
    return Principal.from_user(row.user)


def logout(db: Session, token: Optional[str]) -> None:
    if not token:
        return
    result = db.execute(
        delete(models.AuthSession).where(models.AuthSession.token_hash == _hash_token(token))
    )
    db.commit()
    if result.rowcount:
        logger.info("Session closed")


def purge_expired_sessions(db: Session) -> int:
    result = db.execute(delete(models.AuthSession).where(models.AuthSession.expires_at <= utcnow()))
    db.commit()
    return result.rowcount or 0


# -------------------- Authorization gate --------------------

def require_user(principal: Optional[Principal]) -> Principal:
    if principal is None:
        raise Unauthenticated()
    return principal


def require_admin(principal: Optional[Principal]) -> Principal:
    principal = require_user(principal)
    if not principal.is_admin:
        raise Forbidden()
    return principal
