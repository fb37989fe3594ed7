"""
Password reset tokens.

The raw token only ever exists in the email link. The user row stores its
SHA-256 hash and expiry; both columns are cleared together as soon as a token
is consumed or found expired, so a row holds either a complete token or none.
"""
import hashlib
import hmac
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from quimita import models

TOKEN_HASH_PREFIX = "sha256$"
PASSWORD_RESET_TTL_MINUTES = int(os.getenv("PASSWORD_RESET_TTL_MINUTES", "60"))


@dataclass(frozen=True)
class ResetToken:
    token_hash: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        expires_at = self.expires_at
        if expires_at.tzinfo is not None:
            expires_at = expires_at.astimezone(timezone.utc).replace(tzinfo=None)
        return expires_at <= now

    def matches(self, raw_token: str) -> bool:
        return hmac.compare_digest(hash_token(raw_token), self.token_hash)


def hash_token(token: str) -> str:
    """Return a deterministic hash suitable for storing reset tokens."""
    if not token:
        return ""
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
    return f"{TOKEN_HASH_PREFIX}{digest}"


def read_reset_token(user: models.User) -> Optional[ResetToken]:
    if not user.password_reset_token or user.password_reset_token_expires is None:
        return None
    return ResetToken(
        token_hash=user.password_reset_token,
        expires_at=user.password_reset_token_expires,
    )


def clear_reset_token(user: models.User) -> None:
    user.password_reset_token = None
    user.password_reset_token_expires = None


def issue_reset_token(user: models.User, ttl: Optional[timedelta] = None) -> str:
    """Attach a fresh token to ``user`` (caller commits) and return the raw value."""
    raw_token = secrets.token_urlsafe(32)
    user.password_reset_token = hash_token(raw_token)
    user.password_reset_token_expires = datetime.utcnow() + (ttl or timedelta(minutes=PASSWORD_RESET_TTL_MINUTES))
    return raw_token


def consume_reset_token(db: Session, raw_token: str) -> Optional[models.User]:
    """
    Redeem ``raw_token``.

    Returns the owning user when the token is valid. The stored token is
    cleared either way once it has been looked at, and the clearing is
    committed here even when the token turned out to be expired.
    """
    if not raw_token:
        return None

    user = db.query(models.User).filter(
        models.User.password_reset_token == hash_token(raw_token)
    ).first()
    if user is None:
        return None

    token = read_reset_token(user)
    clear_reset_token(user)
    if token is None or not token.matches(raw_token) or token.is_expired():
        db.commit()
        return None
    return user
