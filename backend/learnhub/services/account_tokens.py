from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from learnhub.core.config import settings
from learnhub.models.account_token import AccountToken, AccountTokenPurpose
from learnhub.models.user import User

log = logging.getLogger(__name__)

_LINK_PATHS = {
    AccountTokenPurpose.email_confirmation: "/confirm-email",
    AccountTokenPurpose.password_reset: "/password",
}


def _hash_token(raw: str) -> str:
    return hashlib.sha256(str(raw or "").encode("utf-8", errors="ignore")).hexdigest()


def issue_token(db: Session, *, user_id: uuid.UUID, purpose: AccountTokenPurpose, ttl: timedelta) -> str:
    """Store a new single-use token and return its raw value. Older open tokens of the
    same purpose stop working. Does not commit."""
    now = datetime.utcnow()
    db.execute(
        update(AccountToken)
        .where(
            AccountToken.user_id == user_id,
            AccountToken.purpose == purpose,
            AccountToken.consumed_at.is_(None),
        )
        .values(consumed_at=now)
    )
    raw = secrets.token_urlsafe(32)
    db.add(AccountToken(user_id=user_id, purpose=purpose, token_hash=_hash_token(raw), expires_at=now + ttl))
    return raw


def consume_token(db: Session, *, raw: str, purpose: AccountTokenPurpose) -> User | None:
    if not raw:
        return None
    now = datetime.utcnow()
    token = db.scalar(
        select(AccountToken).where(
            AccountToken.token_hash == _hash_token(raw),
            AccountToken.purpose == purpose,
            AccountToken.consumed_at.is_(None),
            AccountToken.expires_at > now,
        )
    )
    if token is None:
        return None
    token.consumed_at = now
    return db.scalar(select(User).where(User.id == token.user_id))


def account_link(purpose: AccountTokenPurpose, raw: str) -> str:
    base = str(settings.frontend_base_url or "").rstrip("/")
    return f"{base}{_LINK_PATHS[purpose]}?token={raw}"


def deliver(*, user: User, purpose: AccountTokenPurpose, raw: str) -> None:
    """Hand a link to the mail transport. Without one, development logs the link."""
    if (settings.app_env or "").strip().lower() in {"prod", "production"}:
        log.warning("no mail transport configured, %s link not sent user=%s", purpose.value, user.id)
        return
    log.info("%s link for user=%s: %s", purpose.value, user.id, account_link(purpose, raw))
