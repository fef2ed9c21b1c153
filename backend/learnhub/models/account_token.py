import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from learnhub.db.base import Base


class AccountTokenPurpose(str, enum.Enum):
    email_confirmation = "email_confirmation"
    password_reset = "password_reset"


class AccountToken(Base):
    """Single-use link token for e-mail confirmation and password reset.

    Only the sha256 of the token is stored. A token is spent once
    ``consumed_at`` is set.
    """

    __tablename__ = "account_tokens"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), index=True)
    purpose: Mapped[AccountTokenPurpose] = mapped_column(Enum(AccountTokenPurpose), index=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
