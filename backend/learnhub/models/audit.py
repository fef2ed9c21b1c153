import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from learnhub.db.base import Base


class LearningEventType(str, enum.Enum):
    course_viewed = "course_viewed"
    lesson_completed = "lesson_completed"
    quiz_completed = "quiz_completed"
    progress_reset = "progress_reset"
    certificate_issued = "certificate_issued"


class LearningEvent(Base):
    """Learner activity feed.

    ``ref_id`` points at the course, lesson or quiz the event is about.
    ``meta`` is free text: JSON for quiz and reset events, the certificate
    number for ``certificate_issued``.
    """

    __tablename__ = "learning_events"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), index=True)

    type: Mapped[LearningEventType] = mapped_column(Enum(LearningEventType), index=True)
    ref_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)

    meta: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (Index("ix_learning_events_user_created", "user_id", "created_at"),)
