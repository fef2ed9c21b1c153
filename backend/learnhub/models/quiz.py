import enum
import uuid

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from learnhub.db.base import Base


class QuizScope(str, enum.Enum):
    lesson = "lesson"
    module = "module"
    course = "course"


class Quiz(Base):
    __tablename__ = "quizzes"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(300), default="")
    passing_score: Mapped[int] = mapped_column(Integer, default=70)

    lesson_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("lessons.id"), nullable=True, index=True)
    module_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("modules.id"), nullable=True, index=True)
    # Always set, so catalog queries can list every quiz of a course.
    course_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("courses.id"), index=True)
    is_final_exam: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        CheckConstraint("passing_score >= 0 AND passing_score <= 100", name="ck_quiz_passing_score"),
        CheckConstraint(
            "(CASE WHEN lesson_id IS NOT NULL THEN 1 ELSE 0 END)"
            " + (CASE WHEN module_id IS NOT NULL THEN 1 ELSE 0 END)"
            " + (CASE WHEN is_final_exam THEN 1 ELSE 0 END) = 1",
            name="ck_quiz_single_scope",
        ),
    )

    @classmethod
    def for_lesson(cls, *, course_id: uuid.UUID, lesson_id: uuid.UUID, passing_score: int = 70, title: str = "") -> "Quiz":
        return cls._build(course_id=course_id, lesson_id=lesson_id, passing_score=passing_score, title=title)

    @classmethod
    def for_module(cls, *, course_id: uuid.UUID, module_id: uuid.UUID, passing_score: int = 70, title: str = "") -> "Quiz":
        return cls._build(course_id=course_id, module_id=module_id, passing_score=passing_score, title=title)

    @classmethod
    def final_exam(cls, *, course_id: uuid.UUID, passing_score: int = 70, title: str = "") -> "Quiz":
        return cls._build(course_id=course_id, is_final_exam=True, passing_score=passing_score, title=title)

    @classmethod
    def _build(cls, *, course_id, passing_score, title, lesson_id=None, module_id=None, is_final_exam=False) -> "Quiz":
        if not 0 <= int(passing_score) <= 100:
            raise ValueError("passing_score must be between 0 and 100")
        quiz = cls(
            course_id=course_id,
            lesson_id=lesson_id,
            module_id=module_id,
            is_final_exam=bool(is_final_exam),
            passing_score=int(passing_score),
            title=title,
        )
        quiz.scope  # validates the scope pointers
        return quiz

    @property
    def scope(self) -> QuizScope:
        pointers = [
            (QuizScope.lesson, self.lesson_id is not None),
            (QuizScope.module, self.module_id is not None),
            (QuizScope.course, bool(self.is_final_exam)),
        ]
        set_scopes = [s for s, present in pointers if present]
        if len(set_scopes) != 1:
            raise ValueError("quiz must have exactly one of lesson_id, module_id or is_final_exam")
        return set_scopes[0]


class QuizQuestion(Base):
    __tablename__ = "quiz_questions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    quiz_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("quizzes.id"), index=True)
    prompt: Mapped[str] = mapped_column(String, default="")
    order_index: Mapped[int] = mapped_column(Integer, default=0)


class QuizAnswerOption(Base):
    __tablename__ = "quiz_answer_options"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    question_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("quiz_questions.id"), index=True)
    text: Mapped[str] = mapped_column(String, default="")
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)
