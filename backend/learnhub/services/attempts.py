from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass

import redis
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from learnhub.core.config import settings
from learnhub.core.redis_client import get_redis
from learnhub.models.attempt import QuizAttempt, QuizResponse
from learnhub.models.audit import LearningEvent, LearningEventType
from learnhub.models.course import Lesson
from learnhub.models.progress import LessonProgress
from learnhub.models.quiz import Quiz, QuizScope
from learnhub.services.grading import AttemptEvaluator, EvaluationResult
from learnhub.services.quiz_errors import ConcurrentSubmission, LessonsNotCompleted, QuizAlreadyPassed

log = logging.getLogger(__name__)


STATE_NOT_ATTEMPTED = "not_attempted"
STATE_ATTEMPT_FAILED = "attempt_failed"
STATE_PASSED = "passed"


@dataclass(frozen=True)
class AttemptStatus:
    quiz_id: uuid.UUID
    state: str
    attempts_used: int
    attempts_remaining: int
    max_attempts: int
    passed: bool
    best_score: int | None


@dataclass(frozen=True)
class SubmissionOutcome:
    result: EvaluationResult
    progress_reset: bool
    attempts_remaining: int


def scope_lesson_ids(db: Session, quiz: Quiz) -> list[uuid.UUID]:
    """Lessons whose completion a quiz covers: its lesson, its module, or the whole course."""
    scope = quiz.scope
    if scope == QuizScope.lesson:
        return [quiz.lesson_id]
    if scope == QuizScope.module:
        stmt = select(Lesson.id).where(Lesson.module_id == quiz.module_id)
    else:
        stmt = select(Lesson.id).where(Lesson.course_id == quiz.course_id)
    return list(db.scalars(stmt.order_by(Lesson.order_index)))


def completed_lesson_ids(db: Session, *, user_id: uuid.UUID, lesson_ids: list[uuid.UUID]) -> set[uuid.UUID]:
    if not lesson_ids:
        return set()
    return set(
        db.scalars(
            select(LessonProgress.lesson_id).where(
                LessonProgress.user_id == user_id,
                LessonProgress.lesson_id.in_(lesson_ids),
                LessonProgress.completed == True,  # noqa: E712
            )
        )
    )


def has_passed_attempt(
    db: Session, *, quiz_id: uuid.UUID, user_id: uuid.UUID, exclude_attempt_id: uuid.UUID | None = None
) -> bool:
    stmt = select(func.count(QuizAttempt.id)).where(
        QuizAttempt.quiz_id == quiz_id,
        QuizAttempt.user_id == user_id,
        QuizAttempt.passed == True,  # noqa: E712
    )
    if exclude_attempt_id is not None:
        stmt = stmt.where(QuizAttempt.id != exclude_attempt_id)
    return bool(db.scalar(stmt))


def reset_progress(db: Session, *, quiz: Quiz, user_id: uuid.UUID) -> int:
    """Drop every attempt of (user, quiz) and the completion of the lessons it covers.

    A passed quiz is never reset: raises :class:`QuizAlreadyPassed` instead.
    Does not commit. Returns the number of lesson progress rows removed.
    """
    if has_passed_attempt(db, quiz_id=quiz.id, user_id=user_id):
        raise QuizAlreadyPassed()

    attempt_ids = list(
        db.scalars(select(QuizAttempt.id).where(QuizAttempt.user_id == user_id, QuizAttempt.quiz_id == quiz.id))
    )
    if attempt_ids:
        db.execute(delete(QuizResponse).where(QuizResponse.attempt_id.in_(attempt_ids)))
        db.execute(delete(QuizAttempt).where(QuizAttempt.id.in_(attempt_ids)))

    lesson_ids = scope_lesson_ids(db, quiz)
    removed = 0
    if lesson_ids:
        res = db.execute(
            delete(LessonProgress).where(LessonProgress.user_id == user_id, LessonProgress.lesson_id.in_(lesson_ids))
        )
        removed = int(res.rowcount or 0)

    db.add(
        LearningEvent(
            user_id=user_id,
            type=LearningEventType.progress_reset,
            ref_id=quiz.id,
            meta=json.dumps(
                {"scope": quiz.scope.value, "attempts_removed": len(attempt_ids), "lessons_reset": removed},
                ensure_ascii=False,
            ),
        )
    )
    log.info("progress reset user=%s quiz=%s attempts=%s lessons=%s", user_id, quiz.id, len(attempt_ids), removed)
    return removed


class QuizSubmissionService:
    """Retry/reset policy around :class:`AttemptEvaluator`.

    - a passed quiz is terminal, further submissions are rejected;
    - the ``max_attempts``-th failure wipes the attempts and the covered
      lesson progress in the same transaction as the failing attempt;
    - submissions per (user, quiz) are serialized with a Redis lock.
    """

    def __init__(
        self,
        db: Session,
        *,
        max_attempts: int | None = None,
        requires_completed_lessons: bool | None = None,
    ):
        self.db = db
        self.evaluator = AttemptEvaluator(db)
        self.max_attempts = int(max_attempts if max_attempts is not None else settings.quiz_max_attempts)
        if requires_completed_lessons is None:
            requires_completed_lessons = bool(settings.quiz_requires_completed_lessons)
        self.requires_completed_lessons = requires_completed_lessons

    def _has_passed(self, *, quiz_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        return has_passed_attempt(self.db, quiz_id=quiz_id, user_id=user_id)

    def status(self, *, quiz: Quiz, user_id: uuid.UUID) -> AttemptStatus:
        used, best = self.db.execute(
            select(func.count(QuizAttempt.id), func.max(QuizAttempt.score)).where(
                QuizAttempt.quiz_id == quiz.id, QuizAttempt.user_id == user_id
            )
        ).one()
        used = int(used or 0)
        passed = self._has_passed(quiz_id=quiz.id, user_id=user_id)

        if passed:
            state = STATE_PASSED
            remaining = 0
        elif used:
            state = STATE_ATTEMPT_FAILED
            remaining = max(0, self.max_attempts - used)
        else:
            state = STATE_NOT_ATTEMPTED
            remaining = self.max_attempts

        return AttemptStatus(
            quiz_id=quiz.id,
            state=state,
            attempts_used=used,
            attempts_remaining=remaining,
            max_attempts=self.max_attempts,
            passed=passed,
            best_score=int(best) if best is not None else None,
        )

    def ensure_lessons_completed(self, *, quiz: Quiz, user_id: uuid.UUID) -> None:
        if not self.requires_completed_lessons:
            return
        lesson_ids = scope_lesson_ids(self.db, quiz)
        done = completed_lesson_ids(self.db, user_id=user_id, lesson_ids=lesson_ids)
        if len(done) < len(set(lesson_ids)):
            raise LessonsNotCompleted()

    def submit(self, *, quiz_id: uuid.UUID, user_id: uuid.UUID, answers: Mapping[str, str]) -> SubmissionOutcome:
        quiz = self.evaluator.load_quiz(quiz_id)

        lock = _SubmissionLock(user_id=user_id, quiz_id=quiz.id, ttl_seconds=int(settings.quiz_submit_lock_seconds))
        if not lock.acquire():
            raise ConcurrentSubmission()

        reset_done = False

        def _apply_policy(graded_quiz: Quiz, result: EvaluationResult) -> None:
            nonlocal reset_done
            # Another session may have committed a pass since the checks above.
            if has_passed_attempt(
                self.db, quiz_id=graded_quiz.id, user_id=user_id, exclude_attempt_id=result.attempt_id
            ):
                raise QuizAlreadyPassed()
            self.db.add(
                LearningEvent(
                    user_id=user_id,
                    type=LearningEventType.quiz_completed,
                    ref_id=graded_quiz.id,
                    meta=json.dumps({"score": result.score, "passed": result.passed}, ensure_ascii=False),
                )
            )
            if not result.passed and result.attempt_count >= self.max_attempts:
                reset_progress(self.db, quiz=graded_quiz, user_id=user_id)
                reset_done = True

        try:
            if self._has_passed(quiz_id=quiz.id, user_id=user_id):
                raise QuizAlreadyPassed()
            self.ensure_lessons_completed(quiz=quiz, user_id=user_id)

            result = self.evaluator.evaluate(
                quiz_id=quiz.id,
                user_id=user_id,
                answers=answers,
                before_commit=_apply_policy,
            )
        finally:
            lock.release()

        if result.passed:
            remaining = 0
        elif reset_done:
            remaining = self.max_attempts
        else:
            remaining = max(0, self.max_attempts - result.attempt_count)

        return SubmissionOutcome(result=result, progress_reset=reset_done, attempts_remaining=remaining)


class _SubmissionLock:
    def __init__(self, *, user_id: uuid.UUID, quiz_id: uuid.UUID, ttl_seconds: int):
        self.key = f"locks:quiz_submit:{user_id}:{quiz_id}"
        self.token = uuid.uuid4().hex
        self.ttl_seconds = max(1, int(ttl_seconds))
        self._held = False

    def acquire(self) -> bool:
        try:
            acquired = get_redis().set(self.key, self.token, nx=True, ex=self.ttl_seconds)
        except redis.RedisError:
            # The attempt_no unique constraint still rejects a racing duplicate.
            log.warning("submission lock skipped, redis unavailable", extra={"key": self.key})
            return True
        self._held = bool(acquired)
        return self._held

    def release(self) -> None:
        if not self._held:
            return
        try:
            r = get_redis()
            if r.get(self.key) == self.token:
                r.delete(self.key)
        except redis.RedisError:
            log.warning("submission lock release failed", extra={"key": self.key})
        finally:
            self._held = False
