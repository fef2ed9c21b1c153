from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from learnhub.models.attempt import QuizAttempt, QuizResponse
from learnhub.models.quiz import Quiz, QuizAnswerOption, QuizQuestion, QuizScope
from learnhub.services.certificates import issue_certificate_if_missing
from learnhub.services.quiz_errors import (
    ConcurrentSubmission,
    IncompleteSubmission,
    InvalidAnswerOption,
    PersistenceFailure,
    QuizHasNoQuestions,
    QuizNotFound,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationResult:
    quiz_id: uuid.UUID
    attempt_id: uuid.UUID
    score: int
    passed: bool
    correct_count: int
    total_questions: int
    passing_score: int
    attempt_count: int
    certificate_number: str | None = None


@dataclass(frozen=True)
class GradedAnswer:
    question_id: uuid.UUID
    option_id: uuid.UUID
    is_correct: bool


def compute_score(correct_count: int, total_questions: int) -> int:
    """Integer percentage, rounded half up (2/3 -> 67, 1/8 -> 13)."""
    if total_questions <= 0:
        raise ValueError("total_questions must be positive")
    return (200 * int(correct_count) + int(total_questions)) // (2 * int(total_questions))


def _as_uuid(value) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def parse_answers(
    question_ids: Sequence[uuid.UUID],
    options_by_question: Mapping[uuid.UUID, set[uuid.UUID]],
    answers: Mapping[str, str],
) -> dict[uuid.UUID, uuid.UUID]:
    """Validate a raw ``question_id -> option_id`` map against the quiz.

    Exactly one answer per question is required; extra or unknown question ids
    count as an incomplete submission as well.
    """
    raw_by_question: dict[uuid.UUID, tuple[str, str]] = {}
    unknown_questions = 0
    for raw_qid, raw_oid in (answers or {}).items():
        qid = _as_uuid(raw_qid)
        if qid is None or qid not in options_by_question:
            unknown_questions += 1
            continue
        raw_by_question[qid] = (raw_qid, raw_oid)

    # Completeness first: a partial submission is incomplete whatever its options are.
    missing = [qid for qid in question_ids if qid not in raw_by_question]
    if missing or unknown_questions:
        raise IncompleteSubmission(
            f"answer every question exactly once ({len(missing)} missing, {unknown_questions} unknown)"
        )

    parsed: dict[uuid.UUID, uuid.UUID] = {}
    for qid, (raw_qid, raw_oid) in raw_by_question.items():
        oid = _as_uuid(raw_oid)
        if oid is None or oid not in options_by_question[qid]:
            raise InvalidAnswerOption(f"option {raw_oid} does not belong to question {raw_qid}")
        parsed[qid] = oid
    return parsed


def score_answers(
    question_ids: Sequence[uuid.UUID],
    correct_by_question: Mapping[uuid.UUID, set[uuid.UUID]],
    selected: Mapping[uuid.UUID, uuid.UUID],
) -> list[GradedAnswer]:
    graded: list[GradedAnswer] = []
    for qid in question_ids:
        oid = selected[qid]
        graded.append(GradedAnswer(question_id=qid, option_id=oid, is_correct=oid in correct_by_question.get(qid, set())))
    return graded


class AttemptEvaluator:
    """Grades one submission against the stored answer key and records it.

    The answer key is read here and nowhere on the learner-facing read path.
    ``before_commit`` runs inside the attempt transaction once the attempt and
    its responses are flushed, so follow-up writes (the retry/reset policy)
    commit or fail together with the attempt.
    """

    def __init__(self, db: Session):
        self.db = db

    def load_quiz(self, quiz_id: uuid.UUID) -> Quiz:
        quiz = self.db.scalar(select(Quiz).where(Quiz.id == quiz_id))
        if quiz is None:
            raise QuizNotFound()
        return quiz

    def _load_question_ids(self, quiz: Quiz) -> list[uuid.UUID]:
        return list(
            self.db.scalars(
                select(QuizQuestion.id)
                .where(QuizQuestion.quiz_id == quiz.id)
                .order_by(QuizQuestion.order_index, QuizQuestion.id)
            )
        )

    def _load_options(self, question_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, set[uuid.UUID]]:
        rows = self.db.execute(
            select(QuizAnswerOption.question_id, QuizAnswerOption.id).where(QuizAnswerOption.question_id.in_(question_ids))
        ).all()
        options: dict[uuid.UUID, set[uuid.UUID]] = {qid: set() for qid in question_ids}
        for qid, oid in rows:
            options[qid].add(oid)
        return options

    def _load_answer_key(self, question_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, set[uuid.UUID]]:
        rows = self.db.execute(
            select(QuizAnswerOption.question_id, QuizAnswerOption.id).where(
                QuizAnswerOption.question_id.in_(question_ids),
                QuizAnswerOption.is_correct == True,  # noqa: E712
            )
        ).all()
        key: dict[uuid.UUID, set[uuid.UUID]] = {}
        for qid, oid in rows:
            key.setdefault(qid, set()).add(oid)
        for qid in question_ids:
            if qid not in key:
                log.warning("question has no correct option, it can never be answered correctly: %s", qid)
        return key

    def count_attempts(self, *, quiz_id: uuid.UUID, user_id: uuid.UUID) -> int:
        return int(
            self.db.scalar(
                select(func.count(QuizAttempt.id)).where(QuizAttempt.quiz_id == quiz_id, QuizAttempt.user_id == user_id)
            )
            or 0
        )

    def evaluate(
        self,
        *,
        quiz_id: uuid.UUID,
        user_id: uuid.UUID,
        answers: Mapping[str, str],
        before_commit: Callable[[Quiz, EvaluationResult], None] | None = None,
    ) -> EvaluationResult:
        quiz = self.load_quiz(quiz_id)

        question_ids = self._load_question_ids(quiz)
        if not question_ids:
            raise QuizHasNoQuestions()

        options = self._load_options(question_ids)
        selected = parse_answers(question_ids, options, answers)

        key = self._load_answer_key(question_ids)
        graded = score_answers(question_ids, key, selected)

        total = len(graded)
        correct = sum(1 for g in graded if g.is_correct)
        score = compute_score(correct, total)
        passed = score >= int(quiz.passing_score)

        attempt_no = self.count_attempts(quiz_id=quiz.id, user_id=user_id) + 1
        attempt = QuizAttempt(
            quiz_id=quiz.id,
            user_id=user_id,
            attempt_no=attempt_no,
            score=score,
            passed=passed,
            correct_count=correct,
            total_questions=total,
        )
        try:
            self.db.add(attempt)
            self.db.flush()
            self.db.add_all(
                [
                    QuizResponse(attempt_id=attempt.id, question_id=g.question_id, option_id=g.option_id, is_correct=g.is_correct)
                    for g in graded
                ]
            )
            self.db.flush()

            result = EvaluationResult(
                quiz_id=quiz.id,
                attempt_id=attempt.id,
                score=score,
                passed=passed,
                correct_count=correct,
                total_questions=total,
                passing_score=int(quiz.passing_score),
                attempt_count=attempt_no,
            )
            if before_commit is not None:
                before_commit(quiz, result)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            log.warning("attempt write conflicted user=%s quiz=%s attempt_no=%s", user_id, quiz.id, attempt_no)
            raise ConcurrentSubmission() from e
        except SQLAlchemyError as e:
            self.db.rollback()
            log.exception("failed to persist quiz attempt user=%s quiz=%s", user_id, quiz.id)
            raise PersistenceFailure() from e
        except Exception:
            self.db.rollback()
            raise

        log.info(
            "quiz graded user=%s quiz=%s score=%s passed=%s attempt=%s",
            user_id,
            quiz.id,
            score,
            passed,
            attempt_no,
        )

        if passed and quiz.scope == QuizScope.course:
            number = self._issue_certificate_best_effort(user_id=user_id, course_id=quiz.course_id)
            if number is not None:
                result = replace(result, certificate_number=number)

        return result

    def _issue_certificate_best_effort(self, *, user_id: uuid.UUID, course_id: uuid.UUID) -> str | None:
        # The pass already stands; a failure here must not fail the grading response.
        try:
            cert = issue_certificate_if_missing(self.db, user_id=user_id, course_id=course_id)
            number = cert.certificate_number
            self.db.commit()
            return number
        except Exception:
            self.db.rollback()
            log.exception("certificate issuance failed user=%s course=%s", user_id, course_id)
            return None
