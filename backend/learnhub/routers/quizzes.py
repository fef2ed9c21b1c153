from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from learnhub.core.rate_limit import rate_limit
from learnhub.core.security import get_current_user
from learnhub.db.session import get_db
from learnhub.models.course import Course
from learnhub.models.quiz import Quiz, QuizAnswerOption, QuizQuestion
from learnhub.models.user import User
from learnhub.schemas.quiz import (
    QuizAttemptStatusResponse,
    QuizGradeByIdRequest,
    QuizGradeRequest,
    QuizGradeResponse,
    QuizPublicResponse,
)
from learnhub.services.access import can_access_course
from learnhub.services.attempts import QuizSubmissionService
from learnhub.services.quiz_errors import QuizError

router = APIRouter(prefix="/quizzes", tags=["quizzes"])


def _uuid(value: str, *, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"invalid {field}") from e


def _load_accessible_quiz(db: Session, user: User, quiz_id: str) -> Quiz:
    quiz = db.scalar(select(Quiz).where(Quiz.id == _uuid(quiz_id, field="quiz id")))
    if quiz is None:
        raise HTTPException(status_code=404, detail="quiz not found")
    course = db.scalar(select(Course).where(Course.id == quiz.course_id))
    if course is None or not can_access_course(db, user, course):
        raise HTTPException(status_code=404, detail="quiz not found")
    return quiz


@router.get("/{quiz_id}", response_model=QuizPublicResponse)
def get_quiz(quiz_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    quiz = _load_accessible_quiz(db, user, quiz_id)

    questions = db.scalars(
        select(QuizQuestion).where(QuizQuestion.quiz_id == quiz.id).order_by(QuizQuestion.order_index, QuizQuestion.id)
    ).all()

    # Display columns only: is_correct is never selected on this path.
    option_rows = db.execute(
        select(QuizAnswerOption.id, QuizAnswerOption.question_id, QuizAnswerOption.text, QuizAnswerOption.order_index)
        .where(QuizAnswerOption.question_id.in_([q.id for q in questions]))
        .order_by(QuizAnswerOption.order_index, QuizAnswerOption.id)
    ).all()
    options_by_question: dict[uuid.UUID, list[dict]] = {}
    for oid, qid, text, order_index in option_rows:
        options_by_question.setdefault(qid, []).append({"id": str(oid), "text": text, "order_index": int(order_index)})

    return {
        "id": str(quiz.id),
        "title": quiz.title,
        "scope": quiz.scope.value,
        "passing_score": int(quiz.passing_score),
        "course_id": str(quiz.course_id),
        "questions": [
            {
                "id": str(q.id),
                "prompt": q.prompt,
                "order_index": int(q.order_index),
                "options": options_by_question.get(q.id, []),
            }
            for q in questions
        ],
    }


@router.get("/{quiz_id}/status", response_model=QuizAttemptStatusResponse)
def quiz_status(quiz_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    quiz = _load_accessible_quiz(db, user, quiz_id)
    status = QuizSubmissionService(db).status(quiz=quiz, user_id=user.id)
    return {
        "quiz_id": str(status.quiz_id),
        "state": status.state,
        "attempts_used": status.attempts_used,
        "attempts_remaining": status.attempts_remaining,
        "max_attempts": status.max_attempts,
        "passed": status.passed,
        "best_score": status.best_score,
    }


def _grade(db: Session, user: User, quiz_id: str, answers: dict[str, str]) -> QuizGradeResponse:
    quiz = _load_accessible_quiz(db, user, quiz_id)

    try:
        outcome = QuizSubmissionService(db).submit(quiz_id=quiz.id, user_id=user.id, answers=answers)
    except QuizError as e:
        raise e.to_http() from e

    result = outcome.result
    return QuizGradeResponse(
        quiz_id=str(result.quiz_id),
        attempt_id=str(result.attempt_id),
        score=result.score,
        passed=result.passed,
        correct_count=result.correct_count,
        total_questions=result.total_questions,
        passing_score=result.passing_score,
        attempt_count=result.attempt_count,
        attempts_remaining=outcome.attempts_remaining,
        progress_reset=outcome.progress_reset,
        certificate_number=result.certificate_number,
    )


@router.post("/grade", response_model=QuizGradeResponse)
def grade_quiz(
    body: QuizGradeByIdRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="quiz_submit", limit=20, window_seconds=60),
):
    return _grade(db, user, body.quiz_id, body.answers)


@router.post("/{quiz_id}/submit", response_model=QuizGradeResponse)
def submit_quiz(
    quiz_id: str,
    body: QuizGradeRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="quiz_submit", limit=20, window_seconds=60),
):
    return _grade(db, user, quiz_id, body.answers)
