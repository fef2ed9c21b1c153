import re
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from conftest import all_lesson_ids, complete_lessons, create_course, create_user
from learnhub.core.config import settings
from learnhub.db.session import SessionLocal
from learnhub.models.attempt import QuizAttempt
from learnhub.models.audit import LearningEvent, LearningEventType
from learnhub.models.certificate import Certificate
from learnhub.services import certificates as certificates_module
from learnhub.services import grading as grading_module
from learnhub.services.attempts import QuizSubmissionService
from learnhub.services.certificates import (
    CertificateIssueError,
    _to_base36,
    generate_certificate_number,
    issue_certificate_if_missing,
)

_NUMBER_RE = re.compile(r"^CERT-\d{4}-[0-9A-Z]{6}-[0-9A-Z]+$")


def _cert_count(db, user_id, course_id) -> int:
    return int(
        db.scalar(
            select(func.count(Certificate.id)).where(Certificate.user_id == user_id, Certificate.course_id == course_id)
        )
    )


def test_base36():
    assert _to_base36(0) == "0"
    assert _to_base36(35) == "Z"
    assert _to_base36(36) == "10"


def test_certificate_number_format():
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    number = generate_certificate_number(now)
    assert _NUMBER_RE.match(number)
    assert number.startswith("CERT-2026-")
    assert number.endswith(_to_base36(int(now.timestamp() * 1000)))


def test_certificate_numbers_differ():
    numbers = {generate_certificate_number() for _ in range(50)}
    assert len(numbers) == 50


def test_passing_final_exam_issues_one_certificate():
    course = create_course()
    user = create_user()
    complete_lessons(user.id, all_lesson_ids(course))
    quiz = course.final_quiz

    with SessionLocal() as db:
        outcome = QuizSubmissionService(db).submit(quiz_id=quiz.id, user_id=user.id, answers=quiz.answers())
        assert outcome.result.passed is True
        assert outcome.result.certificate_number
        assert _NUMBER_RE.match(outcome.result.certificate_number)

        again = issue_certificate_if_missing(db, user_id=user.id, course_id=course.id)
        db.commit()
        assert again.certificate_number == outcome.result.certificate_number
        assert _cert_count(db, user.id, course.id) == 1

        events = db.scalar(
            select(func.count(LearningEvent.id)).where(
                LearningEvent.user_id == user.id, LearningEvent.type == LearningEventType.certificate_issued
            )
        )
        assert events == 1


def test_failed_final_exam_issues_nothing():
    course = create_course()
    user = create_user()
    complete_lessons(user.id, all_lesson_ids(course))
    quiz = course.final_quiz

    with SessionLocal() as db:
        outcome = QuizSubmissionService(db).submit(quiz_id=quiz.id, user_id=user.id, answers=quiz.answers(1))
        assert outcome.result.certificate_number is None
        assert _cert_count(db, user.id, course.id) == 0


def test_module_quiz_pass_issues_nothing():
    course = create_course()
    user = create_user()
    complete_lessons(user.id, all_lesson_ids(course))
    quiz = course.module_quiz

    with SessionLocal() as db:
        outcome = QuizSubmissionService(db).submit(quiz_id=quiz.id, user_id=user.id, answers=quiz.answers())
        assert outcome.result.passed is True
        assert outcome.result.certificate_number is None
        assert _cert_count(db, user.id, course.id) == 0


def test_number_collision_is_retried(monkeypatch):
    course_a = create_course()
    course_b = create_course()
    user = create_user()

    with SessionLocal() as db:
        taken = issue_certificate_if_missing(db, user_id=user.id, course_id=course_a.id).certificate_number
        db.commit()

    numbers = iter([taken, "CERT-2026-FRESH1-ABC"])
    monkeypatch.setattr(certificates_module, "generate_certificate_number", lambda now=None: next(numbers))

    with SessionLocal() as db:
        cert = issue_certificate_if_missing(db, user_id=user.id, course_id=course_b.id)
        db.commit()
        assert cert.certificate_number == "CERT-2026-FRESH1-ABC"
        assert _cert_count(db, user.id, course_b.id) == 1


def test_number_collision_gives_up_after_retries(monkeypatch):
    course_a = create_course()
    course_b = create_course()
    user = create_user()

    with SessionLocal() as db:
        taken = issue_certificate_if_missing(db, user_id=user.id, course_id=course_a.id).certificate_number
        db.commit()

    monkeypatch.setattr(settings, "certificate_number_retries", 2)
    monkeypatch.setattr(certificates_module, "generate_certificate_number", lambda now=None: taken)

    with SessionLocal() as db:
        with pytest.raises(CertificateIssueError):
            issue_certificate_if_missing(db, user_id=user.id, course_id=course_b.id)
        db.rollback()
        assert _cert_count(db, user.id, course_b.id) == 0


def test_certificate_failure_does_not_fail_grading(monkeypatch):
    course = create_course()
    user = create_user()
    complete_lessons(user.id, all_lesson_ids(course))
    quiz = course.final_quiz

    def _broken(*args, **kwargs):
        raise CertificateIssueError("numbering service down")

    monkeypatch.setattr(grading_module, "issue_certificate_if_missing", _broken)

    with SessionLocal() as db:
        outcome = QuizSubmissionService(db).submit(quiz_id=quiz.id, user_id=user.id, answers=quiz.answers())
        assert outcome.result.passed is True
        assert outcome.result.certificate_number is None

        passed = db.scalar(
            select(func.count(QuizAttempt.id)).where(
                QuizAttempt.user_id == user.id, QuizAttempt.quiz_id == quiz.id, QuizAttempt.passed == True  # noqa: E712
            )
        )
        assert passed == 1
        assert _cert_count(db, user.id, course.id) == 0
