import uuid

import pytest
from sqlalchemy import func, select

from conftest import add_quiz, create_course, create_user
from learnhub.db.session import SessionLocal
from learnhub.models.attempt import QuizAttempt, QuizResponse
from learnhub.models.quiz import Quiz
from learnhub.services.grading import AttemptEvaluator, compute_score, parse_answers
from learnhub.services.quiz_errors import (
    ConcurrentSubmission,
    IncompleteSubmission,
    InvalidAnswerOption,
    QuizHasNoQuestions,
    QuizNotFound,
)


@pytest.mark.parametrize(
    "correct,total,expected",
    [(2, 3, 67), (1, 3, 33), (3, 4, 75), (1, 8, 13), (1, 2, 50), (0, 5, 0), (5, 5, 100), (7, 10, 70)],
)
def test_compute_score_rounds_half_up(correct, total, expected):
    assert compute_score(correct, total) == expected


def test_compute_score_rejects_empty_quiz():
    with pytest.raises(ValueError):
        compute_score(0, 0)


def _quiz_shape():
    q1, q2 = uuid.uuid4(), uuid.uuid4()
    o1a, o1b, o2a = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    return [q1, q2], {q1: {o1a, o1b}, q2: {o2a}}, (q1, q2, o1a, o1b, o2a)


def test_parse_answers_accepts_one_answer_per_question():
    question_ids, options, (q1, q2, o1a, _, o2a) = _quiz_shape()
    parsed = parse_answers(question_ids, options, {str(q1): str(o1a), str(q2): str(o2a)})
    assert parsed == {q1: o1a, q2: o2a}


def test_parse_answers_missing_question_is_incomplete():
    question_ids, options, (q1, _, o1a, _, _) = _quiz_shape()
    with pytest.raises(IncompleteSubmission):
        parse_answers(question_ids, options, {str(q1): str(o1a)})


def test_parse_answers_unknown_question_is_incomplete():
    question_ids, options, (q1, q2, o1a, _, o2a) = _quiz_shape()
    answers = {str(q1): str(o1a), str(q2): str(o2a), str(uuid.uuid4()): str(o2a)}
    with pytest.raises(IncompleteSubmission):
        parse_answers(question_ids, options, answers)


def test_parse_answers_garbage_question_id_is_incomplete():
    question_ids, options, (q1, q2, o1a, _, o2a) = _quiz_shape()
    with pytest.raises(IncompleteSubmission):
        parse_answers(question_ids, options, {str(q1): str(o1a), str(q2): str(o2a), "not-a-uuid": "x"})


def test_parse_answers_partial_submission_with_bad_option_is_incomplete():
    question_ids, options, (q1, _, _, _, o2a) = _quiz_shape()
    with pytest.raises(IncompleteSubmission):
        parse_answers(question_ids, options, {str(q1): str(o2a)})


def test_parse_answers_option_from_other_question_is_rejected():
    question_ids, options, (q1, q2, o1a, o1b, _) = _quiz_shape()
    with pytest.raises(InvalidAnswerOption):
        parse_answers(question_ids, options, {str(q1): str(o1a), str(q2): str(o1b)})


def test_evaluate_all_correct_scores_100_and_persists_responses():
    course = create_course(questions=4)
    user = create_user()

    with SessionLocal() as db:
        result = AttemptEvaluator(db).evaluate(
            quiz_id=course.module_quiz.id, user_id=user.id, answers=course.module_quiz.answers()
        )
        assert result.score == 100
        assert result.passed is True
        assert result.correct_count == 4
        assert result.total_questions == 4
        assert result.attempt_count == 1
        assert result.certificate_number is None

        n = db.scalar(select(func.count(QuizResponse.id)).where(QuizResponse.attempt_id == result.attempt_id))
        assert n == 4


def test_evaluate_partial_score_below_threshold_fails():
    course = create_course(questions=3, passing_score=70)
    user = create_user()

    with SessionLocal() as db:
        result = AttemptEvaluator(db).evaluate(
            quiz_id=course.module_quiz.id, user_id=user.id, answers=course.module_quiz.answers(2)
        )
    assert result.score == 67
    assert result.passed is False
    assert result.passing_score == 70


def test_evaluate_threshold_is_inclusive():
    course = create_course(questions=4, passing_score=75)
    user = create_user()

    with SessionLocal() as db:
        result = AttemptEvaluator(db).evaluate(
            quiz_id=course.module_quiz.id, user_id=user.id, answers=course.module_quiz.answers(3)
        )
    assert result.score == 75
    assert result.passed is True


def test_incomplete_submission_persists_nothing():
    course = create_course(questions=3)
    user = create_user()
    answers = course.module_quiz.answers()
    answers.pop(next(iter(answers)))

    with SessionLocal() as db:
        with pytest.raises(IncompleteSubmission):
            AttemptEvaluator(db).evaluate(quiz_id=course.module_quiz.id, user_id=user.id, answers=answers)
        n = db.scalar(select(func.count(QuizAttempt.id)).where(QuizAttempt.user_id == user.id))
    assert n == 0


def test_unknown_quiz_raises_not_found():
    user = create_user()
    with SessionLocal() as db:
        with pytest.raises(QuizNotFound):
            AttemptEvaluator(db).evaluate(quiz_id=uuid.uuid4(), user_id=user.id, answers={})


def test_quiz_without_questions_is_rejected():
    course = create_course(module_quiz=False, lesson_quiz=False, final_exam=False)
    user = create_user()
    with SessionLocal() as db:
        empty = add_quiz(db, Quiz.for_module(course_id=course.id, module_id=course.module_id), questions=0)
        db.commit()
        with pytest.raises(QuizHasNoQuestions):
            AttemptEvaluator(db).evaluate(quiz_id=empty.id, user_id=user.id, answers={})


def test_failing_follow_up_write_rolls_back_the_attempt():
    course = create_course()
    user = create_user()

    def _boom(quiz, result):
        raise RuntimeError("policy failed")

    with SessionLocal() as db:
        with pytest.raises(RuntimeError):
            AttemptEvaluator(db).evaluate(
                quiz_id=course.module_quiz.id,
                user_id=user.id,
                answers=course.module_quiz.answers(),
                before_commit=_boom,
            )
        n = db.scalar(select(func.count(QuizAttempt.id)).where(QuizAttempt.user_id == user.id))
    assert n == 0


def test_duplicate_attempt_number_is_reported_as_concurrent_submission(monkeypatch):
    course = create_course()
    user = create_user()

    with SessionLocal() as db:
        evaluator = AttemptEvaluator(db)
        evaluator.evaluate(quiz_id=course.module_quiz.id, user_id=user.id, answers=course.module_quiz.answers(0))

        # A racing request that counted attempts before the first one committed.
        monkeypatch.setattr(evaluator, "count_attempts", lambda **kw: 0)
        with pytest.raises(ConcurrentSubmission):
            evaluator.evaluate(quiz_id=course.module_quiz.id, user_id=user.id, answers=course.module_quiz.answers(0))

        n = db.scalar(select(func.count(QuizAttempt.id)).where(QuizAttempt.user_id == user.id))
    assert n == 1
