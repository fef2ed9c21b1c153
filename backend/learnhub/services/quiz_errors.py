from __future__ import annotations

from fastapi import HTTPException


class QuizError(Exception):
    status_code = 400
    error_code = "quiz_error"
    default_message = "quiz request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_http(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={"error_code": self.error_code, "error_message": self.message},
        )


class QuizNotFound(QuizError):
    status_code = 404
    error_code = "quiz_not_found"
    default_message = "quiz not found"


class QuizHasNoQuestions(QuizError):
    error_code = "quiz_has_no_questions"
    default_message = "quiz has no questions"


class IncompleteSubmission(QuizError):
    error_code = "incomplete_submission"
    default_message = "answer every question exactly once"


class InvalidAnswerOption(QuizError):
    error_code = "invalid_answer_option"
    default_message = "selected option does not belong to the question"


class LessonsNotCompleted(QuizError):
    status_code = 403
    error_code = "lessons_not_completed"
    default_message = "complete the covered lessons before taking this quiz"


class QuizAlreadyPassed(QuizError):
    status_code = 409
    error_code = "quiz_already_passed"
    default_message = "quiz already passed"


class ConcurrentSubmission(QuizError):
    status_code = 409
    error_code = "submission_in_progress"
    default_message = "another submission for this quiz is being graded"


class PersistenceFailure(QuizError):
    status_code = 500
    error_code = "persistence_failure"
    default_message = "failed to save attempt, please resubmit"
