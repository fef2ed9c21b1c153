from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class QuizOptionPublic(BaseModel):
    id: str
    text: str
    order_index: int


class QuizQuestionPublic(BaseModel):
    id: str
    prompt: str
    order_index: int
    options: list[QuizOptionPublic]


class QuizPublicResponse(BaseModel):
    id: str
    title: str
    scope: str
    passing_score: int
    course_id: str
    questions: list[QuizQuestionPublic]


class QuizAttemptStatusResponse(BaseModel):
    quiz_id: str
    state: str
    attempts_used: int
    attempts_remaining: int
    max_attempts: int
    passed: bool
    best_score: int | None


class QuizGradeRequest(BaseModel):
    # question_id -> selected option_id
    answers: dict[str, str] = Field(default_factory=dict)


class QuizGradeByIdRequest(QuizGradeRequest):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    quiz_id: str


class QuizGradeResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    quiz_id: str
    attempt_id: str
    score: int
    passed: bool
    correct_count: int
    total_questions: int
    passing_score: int
    attempt_count: int
    attempts_remaining: int
    progress_reset: bool
    certificate_number: str | None = None
