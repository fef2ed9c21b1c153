from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class CourseCreateRequest(BaseModel):
    title: str
    description: str | None = None
    is_published: bool = True


class ModuleCreateRequest(BaseModel):
    course_id: str
    title: str
    description: str | None = None
    order_index: int = 0


class LessonCreateRequest(BaseModel):
    course_id: str
    module_id: str | None = None
    title: str
    content: str = ""
    video_url: str | None = None
    duration_minutes: int = Field(default=0, ge=0)
    order_index: int = 0


class OptionCreate(BaseModel):
    text: str
    is_correct: bool = False


class QuestionCreate(BaseModel):
    prompt: str
    options: list[OptionCreate] = Field(min_length=2)


class QuizCreateRequest(BaseModel):
    scope: Literal["lesson", "module", "course"]
    target_id: str  # lesson, module or course id depending on scope
    title: str = ""
    passing_score: int = Field(default=70, ge=0, le=100)
    questions: list[QuestionCreate] = Field(default_factory=list)


class CreatedResponse(BaseModel):
    id: str


class StatsResponse(BaseModel):
    total_users: int
    total_courses: int
    total_certificates: int


class MemberProgress(BaseModel):
    user_id: str
    name: str
    full_name: str | None
    completed_lessons: int
    total_lessons: int
    progress_percent: int
    certificates: int
    rank: int | None = None


class LeaderboardResponse(BaseModel):
    items: list[MemberProgress]


class GroupReportResponse(BaseModel):
    group_id: str
    name: str
    members: list[MemberProgress]


class ActivityLogItem(BaseModel):
    id: str
    source: str
    user_id: str | None
    user_name: str | None
    event_type: str
    ref_id: str | None
    meta: str | None
    created_at: str


class ActivityLogResponse(BaseModel):
    items: list[ActivityLogItem]


class GroupCreateRequest(BaseModel):
    name: str
    leader_id: str | None = None
    member_ids: list[str] = Field(default_factory=list)


class AnswerKeyOption(BaseModel):
    id: str
    text: str
    is_correct: bool


class AnswerKeyQuestion(BaseModel):
    id: str
    prompt: str
    options: list[AnswerKeyOption]


class AnswerKeyResponse(BaseModel):
    quiz_id: str
    passing_score: int
    questions: list[AnswerKeyQuestion]
