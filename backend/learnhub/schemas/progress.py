from __future__ import annotations

from pydantic import BaseModel, Field


class CertificateBrief(BaseModel):
    certificate_number: str
    issued_at: str


class CourseProgressResponse(BaseModel):
    course_id: str
    total_lessons: int
    completed_lessons: int
    percent: int
    passed_quiz_ids: list[str]
    final_exam_quiz_id: str | None
    final_passed: bool
    completed: bool
    certificate: CertificateBrief | None = None


class LessonCompleteResponse(BaseModel):
    ok: bool
    already_completed: bool
    certificate_number: str | None = None


class VideoProgressRequest(BaseModel):
    position_seconds: int = Field(ge=0)


class VideoProgressResponse(BaseModel):
    lesson_id: str
    video_position_seconds: int
    completed: bool
