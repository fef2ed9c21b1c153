from __future__ import annotations

from pydantic import BaseModel


class CourseListItem(BaseModel):
    id: str
    title: str
    description: str | None
    is_published: bool


class CourseListResponse(BaseModel):
    items: list[CourseListItem]


class LessonItem(BaseModel):
    id: str
    title: str
    video_url: str | None
    duration_minutes: int
    order_index: int
    completed: bool
    quiz_id: str | None


class ModuleItem(BaseModel):
    id: str
    title: str
    description: str | None
    order_index: int
    quiz_id: str | None
    lessons: list[LessonItem]


class CourseDetailResponse(BaseModel):
    id: str
    title: str
    description: str | None
    total_minutes: int
    final_exam_quiz_id: str | None
    resume_lesson_id: str | None
    modules: list[ModuleItem]
    lessons: list[LessonItem]


class LessonDetailResponse(BaseModel):
    id: str
    course_id: str
    module_id: str | None
    title: str
    content: str
    video_url: str | None
    duration_minutes: int
    order_index: int
    completed: bool
    video_position_seconds: int
    quiz_id: str | None
