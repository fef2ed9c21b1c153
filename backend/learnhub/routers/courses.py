from __future__ import annotations

import json
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from learnhub.core.rate_limit import rate_limit
from learnhub.core.security import get_current_user
from learnhub.db.session import get_db
from learnhub.models.audit import LearningEvent, LearningEventType
from learnhub.models.course import Course, Lesson
from learnhub.models.progress import LessonProgress
from learnhub.models.quiz import Quiz
from learnhub.models.user import User
from learnhub.schemas.course import CourseDetailResponse, CourseListResponse, LessonDetailResponse
from learnhub.schemas.progress import LessonCompleteResponse, VideoProgressRequest, VideoProgressResponse
from learnhub.services.access import accessible_courses, can_access_course
from learnhub.services.learning import LearningService

router = APIRouter(tags=["courses"])


def _uuid(value: str, *, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"invalid {field}") from e


def _accessible_course(db: Session, user: User, course_id: uuid.UUID) -> Course:
    course = db.scalar(select(Course).where(Course.id == course_id))
    # Hidden courses look missing rather than forbidden.
    if course is None or not can_access_course(db, user, course):
        raise HTTPException(status_code=404, detail="course not found")
    return course


def _accessible_lesson(db: Session, user: User, lesson_id: str) -> Lesson:
    lesson = db.scalar(select(Lesson).where(Lesson.id == _uuid(lesson_id, field="lesson_id")))
    if lesson is None:
        raise HTTPException(status_code=404, detail="lesson not found")
    _accessible_course(db, user, lesson.course_id)
    return lesson


@router.get("/courses", response_model=CourseListResponse)
def list_courses(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {
        "items": [
            {"id": str(c.id), "title": c.title, "description": c.description, "is_published": bool(c.is_published)}
            for c in accessible_courses(db, user)
        ]
    }


@router.get("/courses/{course_id}", response_model=CourseDetailResponse)
def get_course(course_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    course = _accessible_course(db, user, _uuid(course_id, field="course_id"))
    detail = LearningService(db).get_course_detail(user, course)

    db.add(
        LearningEvent(
            user_id=user.id,
            type=LearningEventType.course_viewed,
            ref_id=course.id,
            meta=json.dumps({"title": course.title}, ensure_ascii=False),
        )
    )
    db.commit()
    return detail


@router.get("/lessons/{lesson_id}", response_model=LessonDetailResponse)
def get_lesson(lesson_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    lesson = _accessible_lesson(db, user, lesson_id)
    progress = db.scalar(
        select(LessonProgress).where(LessonProgress.user_id == user.id, LessonProgress.lesson_id == lesson.id)
    )
    quiz_id = db.scalar(select(Quiz.id).where(Quiz.lesson_id == lesson.id))
    return {
        "id": str(lesson.id),
        "course_id": str(lesson.course_id),
        "module_id": str(lesson.module_id) if lesson.module_id else None,
        "title": lesson.title,
        "content": lesson.content,
        "video_url": lesson.video_url,
        "duration_minutes": int(lesson.duration_minutes or 0),
        "order_index": int(lesson.order_index),
        "completed": bool(progress and progress.completed),
        "video_position_seconds": int(progress.video_position_seconds) if progress else 0,
        "quiz_id": str(quiz_id) if quiz_id else None,
    }


@router.post("/lessons/{lesson_id}/complete", response_model=LessonCompleteResponse)
def complete_lesson(
    lesson_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="lesson_complete", limit=60, window_seconds=60),
):
    lesson = _accessible_lesson(db, user, lesson_id)
    return LearningService(db).complete_lesson(user, lesson)


@router.put("/lessons/{lesson_id}/video-progress", response_model=VideoProgressResponse)
def save_video_progress(
    lesson_id: str,
    body: VideoProgressRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="video_progress", limit=120, window_seconds=60),
):
    lesson = _accessible_lesson(db, user, lesson_id)
    return LearningService(db).save_video_progress(user, lesson, body.position_seconds)
