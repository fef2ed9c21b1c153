from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from learnhub.core.security import get_current_user
from learnhub.db.session import get_db
from learnhub.models.course import Course
from learnhub.models.user import User
from learnhub.schemas.progress import CourseProgressResponse
from learnhub.services.access import can_access_course
from learnhub.services.learning import LearningService

router = APIRouter(prefix="/progress", tags=["progress"])


@router.get("/courses/{course_id}", response_model=CourseProgressResponse)
def course_progress(course_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    try:
        cid = uuid.UUID(course_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="invalid course_id") from e

    course = db.scalar(select(Course).where(Course.id == cid))
    if course is None or not can_access_course(db, user, course):
        raise HTTPException(status_code=404, detail="course not found")

    return LearningService(db).get_course_progress(user, course.id)
