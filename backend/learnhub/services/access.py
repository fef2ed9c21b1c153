from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from learnhub.models.course import Course
from learnhub.models.group import CourseAccess, GroupMember
from learnhub.models.user import User, UserRole


def user_group_ids(db: Session, user: User) -> set[uuid.UUID]:
    return set(db.scalars(select(GroupMember.group_id).where(GroupMember.user_id == user.id)))


def accessible_courses(db: Session, user: User) -> list[Course]:
    """Published courses the user may open.

    A course without access grants is open to everyone; a granted course is
    visible only to members of the granted groups. Admins see everything,
    drafts included.
    """
    stmt = select(Course).order_by(Course.title)
    if user.role == UserRole.admin:
        return list(db.scalars(stmt))

    courses = list(db.scalars(stmt.where(Course.is_published == True)))  # noqa: E712
    if not courses:
        return []

    grants: dict[uuid.UUID, set[uuid.UUID]] = {}
    for course_id, group_id in db.execute(
        select(CourseAccess.course_id, CourseAccess.group_id).where(CourseAccess.course_id.in_([c.id for c in courses]))
    ).all():
        grants.setdefault(course_id, set()).add(group_id)

    groups = user_group_ids(db, user) if grants else set()
    return [c for c in courses if c.id not in grants or grants[c.id] & groups]


def can_access_course(db: Session, user: User, course: Course) -> bool:
    if user.role == UserRole.admin:
        return True
    if not course.is_published:
        return False
    granted = set(db.scalars(select(CourseAccess.group_id).where(CourseAccess.course_id == course.id)))
    if not granted:
        return True
    return bool(granted & user_group_ids(db, user))
