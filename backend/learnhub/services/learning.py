from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from learnhub.models.attempt import QuizAttempt
from learnhub.models.audit import LearningEvent, LearningEventType
from learnhub.models.certificate import Certificate
from learnhub.models.course import Course, Lesson, Module
from learnhub.models.group import Group, GroupMember
from learnhub.models.progress import LessonProgress
from learnhub.models.quiz import Quiz
from learnhub.models.user import User, UserRole
from learnhub.services.certificates import issue_certificate_if_missing

log = logging.getLogger(__name__)


def _percent(part: int, total: int) -> int:
    if total <= 0:
        return 0
    return (200 * int(part) + int(total)) // (2 * int(total))


class LearningService:
    def __init__(self, db: Session):
        self.db = db

    def _completed_ids(self, user_id: uuid.UUID, lesson_ids: List[uuid.UUID]) -> set[uuid.UUID]:
        if not lesson_ids:
            return set()
        return set(
            self.db.scalars(
                select(LessonProgress.lesson_id).where(
                    LessonProgress.user_id == user_id,
                    LessonProgress.lesson_id.in_(lesson_ids),
                    LessonProgress.completed == True,  # noqa: E712
                )
            )
        )

    def _passed_quiz_ids(self, user_id: uuid.UUID, quiz_ids: List[uuid.UUID]) -> set[uuid.UUID]:
        if not quiz_ids:
            return set()
        return set(
            self.db.scalars(
                select(QuizAttempt.quiz_id).where(
                    QuizAttempt.user_id == user_id,
                    QuizAttempt.quiz_id.in_(quiz_ids),
                    QuizAttempt.passed == True,  # noqa: E712
                )
            )
        )

    def get_course_detail(self, user: User, course: Course) -> Dict[str, Any]:
        """
        Module/lesson tree of a course with the learner's completion state.
        Lessons without a module are grouped under ``lessons``.
        """
        modules = self.db.scalars(
            select(Module).where(Module.course_id == course.id).order_by(Module.order_index)
        ).all()
        lessons = self.db.scalars(
            select(Lesson).where(Lesson.course_id == course.id).order_by(Lesson.order_index)
        ).all()
        quizzes = self.db.scalars(select(Quiz).where(Quiz.course_id == course.id)).all()

        lesson_quiz = {q.lesson_id: q.id for q in quizzes if q.lesson_id}
        module_quiz = {q.module_id: q.id for q in quizzes if q.module_id}
        final_quiz_id = next((q.id for q in quizzes if q.is_final_exam), None)

        completed = self._completed_ids(user.id, [l.id for l in lessons])

        def _lesson_item(l: Lesson) -> Dict[str, Any]:
            qid = lesson_quiz.get(l.id)
            return {
                "id": str(l.id),
                "title": l.title,
                "video_url": l.video_url,
                "duration_minutes": int(l.duration_minutes or 0),
                "order_index": int(l.order_index),
                "completed": l.id in completed,
                "quiz_id": str(qid) if qid else None,
            }

        by_module: Dict[uuid.UUID, List[Lesson]] = {}
        loose: List[Lesson] = []
        for l in lessons:
            if l.module_id:
                by_module.setdefault(l.module_id, []).append(l)
            else:
                loose.append(l)

        # Resume from the first incomplete lesson in module order; fall back to the last one.
        ordered = [l for m in modules for l in by_module.get(m.id, [])] + loose
        resume = next((l for l in ordered if l.id not in completed), ordered[-1] if ordered else None)

        return {
            "id": str(course.id),
            "title": course.title,
            "description": course.description,
            "total_minutes": sum(int(l.duration_minutes or 0) for l in lessons),
            "final_exam_quiz_id": str(final_quiz_id) if final_quiz_id else None,
            "resume_lesson_id": str(resume.id) if resume else None,
            "modules": [
                {
                    "id": str(m.id),
                    "title": m.title,
                    "description": m.description,
                    "order_index": int(m.order_index),
                    "quiz_id": str(module_quiz[m.id]) if m.id in module_quiz else None,
                    "lessons": [_lesson_item(l) for l in by_module.get(m.id, [])],
                }
                for m in modules
            ],
            "lessons": [_lesson_item(l) for l in loose],
        }

    def get_course_progress(self, user: User, course_id: uuid.UUID) -> Dict[str, Any] | None:
        course = self.db.scalar(select(Course).where(Course.id == course_id))
        if course is None:
            return None

        lesson_ids = list(self.db.scalars(select(Lesson.id).where(Lesson.course_id == course.id)))
        quizzes = self.db.scalars(select(Quiz).where(Quiz.course_id == course.id)).all()
        final_quiz = next((q for q in quizzes if q.is_final_exam), None)

        completed = self._completed_ids(user.id, lesson_ids)
        passed_quiz_ids = self._passed_quiz_ids(user.id, [q.id for q in quizzes])
        cert = self.db.scalar(
            select(Certificate).where(Certificate.user_id == user.id, Certificate.course_id == course.id)
        )

        all_lessons_done = bool(lesson_ids) and len(completed) == len(lesson_ids)
        final_passed = final_quiz is not None and final_quiz.id in passed_quiz_ids

        return {
            "course_id": str(course.id),
            "total_lessons": len(lesson_ids),
            "completed_lessons": len(completed),
            "percent": _percent(len(completed), len(lesson_ids)),
            "passed_quiz_ids": sorted(str(q) for q in passed_quiz_ids),
            "final_exam_quiz_id": str(final_quiz.id) if final_quiz else None,
            "final_passed": final_passed,
            "completed": all_lessons_done and (final_quiz is None or final_passed),
            "certificate": (
                {"certificate_number": cert.certificate_number, "issued_at": cert.issued_at.isoformat()}
                if cert
                else None
            ),
        }

    def complete_lesson(self, user: User, lesson: Lesson) -> Dict[str, Any]:
        """Mark a lesson completed. Completion is never undone here, only by a quiz reset."""
        progress = self.db.scalar(
            select(LessonProgress).where(LessonProgress.user_id == user.id, LessonProgress.lesson_id == lesson.id)
        )
        if progress is not None and progress.completed:
            return {"ok": True, "already_completed": True, "certificate_number": None}

        now = datetime.utcnow()
        if progress is None:
            progress = LessonProgress(user_id=user.id, lesson_id=lesson.id)
            self.db.add(progress)
        progress.completed = True
        progress.completed_at = now
        progress.updated_at = now

        self.db.add(LearningEvent(user_id=user.id, type=LearningEventType.lesson_completed, ref_id=lesson.id))
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent first completion of the same lesson.
            self.db.rollback()
            return {"ok": True, "already_completed": True, "certificate_number": None}

        return {
            "ok": True,
            "already_completed": False,
            "certificate_number": self._certificate_on_course_completion(user, lesson.course_id),
        }

    def _certificate_on_course_completion(self, user: User, course_id: uuid.UUID) -> str | None:
        # Courses with a final exam certify through the exam instead.
        has_final = self.db.scalar(
            select(func.count(Quiz.id)).where(Quiz.course_id == course_id, Quiz.is_final_exam == True)  # noqa: E712
        )
        if has_final:
            return None

        lesson_ids = list(self.db.scalars(select(Lesson.id).where(Lesson.course_id == course_id)))
        if not lesson_ids or len(self._completed_ids(user.id, lesson_ids)) < len(lesson_ids):
            return None

        try:
            cert = issue_certificate_if_missing(self.db, user_id=user.id, course_id=course_id)
            number = cert.certificate_number
            self.db.commit()
            return number
        except Exception:
            self.db.rollback()
            log.exception("certificate issuance failed user=%s course=%s", user.id, course_id)
            return None

    def _progress_row(self, user_id: uuid.UUID, lesson_id: uuid.UUID) -> LessonProgress | None:
        return self.db.scalar(
            select(LessonProgress).where(LessonProgress.user_id == user_id, LessonProgress.lesson_id == lesson_id)
        )

    def save_video_progress(self, user: User, lesson: Lesson, position_seconds: int) -> Dict[str, Any]:
        position = max(0, int(position_seconds))
        if lesson.duration_minutes:
            position = min(position, int(lesson.duration_minutes) * 60)

        progress = self._progress_row(user.id, lesson.id)
        if progress is None:
            progress = LessonProgress(user_id=user.id, lesson_id=lesson.id, completed=False)
            self.db.add(progress)
        progress.video_position_seconds = position
        progress.updated_at = datetime.utcnow()
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent first write for the same lesson: update the row that won.
            self.db.rollback()
            progress = self._progress_row(user.id, lesson.id)
            if progress is None:
                log.error("video progress write conflicted but no row exists user=%s lesson=%s", user.id, lesson.id)
                raise
            progress.video_position_seconds = position
            progress.updated_at = datetime.utcnow()
            self.db.commit()

        return {
            "lesson_id": str(lesson.id),
            "video_position_seconds": int(progress.video_position_seconds),
            "completed": bool(progress.completed),
        }

    def _members_progress(self, users: List[User]) -> List[Dict[str, Any]]:
        """
        Batch progress for many users at once: completed lessons out of every
        lesson of the published catalog, plus certificate counts.
        """
        total_lessons = int(
            self.db.scalar(
                select(func.count(Lesson.id))
                .join(Course, Course.id == Lesson.course_id)
                .where(Course.is_published == True)  # noqa: E712
            )
            or 0
        )
        user_ids = [u.id for u in users]
        if not user_ids:
            return []

        completed_rows = self.db.execute(
            select(LessonProgress.user_id, func.count(LessonProgress.id))
            .join(Lesson, Lesson.id == LessonProgress.lesson_id)
            .join(Course, Course.id == Lesson.course_id)
            .where(
                LessonProgress.user_id.in_(user_ids),
                LessonProgress.completed == True,  # noqa: E712
                Course.is_published == True,  # noqa: E712
            )
            .group_by(LessonProgress.user_id)
        ).all()
        completed_map = {uid: int(n) for uid, n in completed_rows}

        cert_rows = self.db.execute(
            select(Certificate.user_id, func.count(Certificate.id))
            .where(Certificate.user_id.in_(user_ids))
            .group_by(Certificate.user_id)
        ).all()
        cert_map = {uid: int(n) for uid, n in cert_rows}

        report = []
        for u in users:
            done = completed_map.get(u.id, 0)
            report.append(
                {
                    "user_id": str(u.id),
                    "name": u.name,
                    "full_name": u.full_name,
                    "completed_lessons": done,
                    "total_lessons": total_lessons,
                    "progress_percent": _percent(done, total_lessons),
                    "certificates": cert_map.get(u.id, 0),
                }
            )
        return report

    def leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        users = self.db.scalars(select(User).where(User.role != UserRole.admin).order_by(User.name)).all()
        rows = self._members_progress(list(users))
        rows.sort(key=lambda r: (-r["certificates"], -r["progress_percent"], -r["completed_lessons"], r["name"]))
        for i, r in enumerate(rows, start=1):
            r["rank"] = i
        return rows[: max(0, int(limit))]

    def group_report(self, leader: User) -> Dict[str, Any] | None:
        group = self.db.scalar(select(Group).where(Group.leader_id == leader.id).order_by(Group.name).limit(1))
        if group is None:
            return None

        member_ids = list(self.db.scalars(select(GroupMember.user_id).where(GroupMember.group_id == group.id)))
        members = self.db.scalars(select(User).where(User.id.in_(member_ids)).order_by(User.name)).all() if member_ids else []
        return {
            "group_id": str(group.id),
            "name": group.name,
            "members": self._members_progress(list(members)),
        }

    def stats(self) -> Dict[str, int]:
        return {
            "total_users": int(self.db.scalar(select(func.count(User.id))) or 0),
            "total_courses": int(self.db.scalar(select(func.count(Course.id))) or 0),
            "total_certificates": int(self.db.scalar(select(func.count(Certificate.id))) or 0),
        }
