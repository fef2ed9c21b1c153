from __future__ import annotations

import argparse
import os
import sys

# Allow running from backend/ or from the container workdir
sys.path.append("/app")
sys.path.append(os.getcwd())

from sqlalchemy import select

from learnhub.core.security import hash_password
from learnhub.db.session import SessionLocal
from learnhub.models.course import Course, Lesson, Module
from learnhub.models.quiz import Quiz, QuizAnswerOption, QuizQuestion
from learnhub.models.user import User, UserRole

DEMO_COURSE_TITLE = "Workplace Safety Basics"

_QUESTIONS = [
    ("Where is the nearest fire exit marked?", ["Green signs", "Red signs", "It is not marked"], 0),
    ("Who do you report an injury to?", ["Nobody", "Your team leader", "A customer"], 1),
    ("When should you wear protective gloves?", ["Never", "Only on Fridays", "When handling chemicals"], 2),
]


def _add_questions(db, quiz: Quiz) -> None:
    for qi, (prompt, options, correct) in enumerate(_QUESTIONS):
        q = QuizQuestion(quiz_id=quiz.id, prompt=prompt, order_index=qi)
        db.add(q)
        db.flush()
        for oi, text in enumerate(options):
            db.add(QuizAnswerOption(question_id=q.id, text=text, order_index=oi, is_correct=oi == correct))


def ensure_admin(db, *, name: str, password: str) -> User:
    user = db.scalar(select(User).where(User.name == name))
    if user is not None:
        return user
    user = User(name=name, full_name="Administrator", role=UserRole.admin, password_hash=hash_password(password))
    db.add(user)
    db.flush()
    return user


def ensure_demo_course(db) -> Course:
    course = db.scalar(select(Course).where(Course.title == DEMO_COURSE_TITLE))
    if course is not None:
        return course

    course = Course(title=DEMO_COURSE_TITLE, description="Short induction course for new employees.", is_published=True)
    db.add(course)
    db.flush()

    module = Module(course_id=course.id, title="Emergencies", order_index=0)
    db.add(module)
    db.flush()

    lessons = []
    for i, title in enumerate(["Fire exits", "Reporting incidents"]):
        lesson = Lesson(
            course_id=course.id,
            module_id=module.id,
            title=title,
            content=f"{title}: read the handbook section and watch the video.",
            duration_minutes=5,
            order_index=i,
        )
        db.add(lesson)
        lessons.append(lesson)
    db.flush()

    quizzes = [
        Quiz.for_lesson(course_id=course.id, lesson_id=lessons[0].id, title="Fire exits check"),
        Quiz.for_module(course_id=course.id, module_id=module.id, title="Emergencies quiz"),
        Quiz.final_exam(course_id=course.id, passing_score=80, title="Final exam"),
    ]
    for quiz in quizzes:
        db.add(quiz)
        db.flush()
        _add_questions(db, quiz)
    return course


def main() -> None:
    parser = argparse.ArgumentParser(description="Create an admin account and a demo course.")
    parser.add_argument("--admin-name", default="admin")
    parser.add_argument("--admin-password", required=True)
    args = parser.parse_args()

    with SessionLocal() as db:
        admin = ensure_admin(db, name=args.admin_name, password=args.admin_password)
        course = ensure_demo_course(db)
        db.commit()
        print(f"admin={admin.name} course={course.id}")


if __name__ == "__main__":
    main()
