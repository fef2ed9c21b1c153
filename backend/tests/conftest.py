import sys
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from learnhub.db.base import Base
from learnhub.db import session as session_module

# Import models so that they are registered in Base.metadata before create_all.
import learnhub.models  # noqa: F401,E402
from learnhub.core.security import create_access_token, hash_password  # noqa: E402
from learnhub.models.course import Course, Lesson, Module  # noqa: E402
from learnhub.models.group import CourseAccess, Group, GroupMember  # noqa: E402
from learnhub.models.progress import LessonProgress  # noqa: E402
from learnhub.models.quiz import Quiz, QuizAnswerOption, QuizQuestion  # noqa: E402
from learnhub.models.user import User, UserRole  # noqa: E402


class _MemoryRedis:
    def __init__(self):
        self._data: dict[str, tuple[str, float | None]] = {}

    def ping(self):
        return True

    def _now(self) -> float:
        return time.time()

    def _get_entry(self, key: str):
        v = self._data.get(key)
        if not v:
            return None
        value, exp = v
        if exp is not None and exp <= self._now():
            self._data.pop(key, None)
            return None
        return value, exp

    def get(self, key: str):
        entry = self._get_entry(key)
        return entry[0] if entry else None

    def set(self, key: str, value: str, ex: int | None = None, nx: bool = False):
        if nx and self._get_entry(key) is not None:
            return None
        exp = (self._now() + int(ex)) if ex else None
        self._data[key] = (value, exp)
        return True

    def delete(self, key: str):
        return 1 if self._data.pop(key, None) is not None else 0

    def incr(self, key: str):
        cur = self.get(key)
        n = int(cur or 0) + 1
        _, exp = self._data.get(key, ("", None))
        self._data[key] = (str(n), exp)
        return n

    def expire(self, key: str, seconds: int):
        entry = self._get_entry(key)
        if not entry:
            return False
        value, _ = entry
        self._data[key] = (value, self._now() + int(seconds))
        return True

    def ttl(self, key: str):
        entry = self._get_entry(key)
        if not entry:
            return -2
        _, exp = entry
        if exp is None:
            return -1
        return max(0, int(exp - self._now()))

    def flushall(self):
        self._data.clear()
        return True


# Configure test DB (SQLite in-memory) at import time so all tests importing
# learnhub.db.session.SessionLocal will get the patched version.
_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
Base.metadata.create_all(bind=_engine)
session_module.engine = _engine
session_module.SessionLocal = session_module.sessionmaker(autocommit=False, autoflush=False, bind=_engine)


# Stub Redis at import time (rate limiting + submission locks).
mem_redis = _MemoryRedis()
import learnhub.core.redis_client as redis_client_module  # noqa: E402

redis_client_module.get_redis = lambda: mem_redis

import learnhub.core.rate_limit as rate_limit_module  # noqa: E402

rate_limit_module.get_redis = lambda: mem_redis

import learnhub.services.attempts as attempts_module  # noqa: E402

attempts_module.get_redis = lambda: mem_redis

import learnhub.routers.health as health_router_module  # noqa: E402

health_router_module.get_redis = lambda: mem_redis

from learnhub.main import create_app  # noqa: E402

TEST_PASSWORD = "testpass123"
_password_hash: str | None = None


def _test_password_hash() -> str:
    global _password_hash
    if _password_hash is None:
        _password_hash = hash_password(TEST_PASSWORD)
    return _password_hash


@pytest.fixture(scope="session")
def client():
    app = create_app()

    # Ensure app dependencies use our session factory.
    def _get_db_override():
        db = session_module.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[session_module.get_db] = _get_db_override
    return TestClient(app)


@pytest.fixture(autouse=True)
def _clean_redis():
    mem_redis.flushall()
    yield
    mem_redis.flushall()


@pytest.fixture()
def db():
    with session_module.SessionLocal() as session:
        yield session


@pytest.fixture()
def user_token(client, monkeypatch):
    from learnhub.core.config import settings

    username = f"test_{uuid.uuid4().hex[:8]}"

    monkeypatch.setattr(settings, "allow_public_register", True)
    r = client.post(
        "/auth/register",
        json={"name": username, "full_name": "Test User", "password": TEST_PASSWORD},
    )
    assert r.status_code == 200

    r = client.post(
        "/auth/token",
        data={"username": username, "password": TEST_PASSWORD},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert r.status_code == 200
    return r.json()["access_token"]


@pytest.fixture()
def auth_headers(user_token):
    return {"Authorization": f"Bearer {user_token}"}


@dataclass
class SeededUser:
    id: uuid.UUID
    name: str
    role: UserRole
    headers: dict[str, str]


def create_user(*, role: UserRole = UserRole.employee, name: str | None = None) -> SeededUser:
    name = name or f"{role.value}_{uuid.uuid4().hex[:8]}"
    with session_module.SessionLocal() as db:
        user = User(name=name, full_name=name.title(), role=role, password_hash=_test_password_hash())
        db.add(user)
        db.commit()
        user_id = user.id
    token = create_access_token(user_id=str(user_id), role=role.value)
    return SeededUser(id=user_id, name=name, role=role, headers={"Authorization": f"Bearer {token}"})


@pytest.fixture()
def employee() -> SeededUser:
    return create_user(role=UserRole.employee)


@pytest.fixture()
def admin() -> SeededUser:
    return create_user(role=UserRole.admin)


@dataclass
class SeededQuiz:
    id: uuid.UUID
    question_ids: list[uuid.UUID]
    correct: dict[str, str]
    wrong: dict[str, str]

    def answers(self, n_correct: int | None = None) -> dict[str, str]:
        """First ``n_correct`` questions answered right, the rest wrong."""
        n = len(self.question_ids) if n_correct is None else n_correct
        out = {}
        for i, qid in enumerate(self.question_ids):
            key = str(qid)
            out[key] = self.correct[key] if i < n else self.wrong[key]
        return out


@dataclass
class SeededCourse:
    id: uuid.UUID
    module_id: uuid.UUID
    lesson_ids: list[uuid.UUID]
    loose_lesson_id: uuid.UUID | None
    lesson_quiz: SeededQuiz | None
    module_quiz: SeededQuiz | None
    final_quiz: SeededQuiz | None
    extra: dict = field(default_factory=dict)


def add_quiz(db, quiz: Quiz, *, questions: int) -> SeededQuiz:
    db.add(quiz)
    db.flush()
    question_ids, correct, wrong = [], {}, {}
    for qi in range(questions):
        q = QuizQuestion(quiz_id=quiz.id, prompt=f"Question {qi + 1}", order_index=qi)
        db.add(q)
        db.flush()
        right = QuizAnswerOption(question_id=q.id, text="right", order_index=0, is_correct=True)
        bad = QuizAnswerOption(question_id=q.id, text="wrong", order_index=1, is_correct=False)
        db.add_all([right, bad])
        db.flush()
        question_ids.append(q.id)
        correct[str(q.id)] = str(right.id)
        wrong[str(q.id)] = str(bad.id)
    return SeededQuiz(id=quiz.id, question_ids=question_ids, correct=correct, wrong=wrong)


def create_course(
    *,
    module_lessons: int = 2,
    loose_lesson: bool = True,
    lesson_quiz: bool = True,
    module_quiz: bool = True,
    final_exam: bool = True,
    questions: int = 3,
    passing_score: int = 70,
    published: bool = True,
    duration_minutes: int = 10,
) -> SeededCourse:
    """One course: a module with lessons, an optional lesson outside the module, and quizzes."""
    with session_module.SessionLocal() as db:
        course = Course(title=f"Course {uuid.uuid4().hex[:6]}", description="test course", is_published=published)
        db.add(course)
        db.flush()
        module = Module(course_id=course.id, title="Module 1", order_index=0)
        db.add(module)
        db.flush()

        lessons = []
        for i in range(module_lessons):
            lesson = Lesson(
                course_id=course.id,
                module_id=module.id,
                title=f"Lesson {i + 1}",
                content="text",
                duration_minutes=duration_minutes,
                order_index=i,
            )
            db.add(lesson)
            lessons.append(lesson)
        loose = None
        if loose_lesson:
            loose = Lesson(
                course_id=course.id,
                title="Appendix",
                content="text",
                duration_minutes=duration_minutes,
                order_index=module_lessons,
            )
            db.add(loose)
        db.flush()

        seeded = SeededCourse(
            id=course.id,
            module_id=module.id,
            lesson_ids=[l.id for l in lessons],
            loose_lesson_id=loose.id if loose else None,
            lesson_quiz=None,
            module_quiz=None,
            final_quiz=None,
        )
        if lesson_quiz and lessons:
            seeded.lesson_quiz = add_quiz(
                db,
                Quiz.for_lesson(course_id=course.id, lesson_id=lessons[0].id, passing_score=passing_score),
                questions=questions,
            )
        if module_quiz:
            seeded.module_quiz = add_quiz(
                db,
                Quiz.for_module(course_id=course.id, module_id=module.id, passing_score=passing_score),
                questions=questions,
            )
        if final_exam:
            seeded.final_quiz = add_quiz(
                db,
                Quiz.final_exam(course_id=course.id, passing_score=passing_score),
                questions=questions,
            )
        db.commit()
    return seeded


def all_lesson_ids(course: SeededCourse) -> list[uuid.UUID]:
    return course.lesson_ids + ([course.loose_lesson_id] if course.loose_lesson_id else [])


def complete_lessons(user_id: uuid.UUID, lesson_ids) -> None:
    with session_module.SessionLocal() as db:
        for lesson_id in lesson_ids:
            db.add(LessonProgress(user_id=user_id, lesson_id=lesson_id, completed=True))
        db.commit()


def restrict_course(course_id: uuid.UUID, *, member_ids=()) -> uuid.UUID:
    """Grant the course to a fresh group holding ``member_ids``."""
    with session_module.SessionLocal() as db:
        group = Group(name=f"group_{uuid.uuid4().hex[:8]}")
        db.add(group)
        db.flush()
        db.add_all([GroupMember(group_id=group.id, user_id=uid) for uid in member_ids])
        db.add(CourseAccess(course_id=course_id, group_id=group.id))
        db.commit()
        return group.id
