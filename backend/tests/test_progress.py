import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from conftest import all_lesson_ids, create_course, create_user
from learnhub.db.session import SessionLocal
from learnhub.models.audit import LearningEvent, LearningEventType
from learnhub.models.course import Lesson
from learnhub.models.progress import LessonProgress
from learnhub.models.user import User
from learnhub.services.learning import LearningService


def test_complete_lesson_is_idempotent(client):
    course = create_course()
    user = create_user()
    lesson_id = course.lesson_ids[0]

    r1 = client.post(f"/lessons/{lesson_id}/complete", headers=user.headers)
    assert r1.status_code == 200
    assert r1.json()["already_completed"] is False

    r2 = client.post(f"/lessons/{lesson_id}/complete", headers=user.headers)
    assert r2.status_code == 200
    assert r2.json()["already_completed"] is True

    with SessionLocal() as db:
        n = db.scalar(
            select(func.count(LearningEvent.id)).where(
                LearningEvent.user_id == user.id,
                LearningEvent.type == LearningEventType.lesson_completed,
                LearningEvent.ref_id == lesson_id,
            )
        )
    assert n == 1


def test_course_progress_percent(client):
    course = create_course(module_lessons=2, loose_lesson=True)
    user = create_user()
    client.post(f"/lessons/{course.lesson_ids[0]}/complete", headers=user.headers)

    r = client.get(f"/progress/courses/{course.id}", headers=user.headers)
    assert r.status_code == 200
    body = r.json()
    assert body["total_lessons"] == 3
    assert body["completed_lessons"] == 1
    assert body["percent"] == 33
    assert body["completed"] is False
    assert body["final_exam_quiz_id"] == str(course.final_quiz.id)
    assert body["certificate"] is None


def test_video_progress_is_clamped_to_lesson_length(client):
    course = create_course(duration_minutes=2)
    user = create_user()
    lesson_id = course.lesson_ids[0]

    r = client.put(f"/lessons/{lesson_id}/video-progress", json={"position_seconds": 75}, headers=user.headers)
    assert r.status_code == 200
    assert r.json()["video_position_seconds"] == 75
    assert r.json()["completed"] is False

    r = client.put(f"/lessons/{lesson_id}/video-progress", json={"position_seconds": 9999}, headers=user.headers)
    assert r.json()["video_position_seconds"] == 120

    r = client.get(f"/lessons/{lesson_id}", headers=user.headers)
    assert r.json()["video_position_seconds"] == 120


def test_negative_video_position_is_rejected(client):
    course = create_course()
    user = create_user()
    r = client.put(
        f"/lessons/{course.lesson_ids[0]}/video-progress", json={"position_seconds": -5}, headers=user.headers
    )
    assert r.status_code == 422


def test_course_without_final_exam_certifies_on_last_lesson(client):
    course = create_course(final_exam=False)
    user = create_user()
    lesson_ids = all_lesson_ids(course)

    for lesson_id in lesson_ids[:-1]:
        r = client.post(f"/lessons/{lesson_id}/complete", headers=user.headers)
        assert r.json()["certificate_number"] is None

    r = client.post(f"/lessons/{lesson_ids[-1]}/complete", headers=user.headers)
    assert r.status_code == 200
    number = r.json()["certificate_number"]
    assert number and number.startswith("CERT-")

    r = client.get(f"/progress/courses/{course.id}", headers=user.headers)
    assert r.json()["completed"] is True
    assert r.json()["certificate"]["certificate_number"] == number

    r = client.get(f"/certificates/verify/{number.lower()}")
    assert r.status_code == 200
    assert r.json()["valid"] is True
    assert r.json()["certificate_number"] == number


def test_course_with_final_exam_does_not_certify_on_lessons(client):
    course = create_course(final_exam=True)
    user = create_user()
    for lesson_id in all_lesson_ids(course):
        r = client.post(f"/lessons/{lesson_id}/complete", headers=user.headers)
        assert r.json()["certificate_number"] is None


def test_verify_unknown_certificate_is_404(client):
    r = client.get("/certificates/verify/CERT-2000-NOPE00-0")
    assert r.status_code == 404


def test_course_detail_resumes_at_first_incomplete_lesson(client):
    course = create_course()
    user = create_user()
    client.post(f"/lessons/{course.lesson_ids[0]}/complete", headers=user.headers)

    r = client.get(f"/courses/{course.id}", headers=user.headers)
    assert r.status_code == 200
    body = r.json()
    assert body["resume_lesson_id"] == str(course.lesson_ids[1])
    assert body["final_exam_quiz_id"] == str(course.final_quiz.id)
    assert body["modules"][0]["quiz_id"] == str(course.module_quiz.id)
    lessons = body["modules"][0]["lessons"]
    assert lessons[0]["completed"] is True
    assert lessons[0]["quiz_id"] == str(course.lesson_quiz.id)
    assert [l["id"] for l in body["lessons"]] == [str(course.loose_lesson_id)]
    assert body["total_minutes"] == 30

    with SessionLocal() as db:
        viewed = db.scalar(
            select(func.count(LearningEvent.id)).where(
                LearningEvent.user_id == user.id,
                LearningEvent.type == LearningEventType.course_viewed,
                LearningEvent.ref_id == course.id,
            )
        )
    assert viewed == 1


def _conflicting_commit(db, on_conflict):
    """First commit fails with a unique violation after ``on_conflict`` runs; later commits go through."""
    real_commit = db.commit
    calls = {"n": 0}

    def _commit():
        calls["n"] += 1
        if calls["n"] == 1:
            on_conflict()
            raise IntegrityError("INSERT INTO lesson_progress", {}, Exception("unique constraint"))
        real_commit()

    return _commit


def test_video_progress_conflict_updates_the_winning_row(monkeypatch):
    course = create_course()
    user = create_user()
    lesson_id = course.lesson_ids[0]

    def _other_request_inserts():
        with SessionLocal() as other:
            other.add(LessonProgress(user_id=user.id, lesson_id=lesson_id, completed=True))
            other.commit()

    with SessionLocal() as db:
        service = LearningService(db)
        monkeypatch.setattr(db, "commit", _conflicting_commit(db, _other_request_inserts))
        out = service.save_video_progress(db.get(User, user.id), db.get(Lesson, lesson_id), 42)

    assert out["video_position_seconds"] == 42
    assert out["completed"] is True
    with SessionLocal() as db:
        rows = db.scalars(
            select(LessonProgress).where(LessonProgress.user_id == user.id, LessonProgress.lesson_id == lesson_id)
        ).all()
    assert [(r.video_position_seconds, r.completed) for r in rows] == [(42, True)]


def test_video_progress_conflict_without_a_row_is_raised(monkeypatch):
    course = create_course()
    user = create_user()
    lesson_id = course.lesson_ids[0]

    with SessionLocal() as db:
        service = LearningService(db)
        monkeypatch.setattr(db, "commit", _conflicting_commit(db, lambda: None))
        with pytest.raises(IntegrityError):
            service.save_video_progress(db.get(User, user.id), db.get(Lesson, lesson_id), 42)
