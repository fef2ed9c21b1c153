from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from learnhub.core.rate_limit import rate_limit
from learnhub.core.security import require_roles
from learnhub.core.security_audit_log import audit_log
from learnhub.db.session import get_db
from learnhub.models.audit import LearningEvent
from learnhub.models.course import Course, Lesson, Module
from learnhub.models.faq import FaqEntry, FaqSectionAccess
from learnhub.models.group import CourseAccess, Group, GroupMember
from learnhub.models.quiz import Quiz, QuizAnswerOption, QuizQuestion
from learnhub.models.security_audit import SecurityAuditEvent
from learnhub.models.user import User, UserRole
from learnhub.schemas.admin import (
    ActivityLogResponse,
    AnswerKeyResponse,
    CourseCreateRequest,
    CreatedResponse,
    GroupCreateRequest,
    LeaderboardResponse,
    LessonCreateRequest,
    ModuleCreateRequest,
    QuizCreateRequest,
    StatsResponse,
)
from learnhub.schemas.faq import FaqEntryCreateRequest
from learnhub.services.learning import LearningService

router = APIRouter(prefix="/admin", tags=["admin"])


def _uuid(value: str, *, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"invalid {field}") from e


def _get_or_404(db: Session, model, obj_id: uuid.UUID, *, what: str):
    obj = db.scalar(select(model).where(model.id == obj_id))
    if obj is None:
        raise HTTPException(status_code=404, detail=f"{what} not found")
    return obj


@router.post("/courses", response_model=CreatedResponse)
def create_course(
    request: Request,
    body: CourseCreateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(require_roles(UserRole.admin)),
):
    course = Course(title=body.title.strip(), description=body.description, is_published=body.is_published)
    db.add(course)
    db.commit()
    db.refresh(course)
    audit_log(db=db, request=request, event_type="admin_create_course", actor_user_id=current.id, meta={"course_id": str(course.id)})
    db.commit()
    return {"id": str(course.id)}


@router.post("/modules", response_model=CreatedResponse)
def create_module(
    request: Request,
    body: ModuleCreateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(require_roles(UserRole.admin)),
):
    course = _get_or_404(db, Course, _uuid(body.course_id, field="course_id"), what="course")
    module = Module(course_id=course.id, title=body.title.strip(), description=body.description, order_index=body.order_index)
    db.add(module)
    db.commit()
    db.refresh(module)
    audit_log(db=db, request=request, event_type="admin_create_module", actor_user_id=current.id, meta={"module_id": str(module.id)})
    db.commit()
    return {"id": str(module.id)}


@router.post("/lessons", response_model=CreatedResponse)
def create_lesson(
    request: Request,
    body: LessonCreateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(require_roles(UserRole.admin)),
):
    course = _get_or_404(db, Course, _uuid(body.course_id, field="course_id"), what="course")
    module_id = None
    if body.module_id:
        module = _get_or_404(db, Module, _uuid(body.module_id, field="module_id"), what="module")
        if module.course_id != course.id:
            raise HTTPException(status_code=400, detail="module belongs to another course")
        module_id = module.id

    lesson = Lesson(
        course_id=course.id,
        module_id=module_id,
        title=body.title.strip(),
        content=body.content,
        video_url=body.video_url,
        duration_minutes=body.duration_minutes,
        order_index=body.order_index,
    )
    db.add(lesson)
    db.commit()
    db.refresh(lesson)
    audit_log(db=db, request=request, event_type="admin_create_lesson", actor_user_id=current.id, meta={"lesson_id": str(lesson.id)})
    db.commit()
    return {"id": str(lesson.id)}


@router.post("/quizzes", response_model=CreatedResponse)
def create_quiz(
    request: Request,
    body: QuizCreateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(require_roles(UserRole.admin)),
    _: object = rate_limit(key_prefix="admin_create_quiz", limit=30, window_seconds=60),
):
    target_id = _uuid(body.target_id, field="target_id")

    if body.scope == "lesson":
        lesson = _get_or_404(db, Lesson, target_id, what="lesson")
        existing = db.scalar(select(Quiz.id).where(Quiz.lesson_id == lesson.id))
        quiz = Quiz.for_lesson(course_id=lesson.course_id, lesson_id=lesson.id, passing_score=body.passing_score, title=body.title)
    elif body.scope == "module":
        module = _get_or_404(db, Module, target_id, what="module")
        existing = db.scalar(select(Quiz.id).where(Quiz.module_id == module.id))
        quiz = Quiz.for_module(course_id=module.course_id, module_id=module.id, passing_score=body.passing_score, title=body.title)
    else:
        course = _get_or_404(db, Course, target_id, what="course")
        existing = db.scalar(select(Quiz.id).where(Quiz.course_id == course.id, Quiz.is_final_exam == True))  # noqa: E712
        quiz = Quiz.final_exam(course_id=course.id, passing_score=body.passing_score, title=body.title)

    if existing is not None:
        raise HTTPException(status_code=409, detail=f"{body.scope} already has a quiz")

    for qi, question in enumerate(body.questions):
        if not any(o.is_correct for o in question.options):
            raise HTTPException(status_code=400, detail=f"question {qi + 1} has no correct option")

    db.add(quiz)
    db.flush()
    for qi, question in enumerate(body.questions):
        q = QuizQuestion(quiz_id=quiz.id, prompt=question.prompt, order_index=qi)
        db.add(q)
        db.flush()
        for oi, option in enumerate(question.options):
            db.add(QuizAnswerOption(question_id=q.id, text=option.text, order_index=oi, is_correct=bool(option.is_correct)))
    db.commit()

    audit_log(
        db=db,
        request=request,
        event_type="admin_create_quiz",
        actor_user_id=current.id,
        meta={"quiz_id": str(quiz.id), "scope": body.scope, "questions": len(body.questions)},
    )
    db.commit()
    return {"id": str(quiz.id)}


@router.get("/quizzes/{quiz_id}/answer-key", response_model=AnswerKeyResponse)
def quiz_answer_key(
    request: Request,
    quiz_id: str,
    db: Session = Depends(get_db),
    current: User = Depends(require_roles(UserRole.admin)),
):
    quiz = _get_or_404(db, Quiz, _uuid(quiz_id, field="quiz_id"), what="quiz")

    questions = db.scalars(
        select(QuizQuestion).where(QuizQuestion.quiz_id == quiz.id).order_by(QuizQuestion.order_index)
    ).all()
    options = db.scalars(
        select(QuizAnswerOption)
        .where(QuizAnswerOption.question_id.in_([q.id for q in questions]))
        .order_by(QuizAnswerOption.order_index)
    ).all()
    by_question: dict[uuid.UUID, list[QuizAnswerOption]] = {}
    for o in options:
        by_question.setdefault(o.question_id, []).append(o)

    audit_log(
        db=db,
        request=request,
        event_type="admin_view_quiz_answer_key",
        actor_user_id=current.id,
        meta={"quiz_id": str(quiz.id), "question_count": len(questions)},
    )
    db.commit()
    return {
        "quiz_id": str(quiz.id),
        "passing_score": int(quiz.passing_score),
        "questions": [
            {
                "id": str(q.id),
                "prompt": q.prompt,
                "options": [
                    {"id": str(o.id), "text": o.text, "is_correct": bool(o.is_correct)} for o in by_question.get(q.id, [])
                ],
            }
            for q in questions
        ],
    }


@router.post("/groups", response_model=CreatedResponse)
def create_group(
    request: Request,
    body: GroupCreateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(require_roles(UserRole.admin)),
):
    name = body.name.strip()
    if db.scalar(select(Group.id).where(Group.name == name)) is not None:
        raise HTTPException(status_code=409, detail="group already exists")

    leader_id = None
    if body.leader_id:
        leader = _get_or_404(db, User, _uuid(body.leader_id, field="leader_id"), what="leader")
        leader_id = leader.id

    member_ids = {_uuid(m, field="member_id") for m in body.member_ids}
    found = set(db.scalars(select(User.id).where(User.id.in_(member_ids)))) if member_ids else set()
    if found != member_ids:
        raise HTTPException(status_code=404, detail="member not found")

    group = Group(name=name, leader_id=leader_id)
    db.add(group)
    db.flush()
    db.add_all([GroupMember(group_id=group.id, user_id=uid) for uid in member_ids])
    db.commit()
    audit_log(db=db, request=request, event_type="admin_create_group", actor_user_id=current.id, meta={"group_id": str(group.id)})
    db.commit()
    return {"id": str(group.id)}


@router.post("/courses/{course_id}/access/{group_id}")
def grant_course_access(
    request: Request,
    course_id: str,
    group_id: str,
    db: Session = Depends(get_db),
    current: User = Depends(require_roles(UserRole.admin)),
):
    course = _get_or_404(db, Course, _uuid(course_id, field="course_id"), what="course")
    group = _get_or_404(db, Group, _uuid(group_id, field="group_id"), what="group")

    existing = db.scalar(
        select(CourseAccess).where(CourseAccess.course_id == course.id, CourseAccess.group_id == group.id)
    )
    if existing is None:
        db.add(CourseAccess(course_id=course.id, group_id=group.id))
        audit_log(
            db=db,
            request=request,
            event_type="admin_grant_course_access",
            actor_user_id=current.id,
            meta={"course_id": str(course.id), "group_id": str(group.id)},
        )
        db.commit()
    return {"ok": True, "created": existing is None}


@router.delete("/courses/{course_id}/access/{group_id}")
def revoke_course_access(
    request: Request,
    course_id: str,
    group_id: str,
    db: Session = Depends(get_db),
    current: User = Depends(require_roles(UserRole.admin)),
):
    cid = _uuid(course_id, field="course_id")
    gid = _uuid(group_id, field="group_id")
    res = db.execute(delete(CourseAccess).where(CourseAccess.course_id == cid, CourseAccess.group_id == gid))
    audit_log(
        db=db,
        request=request,
        event_type="admin_revoke_course_access",
        actor_user_id=current.id,
        meta={"course_id": str(cid), "group_id": str(gid)},
    )
    db.commit()
    return {"ok": True, "deleted": int(res.rowcount or 0)}


@router.post("/faq", response_model=CreatedResponse)
def create_faq_entry(
    request: Request,
    body: FaqEntryCreateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(require_roles(UserRole.admin)),
):
    title = body.title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="title is required")

    parent_id = None
    if body.parent_id:
        parent = _get_or_404(db, FaqEntry, _uuid(body.parent_id, field="parent_id"), what="section")
        if not parent.is_section:
            raise HTTPException(status_code=400, detail="parent is not a section")
        parent_id = parent.id

    entry = FaqEntry(
        parent_id=parent_id,
        is_section=body.is_section,
        title=title,
        description=body.description,
        pdf_url=body.pdf_url,
        order_index=body.order_index,
    )
    db.add(entry)
    db.flush()
    audit_log(db=db, request=request, event_type="admin_create_faq_entry", actor_user_id=current.id, meta={"faq_id": str(entry.id)})
    db.commit()
    return {"id": str(entry.id)}


def _top_level_section(db: Session, section_id: str) -> FaqEntry:
    section = _get_or_404(db, FaqEntry, _uuid(section_id, field="section_id"), what="section")
    if not section.is_section or section.parent_id is not None:
        raise HTTPException(status_code=400, detail="access is granted on top-level sections")
    return section


@router.post("/faq/{section_id}/access/{group_id}")
def grant_faq_section_access(
    request: Request,
    section_id: str,
    group_id: str,
    db: Session = Depends(get_db),
    current: User = Depends(require_roles(UserRole.admin)),
):
    section = _top_level_section(db, section_id)
    group = _get_or_404(db, Group, _uuid(group_id, field="group_id"), what="group")

    existing = db.scalar(
        select(FaqSectionAccess).where(FaqSectionAccess.section_id == section.id, FaqSectionAccess.group_id == group.id)
    )
    if existing is None:
        db.add(FaqSectionAccess(section_id=section.id, group_id=group.id))
        audit_log(
            db=db,
            request=request,
            event_type="admin_grant_faq_access",
            actor_user_id=current.id,
            meta={"section_id": str(section.id), "group_id": str(group.id)},
        )
        db.commit()
    return {"ok": True, "created": existing is None}


@router.delete("/faq/{section_id}/access/{group_id}")
def revoke_faq_section_access(
    request: Request,
    section_id: str,
    group_id: str,
    db: Session = Depends(get_db),
    current: User = Depends(require_roles(UserRole.admin)),
):
    sid = _uuid(section_id, field="section_id")
    gid = _uuid(group_id, field="group_id")
    res = db.execute(delete(FaqSectionAccess).where(FaqSectionAccess.section_id == sid, FaqSectionAccess.group_id == gid))
    audit_log(
        db=db,
        request=request,
        event_type="admin_revoke_faq_access",
        actor_user_id=current.id,
        meta={"section_id": str(sid), "group_id": str(gid)},
    )
    db.commit()
    return {"ok": True, "deleted": int(res.rowcount or 0)}


@router.get("/stats", response_model=StatsResponse)
def stats(db: Session = Depends(get_db), _: User = Depends(require_roles(UserRole.admin))):
    return LearningService(db).stats()


@router.get("/leaderboard", response_model=LeaderboardResponse)
def leaderboard(
    limit: int = Query(default=3, ge=1, le=100),
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.admin)),
):
    return {"items": LearningService(db).leaderboard(limit=limit)}


@router.get("/activity-logs", response_model=ActivityLogResponse)
def activity_logs(
    limit: int = Query(default=100, ge=1, le=500),
    user_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: User = Depends(require_roles(UserRole.admin)),
):
    uid = _uuid(user_id, field="user_id") if user_id else None

    learning_stmt = select(LearningEvent, User.name).join(User, User.id == LearningEvent.user_id, isouter=True)
    security_stmt = select(SecurityAuditEvent, User.name).join(
        User, User.id == SecurityAuditEvent.actor_user_id, isouter=True
    )
    if uid is not None:
        learning_stmt = learning_stmt.where(LearningEvent.user_id == uid)
        security_stmt = security_stmt.where(SecurityAuditEvent.actor_user_id == uid)

    learning_rows = db.execute(learning_stmt.order_by(LearningEvent.created_at.desc()).limit(limit)).all()
    security_rows = db.execute(security_stmt.order_by(SecurityAuditEvent.created_at.desc()).limit(limit)).all()

    items = [
        {
            "id": str(e.id),
            "source": "learning",
            "user_id": str(e.user_id),
            "user_name": name,
            "event_type": e.type.value,
            "ref_id": str(e.ref_id) if e.ref_id else None,
            "meta": e.meta,
            "created_at": e.created_at.isoformat(),
        }
        for e, name in learning_rows
    ] + [
        {
            "id": str(e.id),
            "source": "security",
            "user_id": str(e.actor_user_id) if e.actor_user_id else None,
            "user_name": name,
            "event_type": e.event_type,
            "ref_id": str(e.target_user_id) if e.target_user_id else None,
            "meta": e.meta,
            "created_at": e.created_at.isoformat(),
        }
        for e, name in security_rows
    ]
    items.sort(key=lambda i: i["created_at"], reverse=True)
    return {"items": items[:limit]}
