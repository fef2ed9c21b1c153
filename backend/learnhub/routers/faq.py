from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from learnhub.core.rate_limit import rate_limit
from learnhub.core.security import get_current_user
from learnhub.core.security_audit_log import audit_log
from learnhub.db.session import get_db
from learnhub.models.faq import FaqEntry, FaqNote
from learnhub.models.user import User
from learnhub.schemas.faq import (
    FaqEntryResponse,
    FaqListResponse,
    FaqNoteListResponse,
    FaqNoteRequest,
    FaqNoteResponse,
)
from learnhub.services.faq import FaqService, can_edit_note, note_item

router = APIRouter(prefix="/faq", tags=["faq"])


def _uuid(value: str, *, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"invalid {field}") from e


def _entry_item(e: FaqEntry) -> dict:
    return {
        "id": str(e.id),
        "parent_id": str(e.parent_id) if e.parent_id else None,
        "is_section": bool(e.is_section),
        "title": e.title,
        "description": e.description,
        "pdf_url": e.pdf_url,
        "order_index": int(e.order_index),
    }


def _visible_entry(db: Session, user: User, faq_id: str) -> FaqEntry:
    entry = FaqService(db).get_visible(user, _uuid(faq_id, field="faq_id"))
    if entry is None:
        raise HTTPException(status_code=404, detail="faq entry not found")
    return entry


def _editable_note(db: Session, user: User, note_id: str) -> FaqNote:
    note = db.scalar(select(FaqNote).where(FaqNote.id == _uuid(note_id, field="note_id")))
    if note is None or FaqService(db).get_visible(user, note.faq_id) is None:
        raise HTTPException(status_code=404, detail="note not found")
    if not can_edit_note(user, note):
        raise HTTPException(status_code=403, detail="only the author can change this note")
    return note


@router.get("", response_model=FaqListResponse)
def browse(
    section_id: str | None = None,
    q: str | None = Query(default=None, max_length=200),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    service = FaqService(db)
    sid = None
    if section_id:
        section = _visible_entry(db, user, section_id)
        if not section.is_section:
            raise HTTPException(status_code=400, detail="not a section")
        sid = section.id
    return {"items": [_entry_item(e) for e in service.browse(user, section_id=sid, query=q)]}


@router.get("/{faq_id}", response_model=FaqEntryResponse)
def get_entry(faq_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _entry_item(_visible_entry(db, user, faq_id))


@router.get("/{faq_id}/notes", response_model=FaqNoteListResponse)
def list_notes(faq_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    entry = _visible_entry(db, user, faq_id)
    return {"items": FaqService(db).notes(user, entry)}


@router.post("/{faq_id}/notes", response_model=FaqNoteResponse)
def add_note(
    faq_id: str,
    body: FaqNoteRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="faq_notes", limit=30, window_seconds=60),
):
    entry = _visible_entry(db, user, faq_id)
    text = body.note.strip()
    if not text:
        raise HTTPException(status_code=400, detail="note is empty")
    note = FaqService(db).add_note(user, entry, text)
    return note_item(note, user, author_name=user.full_name or user.name)


@router.patch("/notes/{note_id}", response_model=FaqNoteResponse)
def edit_note(
    request: Request,
    note_id: str,
    body: FaqNoteRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    note = _editable_note(db, user, note_id)
    text = body.note.strip()
    if not text:
        raise HTTPException(status_code=400, detail="note is empty")

    note.note = text
    note.updated_at = datetime.utcnow()
    if note.user_id != user.id:
        audit_log(
            db=db,
            request=request,
            event_type="admin_edit_faq_note",
            actor_user_id=user.id,
            target_user_id=note.user_id,
            meta={"note_id": str(note.id), "faq_id": str(note.faq_id)},
        )
    db.commit()
    db.refresh(note)
    author = db.scalar(select(User).where(User.id == note.user_id))
    return note_item(note, user, author_name=(author.full_name or author.name) if author else None)


@router.delete("/notes/{note_id}")
def delete_note(
    request: Request,
    note_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    note = _editable_note(db, user, note_id)
    if note.user_id != user.id:
        audit_log(
            db=db,
            request=request,
            event_type="admin_delete_faq_note",
            actor_user_id=user.id,
            target_user_id=note.user_id,
            meta={"note_id": str(note.id), "faq_id": str(note.faq_id)},
        )
    db.delete(note)
    db.commit()
    return {"ok": True}
