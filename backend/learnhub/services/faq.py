from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from learnhub.models.faq import FaqEntry, FaqNote, FaqSectionAccess
from learnhub.models.user import User, UserRole
from learnhub.services.access import user_group_ids


def _root_id(entry: FaqEntry, by_id: Dict[uuid.UUID, FaqEntry]) -> uuid.UUID | None:
    """Top-level ancestor of an entry; ``None`` for a top-level document."""
    if entry.parent_id is None:
        return entry.id if entry.is_section else None
    seen = {entry.id}
    current = entry.parent_id
    while current is not None and current not in seen:
        seen.add(current)
        parent = by_id.get(current)
        if parent is None or parent.parent_id is None:
            return current
        current = parent.parent_id
    return current


class FaqService:
    """Knowledge base reads and the collaborative notes on its documents.

    A learner outside every group sees the whole tree. A group member sees
    the top-level sections granted to one of their groups (and everything
    below them) plus documents that sit outside any section. Admins see all.
    """

    def __init__(self, db: Session):
        self.db = db

    def visible_entries(self, user: User) -> List[FaqEntry]:
        entries = list(self.db.scalars(select(FaqEntry).order_by(FaqEntry.order_index, FaqEntry.title)))
        if user.role == UserRole.admin:
            return entries

        groups = user_group_ids(self.db, user)
        if not groups:
            return entries

        allowed = set(self.db.scalars(select(FaqSectionAccess.section_id).where(FaqSectionAccess.group_id.in_(groups))))
        by_id = {e.id: e for e in entries}
        visible = []
        for e in entries:
            root = _root_id(e, by_id)
            if root is None or root in allowed:
                visible.append(e)
        return visible

    def get_visible(self, user: User, faq_id: uuid.UUID) -> FaqEntry | None:
        return next((e for e in self.visible_entries(user) if e.id == faq_id), None)

    def browse(self, user: User, *, section_id: uuid.UUID | None = None, query: str | None = None) -> List[FaqEntry]:
        entries = self.visible_entries(user)
        q = str(query or "").strip().lower()
        if q:
            entries = [e for e in entries if q in e.title.lower() or q in (e.description or "").lower()]
        elif section_id is None:
            return [e for e in entries if e.parent_id is None]
        if section_id is not None:
            entries = [e for e in entries if e.parent_id == section_id]
        return entries

    def notes(self, user: User, entry: FaqEntry) -> List[Dict[str, Any]]:
        rows = self.db.execute(
            select(FaqNote, User.name, User.full_name)
            .join(User, User.id == FaqNote.user_id)
            .where(FaqNote.faq_id == entry.id)
            .order_by(FaqNote.created_at.desc())
        ).all()
        return [note_item(n, user, author_name=full_name or name) for n, name, full_name in rows]

    def add_note(self, user: User, entry: FaqEntry, text: str) -> FaqNote:
        now = datetime.utcnow()
        note = FaqNote(faq_id=entry.id, user_id=user.id, note=text, created_at=now, updated_at=now)
        self.db.add(note)
        self.db.commit()
        self.db.refresh(note)
        return note


def can_edit_note(user: User, note: FaqNote) -> bool:
    return note.user_id == user.id or user.role == UserRole.admin


def note_item(note: FaqNote, user: User, *, author_name: str | None) -> Dict[str, Any]:
    return {
        "id": str(note.id),
        "faq_id": str(note.faq_id),
        "user_id": str(note.user_id),
        "author_name": author_name,
        "note": note.note,
        "created_at": note.created_at.isoformat(),
        "updated_at": note.updated_at.isoformat(),
        "can_edit": can_edit_note(user, note),
    }
