from __future__ import annotations

from pydantic import BaseModel, Field


class FaqEntryResponse(BaseModel):
    id: str
    parent_id: str | None
    is_section: bool
    title: str
    description: str | None
    pdf_url: str | None
    order_index: int


class FaqListResponse(BaseModel):
    items: list[FaqEntryResponse]


class FaqNoteRequest(BaseModel):
    note: str = Field(min_length=1, max_length=5000)


class FaqNoteResponse(BaseModel):
    id: str
    faq_id: str
    user_id: str
    author_name: str | None
    note: str
    created_at: str
    updated_at: str
    can_edit: bool


class FaqNoteListResponse(BaseModel):
    items: list[FaqNoteResponse]


class FaqEntryCreateRequest(BaseModel):
    title: str
    description: str | None = None
    pdf_url: str | None = None
    parent_id: str | None = None
    is_section: bool = False
    order_index: int = 0
