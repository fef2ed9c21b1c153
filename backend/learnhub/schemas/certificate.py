from __future__ import annotations

from pydantic import BaseModel


class CertificateItem(BaseModel):
    id: str
    course_id: str
    course_title: str | None
    certificate_number: str
    issued_at: str


class MyCertificatesResponse(BaseModel):
    items: list[CertificateItem]


class CertificateVerifyResponse(BaseModel):
    valid: bool
    certificate_number: str
    holder_name: str | None
    course_title: str | None
    issued_at: str
