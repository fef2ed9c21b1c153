from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from learnhub.core.rate_limit import rate_limit
from learnhub.core.security import get_current_user
from learnhub.db.session import get_db
from learnhub.models.certificate import Certificate
from learnhub.models.course import Course
from learnhub.models.user import User
from learnhub.schemas.certificate import CertificateVerifyResponse, MyCertificatesResponse

router = APIRouter(prefix="/certificates", tags=["certificates"])


@router.get("", response_model=MyCertificatesResponse)
def my_certificates(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    rows = db.execute(
        select(Certificate, Course.title)
        .join(Course, Course.id == Certificate.course_id, isouter=True)
        .where(Certificate.user_id == user.id)
        .order_by(Certificate.issued_at.desc())
    ).all()
    return {
        "items": [
            {
                "id": str(c.id),
                "course_id": str(c.course_id),
                "course_title": title,
                "certificate_number": c.certificate_number,
                "issued_at": c.issued_at.isoformat(),
            }
            for c, title in rows
        ]
    }


@router.get("/verify/{certificate_number}", response_model=CertificateVerifyResponse)
def verify_certificate(
    certificate_number: str,
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="certificate_verify", limit=30, window_seconds=60),
):
    number = str(certificate_number or "").strip().upper()
    row = db.execute(
        select(Certificate, User.full_name, User.name, Course.title)
        .join(User, User.id == Certificate.user_id)
        .join(Course, Course.id == Certificate.course_id, isouter=True)
        .where(Certificate.certificate_number == number)
    ).first()
    if row is None:
        raise HTTPException(status_code=404, detail="certificate not found")

    cert, full_name, name, course_title = row
    return {
        "valid": True,
        "certificate_number": cert.certificate_number,
        "holder_name": full_name or name,
        "course_title": course_title,
        "issued_at": cert.issued_at.isoformat(),
    }
