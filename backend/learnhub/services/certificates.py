from __future__ import annotations

import logging
import secrets
import string
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from learnhub.core.config import settings
from learnhub.models.audit import LearningEvent, LearningEventType
from learnhub.models.certificate import Certificate

log = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


class CertificateIssueError(RuntimeError):
    pass


def _to_base36(value: int) -> str:
    if value <= 0:
        return "0"
    out: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def generate_certificate_number(now: datetime | None = None) -> str:
    """Build a certificate number like ``CERT-2026-K3F9QZ-MGW1X2A4``.

    The random block comes from :mod:`secrets`, the tail is the issue time in
    milliseconds. Uniqueness is still enforced by the database constraint.
    """
    now = now or datetime.now(timezone.utc)
    prefix = str(settings.certificate_number_prefix or "CERT").strip().upper()
    random_part = "".join(secrets.choice(_BASE36) for _ in range(6))
    millis = int(now.timestamp() * 1000)
    return f"{prefix}-{now.year}-{random_part}-{_to_base36(millis)}"


def get_certificate(db: Session, *, user_id: uuid.UUID, course_id: uuid.UUID) -> Certificate | None:
    return db.scalar(
        select(Certificate).where(Certificate.user_id == user_id, Certificate.course_id == course_id)
    )


def issue_certificate_if_missing(db: Session, *, user_id: uuid.UUID, course_id: uuid.UUID) -> Certificate:
    """Return the learner's certificate for a course, creating it once.

    Runs inside the caller's transaction; the caller commits. Each insert is
    wrapped in a savepoint so a unique violation only discards that insert.
    """
    existing = get_certificate(db, user_id=user_id, course_id=course_id)
    if existing is not None:
        return existing

    retries = max(1, int(settings.certificate_number_retries))
    for attempt in range(1, retries + 1):
        cert = Certificate(
            user_id=user_id,
            course_id=course_id,
            certificate_number=generate_certificate_number(),
            issued_at=datetime.utcnow(),
        )
        try:
            with db.begin_nested():
                db.add(cert)
                db.flush()
        except IntegrityError:
            # Either a concurrent issue for the same (user, course) or a number collision.
            existing = get_certificate(db, user_id=user_id, course_id=course_id)
            if existing is not None:
                return existing
            log.warning("certificate number collision, retrying", extra={"attempt": attempt})
            continue

        db.add(
            LearningEvent(
                user_id=user_id,
                type=LearningEventType.certificate_issued,
                ref_id=course_id,
                meta=cert.certificate_number,
            )
        )
        log.info("certificate issued user=%s course=%s number=%s", user_id, course_id, cert.certificate_number)
        return cert

    raise CertificateIssueError(f"could not allocate a unique certificate number after {retries} attempts")
