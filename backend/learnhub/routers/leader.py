from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from learnhub.core.security import require_roles
from learnhub.db.session import get_db
from learnhub.models.user import User, UserRole
from learnhub.schemas.admin import GroupReportResponse
from learnhub.services.learning import LearningService

router = APIRouter(prefix="/leader", tags=["leader"])


@router.get("/group", response_model=GroupReportResponse)
def my_group(db: Session = Depends(get_db), leader: User = Depends(require_roles(UserRole.leader))):
    report = LearningService(db).group_report(leader)
    if report is None:
        raise HTTPException(status_code=404, detail="no group led by this user")
    return report
