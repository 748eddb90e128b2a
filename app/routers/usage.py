from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.auth import get_current_user
from app.core.database import get_db
from app.models.project import Project
from app.schemas.project import UsageSummary
from app.services.trial_service import get_free_clips_remaining, usage_totals

router = APIRouter(prefix="/api/v1/usage", tags=["usage"])


@router.get("/summary", response_model=UsageSummary)
def get_usage_summary(
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Remaining free clips, usage totals and project counts for the dashboard."""
    rows = (
        db.query(Project.status, func.count(Project.id))
        .filter(Project.user_id == user_id)
        .group_by(Project.status)
        .all()
    )
    return UsageSummary(
        user_id=user_id,
        free_clips_remaining=get_free_clips_remaining(db, user_id),
        usage=usage_totals(db, user_id),
        projects_by_status={status: count for status, count in rows},
    )
