import logging
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.core.timezone import get_utc_now
from app.models.trial import Trial
from app.models.usage_event import UsageEvent

logger = logging.getLogger(__name__)


def decrement_trial_clips(db: Session, user_id: str) -> bool:
    """
    Take one free clip from the user's trial.

    Single conditional UPDATE so concurrent completions can never push the
    counter below zero. Returns False when the user has no trial row or no
    clips left; the caller's transaction decides whether it commits.
    """
    result = db.execute(
        update(Trial)
        .where(Trial.user_id == user_id, Trial.free_clips_remaining > 0)
        .values(
            free_clips_remaining=Trial.free_clips_remaining - 1,
            updated_at=get_utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.warning("Trial for user %s not decremented (missing or exhausted)", user_id)
        return False
    return True


def get_free_clips_remaining(db: Session, user_id: str) -> Optional[int]:
    trial = db.query(Trial).filter(Trial.user_id == user_id).first()
    return trial.free_clips_remaining if trial else None


def record_usage(
    db: Session,
    user_id: str,
    event_type: str,
    project_id: Optional[str] = None,
    count: int = 1,
) -> UsageEvent:
    event = UsageEvent(user_id=user_id, project_id=project_id, type=event_type, count=count)
    db.add(event)
    return event


def usage_totals(db: Session, user_id: str) -> dict:
    """Summed usage counts per event type for one user."""
    rows = (
        db.query(UsageEvent.type, func.coalesce(func.sum(UsageEvent.count), 0))
        .filter(UsageEvent.user_id == user_id)
        .group_by(UsageEvent.type)
        .all()
    )
    return {event_type: int(total) for event_type, total in rows}
