from uuid import uuid4
from sqlalchemy import Column, String, Integer, DateTime, Enum, ForeignKey
from app.core.database import Base
from app.core.timezone import get_utc_now

USAGE_EVENT_TYPES = ("trial_clip", "paid_clip", "render")


class UsageEvent(Base):
    """Append-only accounting record. Rows are never updated or deleted."""
    __tablename__ = "usage_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)
    type = Column(Enum(*USAGE_EVENT_TYPES, name="usage_event_type"), nullable=False)
    count = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=get_utc_now, nullable=False)
