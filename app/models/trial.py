from uuid import uuid4
from sqlalchemy import Column, String, Integer, DateTime, CheckConstraint
from app.core.database import Base
from app.core.timezone import get_utc_now


class Trial(Base):
    __tablename__ = "trials"
    __table_args__ = (
        CheckConstraint("free_clips_remaining >= 0", name="ck_trials_free_clips_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String(36), nullable=False, unique=True)
    free_clips_remaining = Column(Integer, nullable=False, default=3)
    created_at = Column(DateTime(timezone=True), default=get_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=get_utc_now, onupdate=get_utc_now, nullable=False)
