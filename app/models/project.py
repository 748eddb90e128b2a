from uuid import uuid4
from sqlalchemy import Column, String, Enum, DateTime, Text
from sqlalchemy.orm import relationship
from app.core.database import Base
from app.core.timezone import get_utc_now

PROJECT_STATUSES = ("idle", "queued", "rendering", "done", "error")
PROJECT_ASPECTS = ("9x16", "1x1", "16x9")


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String(36), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    aspect = Column(Enum(*PROJECT_ASPECTS, name="project_aspect"), nullable=False, default="9x16")
    theme = Column(String(64), nullable=True, default="clean")
    listing_url = Column(Text, nullable=True)

    status = Column(Enum(*PROJECT_STATUSES, name="project_status"), nullable=False, default="queued")

    created_at = Column(DateTime(timezone=True), default=get_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=get_utc_now, onupdate=get_utc_now, nullable=False)

    assets = relationship(
        "Asset",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Asset.sort_order",
    )
