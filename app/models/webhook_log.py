from uuid import uuid4
from sqlalchemy import Column, String, DateTime, Enum, JSON
from app.core.database import Base
from app.core.timezone import get_utc_now

WEBHOOK_PROVIDERS = ("stripe", "runway", "shotstack")


class WebhookLog(Base):
    """Landing table for inbound provider callbacks. Insert-only."""
    __tablename__ = "webhook_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    provider = Column(Enum(*WEBHOOK_PROVIDERS, name="webhook_provider"), nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(String(32), nullable=False, default="received")
    created_at = Column(DateTime(timezone=True), default=get_utc_now, nullable=False)
