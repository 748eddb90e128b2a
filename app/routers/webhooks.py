import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.models.webhook_log import WEBHOOK_PROVIDERS, WebhookLog

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

logger = logging.getLogger(__name__)


@router.post("/{provider}")
def receive_webhook(
    provider: str,
    payload: Any = Body(...),
    db: Session = Depends(get_db),
):
    """
    Landing endpoint for provider callbacks (payments, render backends).

    The payload is stored verbatim as an insert-only log row; processing
    happens elsewhere.
    """
    if provider not in WEBHOOK_PROVIDERS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid provider. Must be one of: {', '.join(WEBHOOK_PROVIDERS)}"
        )

    log = WebhookLog(provider=provider, payload=payload, status="received")
    db.add(log)
    db.commit()

    logger.info("Webhook from %s stored as %s", provider, log.id)
    return {"received": True, "id": log.id}
