from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func
from sqlmodel import Session, select
from loguru import logger

from app.db.core import get_session
from app.db.schema import NotificationOutbox, OutboxStatus

router = APIRouter()


@router.get("/", status_code=status.HTTP_200_OK)
def index():
    return {"status": "RFQ service is running"}


@router.get("/readiness", status_code=status.HTTP_200_OK)
def readiness_check(session: Session = Depends(get_session)):
    """Database round-trip plus the size of the undelivered notification backlog."""
    try:
        queued = session.exec(
            select(func.count()).select_from(NotificationOutbox)
            .where(NotificationOutbox.status == OutboxStatus.QUEUED)
        ).one()
    except Exception:
        logger.exception("Database readiness check failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not ready"
        )

    return {"status": "ready", "database": "online", "queued_notifications": queued}
