from typing import Optional
from datetime import datetime
from uuid import UUID
from sqlmodel import SQLModel

from app.db.schema import NotificationChannel, NotificationSubject


class DeliveryLogRead(SQLModel):
    """One delivery attempt, successful or not."""
    id: UUID
    outbox_id: Optional[UUID] = None
    subject_type: NotificationSubject
    subject_id: UUID
    channel: NotificationChannel
    recipient: str
    attempted_at: datetime
    success: bool
    error_detail: Optional[str] = None


class DispatchResult(SQLModel):
    processed: int = 0
    sent: int = 0
    failed: int = 0
