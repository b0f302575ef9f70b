import uuid
from typing import List
from fastapi import APIRouter, Depends

from app.core.dependencies import (
    get_current_actor, get_notification_operator, get_notification_service,
    get_notification_worker
)
from app.db.schema import NotificationSubject
from app.models.auth import Actor
from app.models.notification import DeliveryLogRead, DispatchResult
from app.services.notification import NotificationService, NotificationWorker


router = APIRouter()


@router.post(
    "/dispatch",
    response_model=DispatchResult,
    summary="Drain Notification Outbox",
    description="Delivers queued notifications now. Used after restarts or by a scheduler."
)
def dispatch_notifications(
    current_actor: Actor = Depends(get_notification_operator),
    worker: NotificationWorker = Depends(get_notification_worker)
):
    summary = worker.dispatch_pending()
    return DispatchResult(**summary.model_dump())


@router.get(
    "/deliveries",
    response_model=List[DeliveryLogRead],
    summary="Notification Delivery Log",
    description="Delivery attempts for one RFQ, quote or acceptance, oldest first. Suppliers only see attempts addressed to them."
)
def list_deliveries(
    subject_type: NotificationSubject,
    subject_id: uuid.UUID,
    current_actor: Actor = Depends(get_current_actor),
    service: NotificationService = Depends(get_notification_service)
):
    return service.list_deliveries(current_actor, subject_type, subject_id)
