import uuid
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, status

from app.core.dependencies import (
    get_current_actor, get_rfq_service, get_acceptance_service, get_notification_worker
)
from app.models.auth import Actor
from app.models.rfq import (
    RfqCreate, RfqCreateResult, RfqRead, RfqListItem,
    RecipientRefreshResult, RfqStatusRead
)
from app.models.quote import QuoteList, AcceptQuotePayload, AcceptanceResult
from app.services.rfq import RfqService
from app.services.acceptance import AcceptanceService
from app.services.notification import NotificationWorker


router = APIRouter()


@router.post(
    "",
    response_model=RfqCreateResult,
    status_code=status.HTTP_201_CREATED,
    summary="Create RFQ",
    description="Validates the items, matches up to 10 suppliers and stores the request, items and recipients atomically. Suppliers are notified in the background."
)
def create_rfq(
    data: RfqCreate,
    background_tasks: BackgroundTasks,
    current_actor: Actor = Depends(get_current_actor),
    service: RfqService = Depends(get_rfq_service),
    worker: NotificationWorker = Depends(get_notification_worker)
):
    result = service.create_rfq(current_actor, data)
    if result.recipient_ids:
        background_tasks.add_task(worker.dispatch_pending)
    return result


@router.get(
    "",
    response_model=List[RfqListItem],
    summary="List Project RFQs",
    description="Returns the caller's RFQs for a project, newest first."
)
def list_rfqs(
    project_id: uuid.UUID,
    current_actor: Actor = Depends(get_current_actor),
    service: RfqService = Depends(get_rfq_service)
):
    return service.list_project_rfqs(current_actor, project_id)


@router.get(
    "/{rfq_id}",
    response_model=RfqRead,
    summary="Get RFQ Details"
)
def get_rfq(
    rfq_id: uuid.UUID,
    current_actor: Actor = Depends(get_current_actor),
    service: RfqService = Depends(get_rfq_service)
):
    return service.get_rfq(current_actor, rfq_id)


@router.get(
    "/{rfq_id}/quotes",
    response_model=QuoteList,
    summary="Compare Quotes",
    description="All supplier quotes for the RFQ with per-item prices, cheapest first."
)
def get_quotes(
    rfq_id: uuid.UUID,
    current_actor: Actor = Depends(get_current_actor),
    service: RfqService = Depends(get_rfq_service)
):
    return service.get_quotes(current_actor, rfq_id)


@router.post(
    "/{rfq_id}/publish",
    response_model=RfqCreateResult,
    summary="Publish Draft RFQ",
    description="Moves a draft to open, matches suppliers and notifies them."
)
def publish_rfq(
    rfq_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_actor: Actor = Depends(get_current_actor),
    service: RfqService = Depends(get_rfq_service),
    worker: NotificationWorker = Depends(get_notification_worker)
):
    result = service.publish_rfq(current_actor, rfq_id)
    if result.recipient_ids:
        background_tasks.add_task(worker.dispatch_pending)
    return result


@router.post(
    "/{rfq_id}/recipients/refresh",
    response_model=RecipientRefreshResult,
    summary="Retry Supplier Matching",
    description="Invites newly matching suppliers to an open RFQ, up to the matching cap."
)
def refresh_recipients(
    rfq_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_actor: Actor = Depends(get_current_actor),
    service: RfqService = Depends(get_rfq_service),
    worker: NotificationWorker = Depends(get_notification_worker)
):
    result = service.refresh_recipients(current_actor, rfq_id)
    if result.added_recipient_ids:
        background_tasks.add_task(worker.dispatch_pending)
    return result


@router.post(
    "/{rfq_id}/cancel",
    response_model=RfqStatusRead,
    summary="Cancel RFQ"
)
def cancel_rfq(
    rfq_id: uuid.UUID,
    current_actor: Actor = Depends(get_current_actor),
    service: RfqService = Depends(get_rfq_service)
):
    return service.cancel_rfq(current_actor, rfq_id)


@router.post(
    "/{rfq_id}/order",
    response_model=RfqStatusRead,
    summary="Confirm Order",
    description="Records that the order with the winning supplier is confirmed."
)
def mark_ordered(
    rfq_id: uuid.UUID,
    current_actor: Actor = Depends(get_current_actor),
    service: RfqService = Depends(get_rfq_service)
):
    return service.mark_ordered(current_actor, rfq_id)


@router.post(
    "/{rfq_id}/deliver",
    response_model=RfqStatusRead,
    summary="Confirm Delivery"
)
def mark_delivered(
    rfq_id: uuid.UUID,
    current_actor: Actor = Depends(get_current_actor),
    service: RfqService = Depends(get_rfq_service)
):
    return service.mark_delivered(current_actor, rfq_id)


@router.post(
    "/{rfq_id}/quotes/{quote_id}/accept",
    response_model=AcceptanceResult,
    summary="Accept Quote",
    description="Accepts one quote and rejects every other submitted quote. Exactly one acceptance can succeed per RFQ."
)
def accept_quote(
    rfq_id: uuid.UUID,
    quote_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    payload: Optional[AcceptQuotePayload] = None,
    current_actor: Actor = Depends(get_current_actor),
    service: AcceptanceService = Depends(get_acceptance_service),
    worker: NotificationWorker = Depends(get_notification_worker)
):
    instructions = payload.delivery_instructions if payload else None
    result = service.accept_quote(current_actor, rfq_id, quote_id, instructions)
    background_tasks.add_task(worker.dispatch_pending)
    return result
