import uuid
from typing import List
from fastapi import APIRouter, BackgroundTasks, Depends

from app.core.dependencies import (
    get_current_supplier, get_quote_service, get_notification_worker
)
from app.models.auth import Actor
from app.models.quote import (
    QuoteSubmit, QuoteSubmitResult, InboxItem, RecipientStatusRead
)
from app.services.quote import QuoteService
from app.services.notification import NotificationWorker


router = APIRouter()


@router.get(
    "",
    response_model=List[InboxItem],
    summary="Supplier RFQ Inbox",
    description="RFQs this supplier was invited to, newest first, with its own quote if any."
)
def get_inbox(
    current_supplier: Actor = Depends(get_current_supplier),
    service: QuoteService = Depends(get_quote_service)
):
    return service.supplier_inbox(current_supplier.supplier_id)


@router.post(
    "/{rfq_id}/view",
    response_model=RecipientStatusRead,
    summary="Mark RFQ Viewed"
)
def mark_viewed(
    rfq_id: uuid.UUID,
    current_supplier: Actor = Depends(get_current_supplier),
    service: QuoteService = Depends(get_quote_service)
):
    return service.mark_viewed(current_supplier.supplier_id, rfq_id)


@router.post(
    "/{rfq_id}/decline",
    response_model=RecipientStatusRead,
    summary="Decline RFQ",
    description="Tells the builder this supplier will not quote."
)
def decline_rfq(
    rfq_id: uuid.UUID,
    current_supplier: Actor = Depends(get_current_supplier),
    service: QuoteService = Depends(get_quote_service)
):
    return service.decline_rfq(current_supplier.supplier_id, rfq_id)


@router.put(
    "/{rfq_id}/quote",
    response_model=QuoteSubmitResult,
    summary="Submit or Update Quote",
    description="Creates this supplier's quote, or replaces its line items and terms if one exists."
)
def submit_quote(
    rfq_id: uuid.UUID,
    data: QuoteSubmit,
    background_tasks: BackgroundTasks,
    current_supplier: Actor = Depends(get_current_supplier),
    service: QuoteService = Depends(get_quote_service),
    worker: NotificationWorker = Depends(get_notification_worker)
):
    result = service.submit_quote(current_supplier.supplier_id, rfq_id, data)
    background_tasks.add_task(worker.dispatch_pending)
    return result
