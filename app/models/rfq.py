from typing import List, Optional
from datetime import datetime, date
from decimal import Decimal
from uuid import UUID
from sqlmodel import SQLModel, Field

from app.db.schema import RfqStatus, RecipientStatus, QuoteStatus


class RfqItemInput(SQLModel):
    """
    One material line in a new RFQ.
    Quantity and catalog membership are checked by the service so the
    caller gets field-level errors for every bad line at once.
    """
    material_key: str = Field(
        description="Catalog key of the material. Example: 'cement_50kg'"
    )
    quantity: Decimal = Field(
        description="How much is needed. Must be greater than zero. Example: 100"
    )
    unit: Optional[str] = Field(
        default=None,
        description="Defaults to the catalog unit. Example: 'bag'"
    )
    specifications: Optional[str] = Field(
        default=None,
        description="Free-text requirements. Example: '32.5N only'"
    )


class RfqCreate(SQLModel):
    project_id: UUID = Field(description="The project the materials are for.")
    items: List[RfqItemInput] = Field(
        default_factory=list,
        description="At least one material line."
    )
    delivery_address: Optional[str] = Field(
        default=None,
        max_length=500,
        description="Site address, also used to match suppliers. Example: '12 Main St, Harare'"
    )
    required_by: Optional[date] = Field(
        default=None,
        description="Date the materials must be on site."
    )
    notes: Optional[str] = Field(default=None, max_length=2000)
    publish: bool = Field(
        default=True,
        description="False saves a draft; suppliers are matched and notified on publish."
    )


class RfqCreateResult(SQLModel):
    rfq_id: UUID
    status: RfqStatus
    item_ids: List[UUID] = []
    recipient_ids: List[UUID] = []
    matched_supplier_ids: List[UUID] = []


class RfqItemRead(SQLModel):
    id: UUID
    material_key: str
    material_name: Optional[str] = None
    quantity: Decimal
    unit: Optional[str] = None
    specifications: Optional[str] = None


class RfqRecipientRead(SQLModel):
    id: UUID
    supplier_id: UUID
    supplier_name: Optional[str] = None
    status: RecipientStatus
    notification_channels: List[str] = []
    notified_at: datetime
    first_viewed_at: Optional[datetime] = None


class RfqQuoteSummary(SQLModel):
    """Headline figures of one quote, shown on the RFQ detail page."""
    quote_id: UUID
    supplier_id: UUID
    status: QuoteStatus
    total_usd: Decimal
    submitted_at: datetime


class RfqRead(SQLModel):
    """
    Full RFQ view for the requester.
    """
    id: UUID
    project_id: UUID
    user_id: UUID
    status: RfqStatus
    delivery_address: Optional[str] = None
    required_by: Optional[date] = None
    notes: Optional[str] = None
    accepted_quote_id: Optional[UUID] = None
    delivery_instructions: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime

    items: List[RfqItemRead] = []
    recipients: List[RfqRecipientRead] = []
    quotes: List[RfqQuoteSummary] = []


class RfqListItem(SQLModel):
    id: UUID
    project_id: UUID
    status: RfqStatus
    delivery_address: Optional[str] = None
    required_by: Optional[date] = None
    item_count: int = 0
    quote_count: int = 0
    created_at: datetime
    expires_at: datetime


class RecipientRefreshResult(SQLModel):
    rfq_id: UUID
    added_recipient_ids: List[UUID] = []
    added_supplier_ids: List[UUID] = []


class RfqStatusRead(SQLModel):
    rfq_id: UUID
    status: RfqStatus
