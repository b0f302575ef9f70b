from typing import List, Optional
from datetime import datetime, date
from decimal import Decimal
from uuid import UUID
from sqlmodel import SQLModel, Field

from app.db.schema import QuoteStatus, RecipientStatus, RfqStatus


# ==========================================================================
# SUBMISSION
# ==========================================================================


class QuoteItemInput(SQLModel):
    rfq_item_id: UUID = Field(description="The RFQ line being priced.")
    unit_price_usd: Decimal = Field(
        description="Price per unit in USD. Must be greater than zero. Example: 10.50"
    )
    unit_price_zwg: Optional[Decimal] = Field(
        default=None,
        description="Optional price per unit in ZWG."
    )
    available_quantity: Decimal = Field(
        description="How much of the line the supplier can deliver. Example: 100"
    )
    notes: Optional[str] = Field(default=None, max_length=1000)


class QuoteSubmit(SQLModel):
    """
    A supplier's offer. Lines the supplier cannot supply are simply left out.
    Submitting again replaces the previous offer.
    """
    items: List[QuoteItemInput] = Field(default_factory=list)
    delivery_days: Optional[int] = Field(
        default=None,
        description="Days from acceptance to delivery. Example: 3"
    )
    valid_until: Optional[date] = Field(
        default=None,
        description="Last day the prices hold. Acceptance after this date is refused."
    )
    notes: Optional[str] = Field(default=None, max_length=2000)


class QuoteSubmitResult(SQLModel):
    quote_id: UUID
    status: QuoteStatus
    total_usd: Decimal
    total_zwg: Optional[Decimal] = None
    replaced: bool = Field(
        default=False,
        description="True when an earlier quote from this supplier was updated in place."
    )


# ==========================================================================
# COMPARISON (builder side)
# ==========================================================================


class QuoteLineRead(SQLModel):
    rfq_item_id: UUID
    material_key: Optional[str] = None
    unit_price_usd: Decimal
    unit_price_zwg: Optional[Decimal] = None
    available_quantity: Decimal


class QuoteView(SQLModel):
    quote_id: UUID
    supplier_id: UUID
    supplier_name: Optional[str] = None
    status: QuoteStatus
    items: List[QuoteLineRead] = []
    total_usd: Decimal
    total_zwg: Optional[Decimal] = None
    delivery_days: Optional[int] = None
    valid_until: Optional[date] = None
    notes: Optional[str] = None
    submitted_at: datetime


class QuoteList(SQLModel):
    quotes: List[QuoteView] = []


# ==========================================================================
# ACCEPTANCE
# ==========================================================================


class AcceptQuotePayload(SQLModel):
    delivery_instructions: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="Passed on to the winning supplier. Example: 'Gate 2, ask for Tendai'"
    )


class AcceptanceResult(SQLModel):
    accepted_quote_id: UUID
    rejected_quote_ids: List[UUID] = []
    rfq_status: RfqStatus


# ==========================================================================
# SUPPLIER INBOX
# ==========================================================================


class InboxItem(SQLModel):
    """An RFQ as seen by one invited supplier."""
    rfq_id: UUID
    rfq_status: RfqStatus
    recipient_status: RecipientStatus
    delivery_address: Optional[str] = None
    required_by: Optional[date] = None
    expires_at: datetime
    item_count: int = 0
    notified_at: datetime
    quote_id: Optional[UUID] = None
    quote_status: Optional[QuoteStatus] = None
    quote_total_usd: Optional[Decimal] = None


class RecipientStatusRead(SQLModel):
    rfq_id: UUID
    supplier_id: UUID
    status: RecipientStatus
    first_viewed_at: Optional[datetime] = None
