from typing import Optional, List
from datetime import datetime, date, timezone
from decimal import Decimal
import uuid
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship, JSON, Column
from enum import Enum


def utcnow() -> datetime:
    """Naive UTC timestamp. All stored datetimes are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RfqStatus(str, Enum):
    DRAFT = "draft"            # Items saved, suppliers not yet contacted
    OPEN = "open"              # Sent to matched suppliers
    QUOTED = "quoted"          # At least one quote received (informational)
    ACCEPTED = "accepted"      # Builder accepted exactly one quote
    ORDERED = "ordered"        # Order confirmed with the winning supplier
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class QuoteStatus(str, Enum):
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class RecipientStatus(str, Enum):
    NOTIFIED = "notified"
    VIEWED = "viewed"
    QUOTED = "quoted"
    DECLINED = "declined"


class VerificationTier(str, Enum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    TRUSTED = "trusted"
    PREMIUM = "premium"


class NotificationChannel(str, Enum):
    EMAIL = "email"
    WHATSAPP = "whatsapp"
    PUSH = "push"


class NotificationEvent(str, Enum):
    NEW_RFQ = "new_rfq"
    QUOTE_SUBMITTED = "quote_submitted"
    QUOTE_ACCEPTED = "quote_accepted"
    QUOTE_REJECTED = "quote_rejected"


class NotificationSubject(str, Enum):
    RFQ = "rfq"
    QUOTE = "quote"
    ACCEPTANCE = "acceptance"


class OutboxStatus(str, Enum):
    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class TimestampMixin(SQLModel):
    """
    Standard audit timestamps for mutable records.
    """
    created_at: datetime = Field(
        default_factory=utcnow,
        description="The exact UTC timestamp when this record was first persisted. Example: '2026-10-18 14:30:00'"
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column_kwargs={"onupdate": utcnow},
        description="The exact UTC timestamp when this record was last modified. Updates automatically."
    )


# ==========================================================================
# DIRECTORY (read-only to the RFQ workflow)
# ==========================================================================


class Supplier(TimestampMixin, SQLModel, table=True):
    """
    A materials supplier as published by the supplier directory.
    Vetting (verification tier, rating) is maintained by the admin workflow;
    the RFQ engine only reads these rows for matching and contact details.
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        description="The unique identifier for the supplier."
    )
    user_id: Optional[uuid.UUID] = Field(
        default=None,
        index=True,
        description="The account that manages this supplier, if any. Links to UserProfile for notification preferences."
    )
    name: str = Field(
        index=True,
        description="Trading name of the supplier. Example: 'Harare Building Supplies'"
    )
    location: Optional[str] = Field(
        default=None,
        description="Town or suburb the supplier operates from. Example: 'Harare'"
    )
    physical_address: Optional[str] = Field(
        default=None,
        description="Street address of the yard or store. Example: '45 Seke Road, Graniteside, Harare'"
    )
    delivery_radius_km: Optional[int] = Field(
        default=50,
        description="How far the supplier delivers, in kilometres. Not yet used for filtering."
    )
    material_categories: List[str] = Field(
        default_factory=list,
        sa_column=Column(JSON),
        description="Supplier category labels. Example: ['Cement & Concrete', 'Aggregates & Sand']"
    )
    verification_status: VerificationTier = Field(
        default=VerificationTier.UNVERIFIED,
        description="Trust level assigned by the vetting workflow. Example: 'trusted'"
    )
    rating: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=5.0,
        description="Average customer rating from 0 to 5. Example: 4.5"
    )
    response_rate: Optional[float] = Field(
        default=None,
        description="Share of RFQs answered. Not populated yet."
    )
    contact_email: Optional[str] = Field(
        default=None,
        description="Where RFQ emails are sent. Example: 'sales@hbs.co.zw'"
    )
    contact_phone: Optional[str] = Field(
        default=None,
        description="WhatsApp-capable number in international format. Example: '+263771234567'"
    )
    is_active: bool = Field(
        default=True,
        description="Soft delete flag. Inactive suppliers are never matched."
    )


class UserProfile(TimestampMixin, SQLModel, table=True):
    """
    Contact details and notification preferences of a platform account
    (builder or supplier user). Owned by the account service.
    """
    id: uuid.UUID = Field(
        primary_key=True,
        description="Same as the authenticated user id."
    )
    full_name: Optional[str] = Field(default=None)
    email: Optional[str] = Field(default=None)
    phone_number: Optional[str] = Field(default=None)

    notify_email: bool = Field(default=True)
    notify_whatsapp: bool = Field(default=False)
    notify_push: bool = Field(default=False)
    notify_rfq: bool = Field(
        default=True,
        description="Supplier side: receive new RFQ invitations."
    )
    notify_quote_updates: bool = Field(
        default=True,
        description="Receive quote submitted / accepted / rejected updates."
    )


# ==========================================================================
# RFQ WORKFLOW
# ==========================================================================


class RfqRequest(TimestampMixin, SQLModel, table=True):
    """
    A builder's request for quotation on a set of materials.
    Never deleted: cancellation and expiry are status changes.
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        description="The unique identifier for the RFQ."
    )
    project_id: uuid.UUID = Field(
        index=True,
        description="The construction project the materials are for."
    )
    user_id: uuid.UUID = Field(
        index=True,
        description="The requester (builder). Only this user may accept a quote."
    )
    delivery_address: Optional[str] = Field(
        default=None,
        description="Where the materials must be delivered. Example: '12 Main St, Harare'"
    )
    required_by: Optional[date] = Field(
        default=None,
        description="Date the builder needs the materials on site."
    )
    notes: Optional[str] = Field(default=None)
    status: RfqStatus = Field(
        default=RfqStatus.OPEN,
        index=True,
        description="Authoritative workflow state. Example: 'open'"
    )
    accepted_quote_id: Optional[uuid.UUID] = Field(
        default=None,
        description="The winning quote, set by acceptance."
    )
    delivery_instructions: Optional[str] = Field(
        default=None,
        description="Instructions given to the winning supplier on acceptance."
    )
    expires_at: datetime = Field(
        index=True,
        description="After this instant an unaccepted RFQ is expired."
    )

    items: List["RfqItem"] = Relationship(back_populates="rfq")
    recipients: List["RfqRecipient"] = Relationship(back_populates="rfq")
    quotes: List["RfqQuote"] = Relationship(back_populates="rfq")


class RfqItem(SQLModel, table=True):
    """
    One requested material line. Immutable after creation.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    rfq_id: uuid.UUID = Field(foreign_key="rfqrequest.id", index=True)
    material_key: str = Field(
        index=True,
        description="Catalog key of the material. Example: 'cement_50kg'"
    )
    material_name: Optional[str] = Field(
        default=None,
        description="Display name captured from the catalog at creation time."
    )
    quantity: Decimal = Field(max_digits=12, decimal_places=2)
    unit: Optional[str] = Field(default=None, description="Example: 'bag'")
    specifications: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)

    rfq: RfqRequest = Relationship(back_populates="items")


class RfqRecipient(SQLModel, table=True):
    """
    A supplier matched to an RFQ. Passive engagement log, never terminal.
    """
    __table_args__ = (UniqueConstraint("rfq_id", "supplier_id"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    rfq_id: uuid.UUID = Field(foreign_key="rfqrequest.id", index=True)
    supplier_id: uuid.UUID = Field(foreign_key="supplier.id", index=True)
    status: RecipientStatus = Field(default=RecipientStatus.NOTIFIED)
    notification_channels: List[str] = Field(
        default_factory=list,
        sa_column=Column(JSON),
        description="Channels the invitation was queued on. Example: ['email', 'whatsapp']"
    )
    notified_at: datetime = Field(default_factory=utcnow)
    first_viewed_at: Optional[datetime] = Field(default=None)

    rfq: RfqRequest = Relationship(back_populates="recipients")


class RfqQuote(SQLModel, table=True):
    """
    A supplier's priced response. One row per (RFQ, supplier):
    resubmission replaces the line items in place.
    """
    __table_args__ = (UniqueConstraint("rfq_id", "supplier_id"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    rfq_id: uuid.UUID = Field(foreign_key="rfqrequest.id", index=True)
    supplier_id: uuid.UUID = Field(foreign_key="supplier.id", index=True)
    total_usd: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_zwg: Optional[Decimal] = Field(default=None, max_digits=14, decimal_places=2)
    delivery_days: Optional[int] = Field(default=None)
    valid_until: Optional[date] = Field(default=None)
    notes: Optional[str] = Field(default=None)
    status: QuoteStatus = Field(default=QuoteStatus.SUBMITTED, index=True)
    submitted_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column_kwargs={"onupdate": utcnow},
    )

    rfq: RfqRequest = Relationship(back_populates="quotes")
    items: List["RfqQuoteItem"] = Relationship(
        back_populates="quote",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )


class RfqQuoteItem(SQLModel, table=True):
    """
    The supplier's price for one RfqItem. Suppliers may omit items they cannot supply.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    quote_id: uuid.UUID = Field(foreign_key="rfqquote.id", index=True)
    rfq_item_id: uuid.UUID = Field(foreign_key="rfqitem.id", index=True)
    unit_price_usd: Decimal = Field(max_digits=12, decimal_places=2)
    unit_price_zwg: Optional[Decimal] = Field(default=None, max_digits=14, decimal_places=2)
    available_quantity: Decimal = Field(max_digits=12, decimal_places=2)
    notes: Optional[str] = Field(default=None)

    quote: RfqQuote = Relationship(back_populates="items")


# ==========================================================================
# NOTIFICATIONS
# ==========================================================================


class NotificationOutbox(SQLModel, table=True):
    """
    A rendered message waiting for delivery on one channel.
    Committed independently of the triggering operation and drained by the worker,
    so pending deliveries survive a process restart.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    event: NotificationEvent
    subject_type: NotificationSubject
    subject_id: uuid.UUID = Field(index=True)
    channel: NotificationChannel
    recipient: str = Field(
        description="Who the message is for. Example: 'supplier:0b6f...' or 'user:41a2...'"
    )
    destination: Optional[str] = Field(
        default=None,
        description="Email address or phone number. Null when the recipient has none on file."
    )
    title: str
    body: str
    status: OutboxStatus = Field(default=OutboxStatus.QUEUED, index=True)
    attempt_count: int = Field(default=0)
    last_error: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    processed_at: Optional[datetime] = Field(default=None)


class NotificationDeliveryLog(SQLModel, table=True):
    """
    Append-only record of one delivery attempt. Never updated.
    Operators use it to follow up on failed deliveries manually.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    outbox_id: Optional[uuid.UUID] = Field(default=None, index=True)
    subject_type: NotificationSubject
    subject_id: uuid.UUID = Field(index=True)
    channel: NotificationChannel
    recipient: str
    attempted_at: datetime = Field(default_factory=utcnow)
    success: bool
    error_detail: Optional[str] = Field(default=None)
