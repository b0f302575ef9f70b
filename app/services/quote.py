import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.core.config import settings
from app.core.exceptions import (
    ConflictError, NotAuthorizedError, NotFoundError, RfqExpiredError, ValidationError
)
from app.db.core import apply_statement_timeout, translate_storage_errors
from app.db.schema import (
    RfqRequest, RfqRecipient, RfqQuote, RfqQuoteItem,
    RfqStatus, QuoteStatus, RecipientStatus, utcnow
)
from app.models.quote import (
    QuoteSubmit, QuoteItemInput, QuoteSubmitResult, InboxItem, RecipientStatusRead
)
from app.services.notification import NotificationService
from app.services.workflow import OPEN_FOR_QUOTES, apply_lazy_expiry, persist_lazy_expiry

CENT = Decimal("0.01")


def compute_totals(lines: Iterable[QuoteItemInput]) -> Tuple[Decimal, Optional[Decimal]]:
    """
    Sum of unit price x available quantity per currency, rounded to cents.
    The ZWG total is only set when at least one line carries a ZWG price.
    """
    lines = list(lines)
    total_usd = sum(
        (line.unit_price_usd * line.available_quantity for line in lines), Decimal("0"))

    zwg_lines = [line for line in lines if line.unit_price_zwg is not None]
    total_zwg = None
    if zwg_lines:
        total_zwg = sum(
            (line.unit_price_zwg * line.available_quantity for line in zwg_lines), Decimal("0")
        ).quantize(CENT, rounding=ROUND_HALF_UP)

    return total_usd.quantize(CENT, rounding=ROUND_HALF_UP), total_zwg


class QuoteService:
    """
    The quote ledger: one quote row per (RFQ, supplier), replaced in place on
    resubmission. Also serves the supplier's side of the RFQ (inbox, view, decline).
    """

    def __init__(
        self,
        session: Session,
        notifications: Optional[NotificationService] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.session = session
        self.notifications = notifications or NotificationService(session)
        self.timeout_seconds = settings.db_timeout_seconds if timeout_seconds is None else timeout_seconds

    # ==========================================================================
    # HELPERS
    # ==========================================================================

    def _get_rfq(self, rfq_id: uuid.UUID) -> RfqRequest:
        rfq = self.session.get(RfqRequest, rfq_id)
        if not rfq:
            raise NotFoundError(f"RFQ {rfq_id} not found.")
        return rfq

    def _get_recipient(self, rfq_id: uuid.UUID, supplier_id: uuid.UUID) -> RfqRecipient:
        recipient = self.session.exec(
            select(RfqRecipient)
            .where(RfqRecipient.rfq_id == rfq_id)
            .where(RfqRecipient.supplier_id == supplier_id)
        ).first()
        if not recipient:
            raise NotAuthorizedError("This supplier was not invited to the RFQ.")
        return recipient

    def _ensure_open(self, rfq: RfqRequest):
        if persist_lazy_expiry(self.session, rfq) or rfq.status == RfqStatus.EXPIRED:
            raise RfqExpiredError("This RFQ has expired and no longer accepts quotes.")
        if rfq.status not in OPEN_FOR_QUOTES:
            raise ConflictError(f"This RFQ is '{rfq.status.value}' and no longer accepts quotes.")

    def _validate(self, rfq: RfqRequest, data: QuoteSubmit):
        if not data.items:
            raise ValidationError(
                "A quote needs at least one priced item.",
                {"items": "At least one item is required."}
            )

        rfq_item_ids = {item.id for item in rfq.items}
        fields: Dict[str, str] = {}
        seen = set()

        for i, line in enumerate(data.items):
            prefix = f"items[{i}]"
            if line.rfq_item_id not in rfq_item_ids:
                fields[f"{prefix}.rfq_item_id"] = "Item does not belong to this RFQ."
            elif line.rfq_item_id in seen:
                fields[f"{prefix}.rfq_item_id"] = "Item is priced more than once."
            seen.add(line.rfq_item_id)

            if line.unit_price_usd is None or line.unit_price_usd <= 0:
                fields[f"{prefix}.unit_price_usd"] = "Price must be greater than zero."
            if line.unit_price_zwg is not None and line.unit_price_zwg <= 0:
                fields[f"{prefix}.unit_price_zwg"] = "Price must be greater than zero."
            if line.available_quantity is None or line.available_quantity <= 0:
                fields[f"{prefix}.available_quantity"] = "Quantity must be greater than zero."

        if data.delivery_days is not None and data.delivery_days < 0:
            fields["delivery_days"] = "Delivery days cannot be negative."
        if data.valid_until and data.valid_until < utcnow().date():
            fields["valid_until"] = "Validity date is in the past."

        if fields:
            raise ValidationError("Some quote fields are invalid.", fields)

    # ==========================================================================
    # SUBMIT
    # ==========================================================================

    def submit_quote(self, supplier_id: uuid.UUID, rfq_id: uuid.UUID, data: QuoteSubmit) -> QuoteSubmitResult:
        rfq = self._get_rfq(rfq_id)
        self._ensure_open(rfq)
        self._get_recipient(rfq_id, supplier_id)
        self._validate(rfq, data)

        total_usd, total_zwg = compute_totals(data.items)

        try:
            result = self._write_quote(rfq, supplier_id, data, total_usd, total_zwg)
        except IntegrityError:
            # A concurrent first submission from the same supplier won the insert.
            # Apply this one on top of it: last write wins.
            logger.info(f"Quote for RFQ {rfq_id} by supplier {supplier_id} raced; retrying as update")
            try:
                result = self._write_quote(rfq, supplier_id, data, total_usd, total_zwg)
            except IntegrityError as e:
                raise ConflictError("The quote changed concurrently. Please retry.") from e

        logger.info(
            f"Quote {result.quote_id} {'updated' if result.replaced else 'submitted'} "
            f"for RFQ {rfq_id}: USD {result.total_usd}"
        )
        self.notifications.notify_quote_submitted(rfq_id, result.quote_id, supplier_id)
        return result

    def _write_quote(
        self,
        rfq: RfqRequest,
        supplier_id: uuid.UUID,
        data: QuoteSubmit,
        total_usd: Decimal,
        total_zwg: Optional[Decimal],
    ) -> QuoteSubmitResult:
        now = utcnow()
        with translate_storage_errors(self.session, "Quote submit"):
            apply_statement_timeout(self.session, self.timeout_seconds)

            # --- START TRANSACTION ---
            # Lock order (RFQ, then quote) matches acceptance. The compare-and-set also
            # refuses the quote if an acceptance or cancel committed since the checks.
            still_open = self.session.execute(
                update(RfqRequest)
                .where(RfqRequest.id == rfq.id)
                .where(col(RfqRequest.status).in_(list(OPEN_FOR_QUOTES)))
                .values(status=RfqStatus.QUOTED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if still_open.rowcount != 1:
                raise ConflictError("This RFQ no longer accepts quotes.")

            quote = self.session.exec(
                select(RfqQuote)
                .where(RfqQuote.rfq_id == rfq.id)
                .where(RfqQuote.supplier_id == supplier_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).first()

            replaced = quote is not None
            if quote is None:
                quote = RfqQuote(rfq_id=rfq.id, supplier_id=supplier_id)
            elif quote.status != QuoteStatus.SUBMITTED:
                raise ConflictError(
                    f"This quote is already '{quote.status.value}' and can no longer be changed.")

            quote.total_usd = total_usd
            quote.total_zwg = total_zwg
            quote.delivery_days = data.delivery_days
            quote.valid_until = data.valid_until
            quote.notes = data.notes
            quote.submitted_at = now
            # Replacing the collection deletes the previous lines (delete-orphan).
            quote.items = [
                RfqQuoteItem(
                    rfq_item_id=line.rfq_item_id,
                    unit_price_usd=line.unit_price_usd,
                    unit_price_zwg=line.unit_price_zwg,
                    available_quantity=line.available_quantity,
                    notes=line.notes,
                )
                for line in data.items
            ]
            self.session.add(quote)

            recipient = self._get_recipient(rfq.id, supplier_id)
            recipient.status = RecipientStatus.QUOTED
            if recipient.first_viewed_at is None:
                recipient.first_viewed_at = now
            self.session.add(recipient)

            self.session.flush()
            result = QuoteSubmitResult(
                quote_id=quote.id,
                status=quote.status,
                total_usd=total_usd,
                total_zwg=total_zwg,
                replaced=replaced,
            )
            self.session.commit()
            # --- END TRANSACTION ---

        return result

    # ==========================================================================
    # SUPPLIER INBOX
    # ==========================================================================

    def supplier_inbox(self, supplier_id: uuid.UUID) -> List[InboxItem]:
        rows = self.session.exec(
            select(RfqRecipient, RfqRequest)
            .join(RfqRequest, RfqRequest.id == RfqRecipient.rfq_id)
            .where(RfqRecipient.supplier_id == supplier_id)
            .where(RfqRequest.status != RfqStatus.DRAFT)
            .order_by(RfqRecipient.notified_at.desc())
        ).all()

        now = utcnow()
        expired = [rfq for _, rfq in rows if apply_lazy_expiry(rfq, now)]
        if expired:
            with translate_storage_errors(self.session, "RFQ expiry"):
                self.session.add_all(expired)
                self.session.commit()

        inbox = []
        for recipient, rfq in rows:
            quote = next((q for q in rfq.quotes if q.supplier_id == supplier_id), None)
            inbox.append(InboxItem(
                rfq_id=rfq.id,
                rfq_status=rfq.status,
                recipient_status=recipient.status,
                delivery_address=rfq.delivery_address,
                required_by=rfq.required_by,
                expires_at=rfq.expires_at,
                item_count=len(rfq.items),
                notified_at=recipient.notified_at,
                quote_id=quote.id if quote else None,
                quote_status=quote.status if quote else None,
                quote_total_usd=quote.total_usd if quote else None,
            ))
        return inbox

    def mark_viewed(self, supplier_id: uuid.UUID, rfq_id: uuid.UUID) -> RecipientStatusRead:
        """notified -> viewed. The first view time is recorded once."""
        self._get_rfq(rfq_id)
        recipient = self._get_recipient(rfq_id, supplier_id)

        changed = False
        if recipient.first_viewed_at is None:
            recipient.first_viewed_at = utcnow()
            changed = True
        if recipient.status == RecipientStatus.NOTIFIED:
            recipient.status = RecipientStatus.VIEWED
            changed = True

        if changed:
            with translate_storage_errors(self.session, "Recipient view"):
                self.session.add(recipient)
                self.session.commit()
                self.session.refresh(recipient)

        return RecipientStatusRead(
            rfq_id=rfq_id,
            supplier_id=supplier_id,
            status=recipient.status,
            first_viewed_at=recipient.first_viewed_at,
        )

    def decline_rfq(self, supplier_id: uuid.UUID, rfq_id: uuid.UUID) -> RecipientStatusRead:
        rfq = self._get_rfq(rfq_id)
        self._ensure_open(rfq)
        recipient = self._get_recipient(rfq_id, supplier_id)

        live_quote = self.session.exec(
            select(RfqQuote)
            .where(RfqQuote.rfq_id == rfq_id)
            .where(RfqQuote.supplier_id == supplier_id)
            .where(RfqQuote.status == QuoteStatus.SUBMITTED)
        ).first()
        if live_quote:
            raise ConflictError("A submitted quote exists for this RFQ; it cannot be declined.")

        with translate_storage_errors(self.session, "Recipient decline"):
            recipient.status = RecipientStatus.DECLINED
            self.session.add(recipient)
            self.session.commit()
            self.session.refresh(recipient)

        logger.info(f"Supplier {supplier_id} declined RFQ {rfq_id}")
        return RecipientStatusRead(
            rfq_id=rfq_id,
            supplier_id=supplier_id,
            status=recipient.status,
            first_viewed_at=recipient.first_viewed_at,
        )
