import uuid
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger
from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, Field, select

from app.core.config import settings
from app.core.exceptions import NotAuthorizedError, NotFoundError
from app.db.core import engine as default_engine
from app.db.schema import (
    NotificationChannel, NotificationDeliveryLog, NotificationEvent,
    NotificationOutbox, NotificationSubject, OutboxStatus,
    RfqQuote, RfqRecipient, RfqRequest, Supplier, UserProfile, utcnow
)
from app.models.auth import Actor
from app.services.catalog import SupplierDirectory
from app.utils.messaging import ChannelSender, DeliveryError, build_default_senders


# ==========================================================================
# TEMPLATES
# ==========================================================================

TEMPLATES: Dict[NotificationEvent, Dict[NotificationChannel, Tuple[str, str]]] = {
    NotificationEvent.NEW_RFQ: {
        NotificationChannel.EMAIL: (
            "New RFQ request for delivery to {delivery_address}",
            "Hello {supplier_name}, you received a new RFQ ({rfq_id}) for {item_count} items. "
            "Required by {required_by}.",
        ),
        NotificationChannel.WHATSAPP: (
            "New RFQ request",
            "New RFQ ({rfq_id}): {item_count} items. Due {required_by}.",
        ),
        NotificationChannel.PUSH: (
            "New RFQ request",
            "RFQ {rfq_id} needs your quote by {required_by}.",
        ),
    },
    NotificationEvent.QUOTE_SUBMITTED: {
        NotificationChannel.EMAIL: (
            "New quote received for RFQ {rfq_id}",
            "{supplier_name} submitted a quote of USD {total_usd} for RFQ {rfq_id}.",
        ),
        NotificationChannel.WHATSAPP: (
            "Quote submitted",
            "{supplier_name} sent a quote (USD {total_usd}) for RFQ {rfq_id}.",
        ),
        NotificationChannel.PUSH: (
            "Quote received",
            "{supplier_name} submitted a quote for RFQ {rfq_id}.",
        ),
    },
    NotificationEvent.QUOTE_ACCEPTED: {
        NotificationChannel.EMAIL: (
            "Your quote was accepted",
            "Good news {supplier_name}! Your quote for RFQ {rfq_id} was accepted. "
            "Delivery instructions: {delivery_instructions}",
        ),
        NotificationChannel.WHATSAPP: (
            "Quote accepted",
            "Your quote for RFQ {rfq_id} was accepted. Deliver to {delivery_address}.",
        ),
        NotificationChannel.PUSH: (
            "Quote accepted",
            "Your RFQ {rfq_id} quote was accepted.",
        ),
    },
    NotificationEvent.QUOTE_REJECTED: {
        NotificationChannel.EMAIL: (
            "RFQ {rfq_id} was awarded to another supplier",
            "Thank you {supplier_name}. The builder accepted a different quote for RFQ {rfq_id}.",
        ),
        NotificationChannel.WHATSAPP: (
            "Quote not selected",
            "RFQ {rfq_id} was awarded to another supplier.",
        ),
        NotificationChannel.PUSH: (
            "Quote not selected",
            "RFQ {rfq_id} was awarded to another supplier.",
        ),
    },
}


class _BlankDefault(dict):
    def __missing__(self, key):
        return ""


def render_template(event: NotificationEvent, channel: NotificationChannel, data: Dict[str, object]) -> Tuple[str, str]:
    """Renders (title, body). Placeholders without a value render as empty strings."""
    title, body = TEMPLATES[event][channel]
    values = _BlankDefault({k: "" if v is None else v for k, v in data.items()})
    return title.format_map(values), body.format_map(values)


def enabled_channels(raw: Optional[str] = None) -> List[NotificationChannel]:
    raw = settings.notification_channels if raw is None else raw
    channels = []
    for part in raw.split(","):
        part = part.strip().lower()
        if not part:
            continue
        try:
            channels.append(NotificationChannel(part))
        except ValueError:
            logger.warning(f"Ignoring unknown notification channel '{part}'")
    return channels


class NotificationTarget(SQLModel):
    recipient: str
    email: Optional[str] = None
    phone: Optional[str] = None
    channels: List[NotificationChannel] = Field(default_factory=list)
    context: Dict[str, str] = Field(default_factory=dict)

    def destination(self, channel: NotificationChannel) -> Optional[str]:
        if channel == NotificationChannel.EMAIL:
            return self.email
        if channel == NotificationChannel.WHATSAPP:
            return self.phone
        return self.recipient


class DispatchSummary(SQLModel):
    processed: int = 0
    sent: int = 0
    failed: int = 0


# ==========================================================================
# ENQUEUE SIDE
# ==========================================================================


class NotificationService:
    """
    Turns workflow events into rendered outbox rows.

    Every public notify_* method is best-effort: failures are rolled back and
    logged, never raised, so they cannot undo the operation that triggered them.
    """

    def __init__(self, session: Session, channels: Optional[List[NotificationChannel]] = None):
        self.session = session
        self.directory = SupplierDirectory(session)
        self.channels = enabled_channels() if channels is None else channels

    # ----------------------------------------------------------------------
    # Targets
    # ----------------------------------------------------------------------

    def _preferred_channels(self, profile: Optional[UserProfile], topic: str) -> List[NotificationChannel]:
        # Without a profile every enabled channel is attempted.
        if profile is None:
            return list(self.channels)
        if not getattr(profile, topic, True):
            return []

        allowed = {
            NotificationChannel.EMAIL: profile.notify_email,
            NotificationChannel.WHATSAPP: profile.notify_whatsapp,
            NotificationChannel.PUSH: profile.notify_push,
        }
        return [c for c in self.channels if allowed.get(c)]

    def supplier_channels(self, supplier: Supplier, topic: str = "notify_rfq") -> List[NotificationChannel]:
        profile = self.directory.get_profile(supplier.user_id)
        return self._preferred_channels(profile, topic)

    def supplier_target(self, supplier: Supplier, topic: str) -> NotificationTarget:
        profile = self.directory.get_profile(supplier.user_id)
        return NotificationTarget(
            recipient=f"supplier:{supplier.id}",
            email=supplier.contact_email or (profile.email if profile else None),
            phone=supplier.contact_phone or (profile.phone_number if profile else None),
            channels=self._preferred_channels(profile, topic),
            context={"supplier_name": supplier.name},
        )

    def user_target(self, user_id: uuid.UUID, topic: str) -> NotificationTarget:
        profile = self.directory.get_profile(user_id)
        return NotificationTarget(
            recipient=f"user:{user_id}",
            email=profile.email if profile else None,
            phone=profile.phone_number if profile else None,
            channels=self._preferred_channels(profile, topic),
            context={"user_name": profile.full_name if profile and profile.full_name else ""},
        )

    # ----------------------------------------------------------------------
    # Outbox
    # ----------------------------------------------------------------------

    def enqueue(
        self,
        event: NotificationEvent,
        subject_type: NotificationSubject,
        subject_id: uuid.UUID,
        targets: Iterable[NotificationTarget],
        context: Dict[str, object],
    ) -> List[NotificationOutbox]:
        """Writes one outbox row per (target, channel) and commits them together."""
        rows = []
        for target in targets:
            for channel in target.channels:
                title, body = render_template(event, channel, {**context, **target.context})
                row = NotificationOutbox(
                    event=event,
                    subject_type=subject_type,
                    subject_id=subject_id,
                    channel=channel,
                    recipient=target.recipient,
                    destination=target.destination(channel),
                    title=title,
                    body=body,
                )
                self.session.add(row)
                rows.append(row)

        if rows:
            self.session.commit()
        return rows

    def _rfq_context(self, rfq: RfqRequest) -> Dict[str, object]:
        return {
            "rfq_id": str(rfq.id),
            "item_count": len(rfq.items),
            "required_by": rfq.required_by.isoformat() if rfq.required_by else "N/A",
            "delivery_address": rfq.delivery_address or "",
            "delivery_instructions": rfq.delivery_instructions or "",
        }

    def notify_recipients(self, rfq_id: uuid.UUID, supplier_ids: List[uuid.UUID]) -> int:
        """
        Queues the `new_rfq` invitation for each supplier on each enabled channel.
        Returns the number of queued deliveries.
        """
        if not supplier_ids:
            return 0
        try:
            rfq = self.session.get(RfqRequest, rfq_id)
            if not rfq:
                logger.warning(f"notify_recipients: RFQ {rfq_id} not found")
                return 0

            suppliers = self.directory.get_suppliers(supplier_ids)
            targets = [
                self.supplier_target(suppliers[sid], "notify_rfq")
                for sid in supplier_ids if sid in suppliers
            ]
            rows = self.enqueue(
                NotificationEvent.NEW_RFQ, NotificationSubject.RFQ, rfq.id,
                targets, self._rfq_context(rfq)
            )
            logger.info(f"Queued {len(rows)} RFQ invitations for RFQ {rfq_id}")
            return len(rows)
        except Exception as e:
            self.session.rollback()
            logger.error(f"RFQ: queue invitations for {rfq_id} failed: {e}")
            return 0

    def notify_quote_submitted(self, rfq_id: uuid.UUID, quote_id: uuid.UUID, supplier_id: uuid.UUID) -> int:
        try:
            rfq = self.session.get(RfqRequest, rfq_id)
            supplier = self.session.get(Supplier, supplier_id)
            if not rfq:
                return 0

            quote = next((q for q in rfq.quotes if q.id == quote_id), None)
            context = self._rfq_context(rfq)
            context["supplier_name"] = supplier.name if supplier else "Supplier"
            context["total_usd"] = f"{quote.total_usd:.2f}" if quote else ""

            target = self.user_target(rfq.user_id, "notify_quote_updates")
            # The builder is addressed by their own name, not the supplier's.
            target.context = {}
            rows = self.enqueue(
                NotificationEvent.QUOTE_SUBMITTED, NotificationSubject.QUOTE, quote_id,
                [target], context
            )
            return len(rows)
        except Exception as e:
            self.session.rollback()
            logger.error(f"RFQ: queue quote notification for {quote_id} failed: {e}")
            return 0

    def notify_acceptance(
        self,
        rfq_id: uuid.UUID,
        accepted_supplier_id: uuid.UUID,
        rejected_supplier_ids: List[uuid.UUID],
    ) -> int:
        try:
            rfq = self.session.get(RfqRequest, rfq_id)
            if not rfq:
                return 0

            context = self._rfq_context(rfq)
            suppliers = self.directory.get_suppliers([accepted_supplier_id, *rejected_supplier_ids])

            queued = 0
            winner = suppliers.get(accepted_supplier_id)
            if winner:
                queued += len(self.enqueue(
                    NotificationEvent.QUOTE_ACCEPTED, NotificationSubject.ACCEPTANCE, rfq.id,
                    [self.supplier_target(winner, "notify_quote_updates")], context
                ))

            losers = [
                self.supplier_target(suppliers[sid], "notify_quote_updates")
                for sid in rejected_supplier_ids if sid in suppliers
            ]
            if losers:
                queued += len(self.enqueue(
                    NotificationEvent.QUOTE_REJECTED, NotificationSubject.ACCEPTANCE, rfq.id,
                    losers, context
                ))
            return queued
        except Exception as e:
            self.session.rollback()
            logger.error(f"RFQ: queue acceptance notifications for {rfq_id} failed: {e}")
            return 0

    def _subject_rfq(self, subject_type: NotificationSubject, subject_id: uuid.UUID) -> Optional[RfqRequest]:
        # RFQ and acceptance logs are keyed by the RFQ id, quote logs by the quote id.
        if subject_type == NotificationSubject.QUOTE:
            quote = self.session.get(RfqQuote, subject_id)
            return self.session.get(RfqRequest, quote.rfq_id) if quote else None
        return self.session.get(RfqRequest, subject_id)

    def list_deliveries(
        self,
        actor: Actor,
        subject_type: NotificationSubject,
        subject_id: uuid.UUID,
    ) -> List[NotificationDeliveryLog]:
        """
        Delivery attempts for one subject, oldest first.

        The RFQ's requester sees every attempt. An invited supplier sees only
        the attempts addressed to itself. Anyone else is refused.
        """
        rfq = self._subject_rfq(subject_type, subject_id)
        if not rfq:
            raise NotFoundError(f"No {subject_type.value} {subject_id} found.")

        statement = (
            select(NotificationDeliveryLog)
            .where(NotificationDeliveryLog.subject_type == subject_type)
            .where(NotificationDeliveryLog.subject_id == subject_id)
            .order_by(NotificationDeliveryLog.attempted_at.asc())
        )

        if actor.user_id != rfq.user_id:
            invited = actor.supplier_id is not None and self.session.exec(
                select(RfqRecipient.id)
                .where(RfqRecipient.rfq_id == rfq.id)
                .where(RfqRecipient.supplier_id == actor.supplier_id)
            ).first()
            if not invited:
                raise NotAuthorizedError("You are not a party to this RFQ.")
            statement = statement.where(
                NotificationDeliveryLog.recipient == f"supplier:{actor.supplier_id}")

        return list(self.session.exec(statement).all())


# ==========================================================================
# DELIVERY SIDE
# ==========================================================================


class NotificationWorker:
    """
    Drains queued outbox rows. Runs detached from the request that queued them.

    Each (recipient, channel) attempt is isolated: it is claimed, sent,
    logged and committed on its own. One attempt per row; no retries.
    """

    def __init__(
        self,
        engine: Optional[Engine] = None,
        senders: Optional[Dict[NotificationChannel, ChannelSender]] = None,
        batch_size: Optional[int] = None,
    ):
        self.engine = engine or default_engine
        self.senders = build_default_senders(settings) if senders is None else senders
        self.batch_size = batch_size or settings.notification_batch_size

    def dispatch_pending(self, limit: Optional[int] = None) -> DispatchSummary:
        summary = DispatchSummary()
        try:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(NotificationOutbox)
                    .where(NotificationOutbox.status == OutboxStatus.QUEUED)
                    .order_by(NotificationOutbox.created_at.asc())
                    .limit(limit or self.batch_size)
                ).all()

                for row in rows:
                    outcome = self._deliver(session, row)
                    if outcome is None:
                        continue
                    summary.processed += 1
                    if outcome:
                        summary.sent += 1
                    else:
                        summary.failed += 1
        except Exception as e:
            logger.error(f"NOTIFICATION DISPATCH FAILED: {e}")

        if summary.processed:
            logger.info(
                f"Dispatched {summary.processed} notifications "
                f"({summary.sent} sent, {summary.failed} failed)"
            )
        return summary

    def _claim(self, session: Session, row_id: uuid.UUID) -> bool:
        # queued -> sending is the only way into a send, so a row is delivered at most once
        # even when drains overlap. Rows stranded in `sending` by a crash are not retried.
        result = session.execute(
            update(NotificationOutbox)
            .where(NotificationOutbox.id == row_id)
            .where(NotificationOutbox.status == OutboxStatus.QUEUED)
            .values(
                status=OutboxStatus.SENDING,
                attempt_count=NotificationOutbox.attempt_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        session.commit()
        return result.rowcount == 1

    def _deliver(self, session: Session, row: NotificationOutbox) -> Optional[bool]:
        row_id = row.id
        try:
            if not self._claim(session, row_id):
                return None
        except Exception as e:
            session.rollback()
            logger.error(f"Could not claim notification {row_id}: {e}")
            return None

        error: Optional[str] = None
        sender = self.senders.get(row.channel)
        try:
            if sender is None:
                raise DeliveryError("Channel not configured")
            sender.send(row.destination, row.title, row.body)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.warning(
                f"Delivery failed [{row.channel.value}] {row.recipient} "
                f"({row.event.value} {row.subject_id}): {error}"
            )

        now = utcnow()
        try:
            session.refresh(row)
            row.status = OutboxStatus.FAILED if error else OutboxStatus.SENT
            row.last_error = error
            row.processed_at = now
            session.add(row)
            session.add(NotificationDeliveryLog(
                outbox_id=row.id,
                subject_type=row.subject_type,
                subject_id=row.subject_id,
                channel=row.channel,
                recipient=row.recipient,
                attempted_at=now,
                success=error is None,
                error_detail=error,
            ))
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"DELIVERY LOG FAILED for notification {row_id}: {e}")

        return error is None
