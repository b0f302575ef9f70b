import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from loguru import logger
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.core.config import settings
from app.core.exceptions import (
    ConflictError, NotAuthorizedError, NotFoundError, RfqExpiredError, ValidationError
)
from app.db.core import apply_statement_timeout, translate_storage_errors
from app.db.schema import (
    RfqRequest, RfqItem, RfqRecipient, RfqQuote,
    RfqStatus, QuoteStatus, utcnow
)
from app.models.auth import Actor
from app.models.rfq import (
    RfqCreate, RfqItemInput, RfqCreateResult, RfqRead, RfqItemRead,
    RfqRecipientRead, RfqQuoteSummary, RfqListItem,
    RecipientRefreshResult, RfqStatusRead
)
from app.models.quote import QuoteList, QuoteView, QuoteLineRead
from app.services.catalog import MaterialCatalog, SupplierDirectory
from app.services.matching import SupplierMatch, SupplierMatcher
from app.services.notification import NotificationService
from app.services.workflow import (
    ACTIVE_STATES, OPEN_FOR_QUOTES,
    ensure_transition, apply_lazy_expiry, persist_lazy_expiry
)


class RfqService:
    """
    Owns the RFQ request, its items and its recipient list.

    Creation is atomic: request + items + recipients land in one commit or
    not at all. Supplier matching runs before the write transaction and
    notifications are queued after it, so neither can undo the RFQ.
    """

    def __init__(
        self,
        session: Session,
        catalog: Optional[MaterialCatalog] = None,
        matcher: Optional[SupplierMatcher] = None,
        notifications: Optional[NotificationService] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.session = session
        self.catalog = catalog or MaterialCatalog()
        self.directory = SupplierDirectory(session)
        self.matcher = matcher or SupplierMatcher(
            self.directory, self.catalog, settings.matching)
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

    def _get_owned_rfq(self, requester: Actor, rfq_id: uuid.UUID) -> RfqRequest:
        rfq = self._get_rfq(rfq_id)
        if rfq.user_id != requester.user_id:
            raise NotAuthorizedError("Only the requester can manage this RFQ.")
        return rfq

    def _validate_items(self, items: List[RfqItemInput]):
        if not items:
            raise ValidationError(
                "An RFQ needs at least one item.",
                {"items": "At least one item is required."}
            )

        fields: Dict[str, str] = {}
        for i, item in enumerate(items):
            if not self.catalog.has(item.material_key):
                fields[f"items[{i}].material_key"] = f"Unknown material '{item.material_key}'."
            if item.quantity is None or item.quantity <= 0:
                fields[f"items[{i}].quantity"] = "Quantity must be greater than zero."

        if fields:
            raise ValidationError("Some RFQ items are invalid.", fields)

    def _match(self, material_keys: List[str], delivery_address: Optional[str]) -> List[SupplierMatch]:
        # Matching never blocks RFQ creation; refresh_recipients retries it.
        try:
            categories = self.matcher.categories_for_items(material_keys)
            return self.matcher.match_suppliers(categories, delivery_address)
        except Exception as e:
            logger.error(f"RFQ: supplier matching failed, continuing without recipients: {e}")
            return []

    def _recipient_channels(self, supplier_ids: List[uuid.UUID]) -> Dict[uuid.UUID, List[str]]:
        suppliers = self.directory.get_suppliers(supplier_ids)
        return {
            sid: [c.value for c in self.notifications.supplier_channels(supplier)]
            for sid, supplier in suppliers.items()
        }

    def _add_recipients(
        self,
        rfq_id: uuid.UUID,
        supplier_ids: List[uuid.UUID],
        channels: Dict[uuid.UUID, List[str]],
        now: datetime,
    ) -> List[RfqRecipient]:
        recipients = [
            RfqRecipient(
                rfq_id=rfq_id,
                supplier_id=sid,
                notification_channels=channels.get(sid, []),
                notified_at=now,
            )
            for sid in supplier_ids
        ]
        self.session.add_all(recipients)
        return recipients

    # ==========================================================================
    # CREATE
    # ==========================================================================

    def create_rfq(self, requester: Actor, data: RfqCreate) -> RfqCreateResult:
        self._validate_items(data.items)

        matches: List[SupplierMatch] = []
        if data.publish:
            matches = self._match([i.material_key for i in data.items], data.delivery_address)
        supplier_ids = [m.supplier_id for m in matches]
        channels = self._recipient_channels(supplier_ids)

        now = utcnow()
        with translate_storage_errors(self.session, "RFQ create"):
            apply_statement_timeout(self.session, self.timeout_seconds)

            # --- START TRANSACTION ---
            rfq = RfqRequest(
                project_id=data.project_id,
                user_id=requester.user_id,
                delivery_address=data.delivery_address,
                required_by=data.required_by,
                notes=data.notes,
                status=RfqStatus.OPEN if data.publish else RfqStatus.DRAFT,
                created_at=now,
                updated_at=now,
                expires_at=now + timedelta(days=settings.rfq_expiry_days),
            )
            self.session.add(rfq)
            self.session.flush()

            items = []
            for line in data.items:
                info = self.catalog.get(line.material_key)
                items.append(RfqItem(
                    rfq_id=rfq.id,
                    material_key=line.material_key,
                    material_name=info.name,
                    quantity=line.quantity,
                    unit=line.unit or info.unit,
                    specifications=line.specifications,
                    created_at=now,
                ))
            self.session.add_all(items)

            recipients = self._add_recipients(rfq.id, supplier_ids, channels, now)
            self.session.flush()

            result = RfqCreateResult(
                rfq_id=rfq.id,
                status=rfq.status,
                item_ids=[i.id for i in items],
                recipient_ids=[r.id for r in recipients],
                matched_supplier_ids=supplier_ids,
            )

            self.session.commit()
            # --- END TRANSACTION ---

        logger.info(
            f"RFQ {result.rfq_id} created ({result.status.value}) with "
            f"{len(result.item_ids)} items and {len(result.recipient_ids)} recipients"
        )

        self.notifications.notify_recipients(result.rfq_id, supplier_ids)
        return result

    def publish_rfq(self, requester: Actor, rfq_id: uuid.UUID) -> RfqCreateResult:
        """Draft -> open. Matches suppliers and attaches them in the same commit."""
        rfq = self._get_owned_rfq(requester, rfq_id)
        if persist_lazy_expiry(self.session, rfq) or rfq.status == RfqStatus.EXPIRED:
            raise RfqExpiredError("This RFQ has expired.")
        ensure_transition(rfq.status, RfqStatus.OPEN)

        matches = self._match([i.material_key for i in rfq.items], rfq.delivery_address)
        supplier_ids = [m.supplier_id for m in matches]
        channels = self._recipient_channels(supplier_ids)

        now = utcnow()
        with translate_storage_errors(self.session, "RFQ publish"):
            apply_statement_timeout(self.session, self.timeout_seconds)
            opened = self.session.execute(
                update(RfqRequest)
                .where(RfqRequest.id == rfq_id)
                .where(RfqRequest.status == RfqStatus.DRAFT)
                .values(
                    status=RfqStatus.OPEN,
                    expires_at=now + timedelta(days=settings.rfq_expiry_days),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if opened.rowcount != 1:
                raise ConflictError("The RFQ is no longer a draft.")
            recipients = self._add_recipients(rfq.id, supplier_ids, channels, now)
            self.session.flush()

            result = RfqCreateResult(
                rfq_id=rfq.id,
                status=RfqStatus.OPEN,
                item_ids=[i.id for i in rfq.items],
                recipient_ids=[r.id for r in recipients],
                matched_supplier_ids=supplier_ids,
            )
            self.session.commit()

        logger.info(f"RFQ {rfq_id} published to {len(supplier_ids)} suppliers")
        self.notifications.notify_recipients(rfq_id, supplier_ids)
        return result

    def refresh_recipients(self, requester: Actor, rfq_id: uuid.UUID) -> RecipientRefreshResult:
        """
        Re-runs matching for an open RFQ and invites suppliers that are not
        recipients yet. The total recipient count stays within the matching cap.
        """
        rfq = self._get_owned_rfq(requester, rfq_id)
        if persist_lazy_expiry(self.session, rfq) or rfq.status == RfqStatus.EXPIRED:
            raise RfqExpiredError("This RFQ has expired.")
        if rfq.status not in OPEN_FOR_QUOTES:
            raise ConflictError(f"Recipients cannot change while the RFQ is '{rfq.status.value}'.")

        existing = {r.supplier_id for r in rfq.recipients}
        room = self.matcher.config.cap - len(existing)
        if room <= 0:
            return RecipientRefreshResult(rfq_id=rfq_id)

        matches = self._match([i.material_key for i in rfq.items], rfq.delivery_address)
        supplier_ids = [m.supplier_id for m in matches if m.supplier_id not in existing][:room]
        if not supplier_ids:
            return RecipientRefreshResult(rfq_id=rfq_id)
        channels = self._recipient_channels(supplier_ids)

        try:
            with translate_storage_errors(self.session, "RFQ refresh recipients"):
                apply_statement_timeout(self.session, self.timeout_seconds)
                recipients = self._add_recipients(rfq_id, supplier_ids, channels, utcnow())
                self.session.flush()
                added = [r.id for r in recipients]
                self.session.commit()
        except IntegrityError as e:
            raise ConflictError("Recipients changed concurrently. Please retry.") from e

        logger.info(f"RFQ {rfq_id}: invited {len(supplier_ids)} more suppliers")
        self.notifications.notify_recipients(rfq_id, supplier_ids)
        return RecipientRefreshResult(
            rfq_id=rfq_id, added_recipient_ids=added, added_supplier_ids=supplier_ids)

    # ==========================================================================
    # READ
    # ==========================================================================

    def get_rfq(self, requester: Actor, rfq_id: uuid.UUID) -> RfqRead:
        rfq = self._get_owned_rfq(requester, rfq_id)
        persist_lazy_expiry(self.session, rfq)

        suppliers = self.directory.get_suppliers([r.supplier_id for r in rfq.recipients])
        return RfqRead.model_validate(rfq, update=dict(
            items=[RfqItemRead.model_validate(i) for i in rfq.items],
            recipients=[
                RfqRecipientRead(
                    id=r.id,
                    supplier_id=r.supplier_id,
                    supplier_name=suppliers[r.supplier_id].name if r.supplier_id in suppliers else None,
                    status=r.status,
                    notification_channels=r.notification_channels or [],
                    notified_at=r.notified_at,
                    first_viewed_at=r.first_viewed_at,
                )
                for r in rfq.recipients
            ],
            quotes=[
                RfqQuoteSummary(
                    quote_id=q.id,
                    supplier_id=q.supplier_id,
                    status=q.status,
                    total_usd=q.total_usd,
                    submitted_at=q.submitted_at,
                )
                for q in sorted(rfq.quotes, key=lambda q: (q.total_usd, q.submitted_at))
            ],
        ))

    def list_project_rfqs(self, requester: Actor, project_id: uuid.UUID) -> List[RfqListItem]:
        rfqs = self.session.exec(
            select(RfqRequest)
            .where(RfqRequest.project_id == project_id)
            .where(RfqRequest.user_id == requester.user_id)
            .order_by(RfqRequest.created_at.desc())
        ).all()

        now = utcnow()
        expired = [rfq for rfq in rfqs if apply_lazy_expiry(rfq, now)]
        if expired:
            with translate_storage_errors(self.session, "RFQ expiry"):
                self.session.add_all(expired)
                self.session.commit()

        return [
            RfqListItem(
                id=rfq.id,
                project_id=rfq.project_id,
                status=rfq.status,
                delivery_address=rfq.delivery_address,
                required_by=rfq.required_by,
                item_count=len(rfq.items),
                quote_count=len(rfq.quotes),
                created_at=rfq.created_at,
                expires_at=rfq.expires_at,
            )
            for rfq in rfqs
        ]

    def get_quotes(self, requester: Actor, rfq_id: uuid.UUID) -> QuoteList:
        """All quotes of an RFQ, cheapest first."""
        rfq = self._get_owned_rfq(requester, rfq_id)
        persist_lazy_expiry(self.session, rfq)

        material_keys = {i.id: i.material_key for i in rfq.items}
        quotes = self.session.exec(
            select(RfqQuote)
            .where(RfqQuote.rfq_id == rfq_id)
            .order_by(RfqQuote.total_usd.asc(), RfqQuote.submitted_at.asc())
        ).all()
        suppliers = self.directory.get_suppliers([q.supplier_id for q in quotes])

        return QuoteList(quotes=[
            QuoteView(
                quote_id=q.id,
                supplier_id=q.supplier_id,
                supplier_name=suppliers[q.supplier_id].name if q.supplier_id in suppliers else None,
                status=q.status,
                items=[
                    QuoteLineRead(
                        rfq_item_id=line.rfq_item_id,
                        material_key=material_keys.get(line.rfq_item_id),
                        unit_price_usd=line.unit_price_usd,
                        unit_price_zwg=line.unit_price_zwg,
                        available_quantity=line.available_quantity,
                    )
                    for line in q.items
                ],
                total_usd=q.total_usd,
                total_zwg=q.total_zwg,
                delivery_days=q.delivery_days,
                valid_until=q.valid_until,
                notes=q.notes,
                submitted_at=q.submitted_at,
            )
            for q in quotes
        ])

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    def _transition(self, requester: Actor, rfq_id: uuid.UUID, target: RfqStatus) -> RfqStatusRead:
        rfq = self._get_owned_rfq(requester, rfq_id)
        persist_lazy_expiry(self.session, rfq)
        current = rfq.status
        ensure_transition(current, target)

        now = utcnow()
        with translate_storage_errors(self.session, f"RFQ {target.value}"):
            apply_statement_timeout(self.session, self.timeout_seconds)

            # --- START TRANSACTION ---
            # Compare-and-set on the status we checked: a concurrent acceptance,
            # cancel or expiry leaves zero rows and this request loses.
            moved = self.session.execute(
                update(RfqRequest)
                .where(RfqRequest.id == rfq_id)
                .where(RfqRequest.status == current)
                .values(status=target, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if moved.rowcount != 1:
                raise ConflictError("The RFQ changed while this request was processed. Reload and retry.")

            if target == RfqStatus.CANCELLED:
                self.session.execute(
                    update(RfqQuote)
                    .where(RfqQuote.rfq_id == rfq_id)
                    .where(RfqQuote.status == QuoteStatus.SUBMITTED)
                    .values(status=QuoteStatus.REJECTED, updated_at=now)
                    .execution_options(synchronize_session=False)
                )

            self.session.commit()
            # --- END TRANSACTION ---

        logger.info(f"RFQ {rfq_id} -> {target.value}")
        return RfqStatusRead(rfq_id=rfq_id, status=target)

    def cancel_rfq(self, requester: Actor, rfq_id: uuid.UUID) -> RfqStatusRead:
        return self._transition(requester, rfq_id, RfqStatus.CANCELLED)

    def mark_ordered(self, requester: Actor, rfq_id: uuid.UUID) -> RfqStatusRead:
        return self._transition(requester, rfq_id, RfqStatus.ORDERED)

    def mark_delivered(self, requester: Actor, rfq_id: uuid.UUID) -> RfqStatusRead:
        return self._transition(requester, rfq_id, RfqStatus.DELIVERED)

    def expire_overdue(self, now: Optional[datetime] = None) -> int:
        """
        Sweeps every overdue draft/open/quoted RFQ to expired.
        Complements the lazy check done when an RFQ is loaded.
        """
        now = now or utcnow()
        rfqs = self.session.exec(
            select(RfqRequest)
            .where(RfqRequest.status.in_(list(ACTIVE_STATES)))
            .where(RfqRequest.expires_at <= now)
        ).all()

        expired = [rfq for rfq in rfqs if apply_lazy_expiry(rfq, now)]
        if not expired:
            return 0

        with translate_storage_errors(self.session, "RFQ expiry sweep"):
            self.session.add_all(expired)
            self.session.commit()

        logger.info(f"Expired {len(expired)} overdue RFQs")
        return len(expired)
