import uuid
from typing import Optional

from loguru import logger
from sqlalchemy import update
from sqlmodel import Session, select, col

from app.core.config import settings
from app.core.exceptions import (
    AcceptanceFailedError, ConflictError, NotAuthorizedError, NotFoundError,
    RfqExpiredError, RfqWorkflowError, TransientError, ValidationError
)
from app.db.core import apply_statement_timeout, is_transient
from app.db.schema import RfqRequest, RfqQuote, RfqStatus, QuoteStatus, utcnow
from app.models.auth import Actor
from app.models.quote import AcceptanceResult
from app.services.notification import NotificationService
from app.services.workflow import OPEN_FOR_QUOTES, persist_lazy_expiry


class AcceptanceService:
    """
    Accepts exactly one quote per RFQ.

    The RFQ row is locked and both state changes are compare-and-set updates,
    so when two acceptances race only one can match the expected prior states.
    The loser sees zero affected rows, rolls back and gets a ConflictError.
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

    def _precheck(self, requester: Actor, rfq_id: uuid.UUID, quote_id: uuid.UUID) -> RfqQuote:
        rfq = self.session.get(RfqRequest, rfq_id)
        if not rfq:
            raise NotFoundError(f"RFQ {rfq_id} not found.")
        if rfq.user_id != requester.user_id:
            raise NotAuthorizedError("Only the requester can accept a quote.")

        if persist_lazy_expiry(self.session, rfq) or rfq.status == RfqStatus.EXPIRED:
            raise RfqExpiredError("This RFQ has expired; its quotes can no longer be accepted.")

        quote = self.session.get(RfqQuote, quote_id)
        if not quote:
            raise NotFoundError(f"Quote {quote_id} not found.")
        if quote.rfq_id != rfq.id:
            raise ValidationError(
                "The quote does not belong to this RFQ.",
                {"quote_id": "Quote belongs to a different RFQ."}
            )

        if rfq.status not in OPEN_FOR_QUOTES:
            raise ConflictError(f"This RFQ is already '{rfq.status.value}'.")
        if quote.status != QuoteStatus.SUBMITTED:
            raise ConflictError(f"This quote is already '{quote.status.value}'.")
        if quote.valid_until and quote.valid_until < utcnow().date():
            raise RfqExpiredError("The supplier's quote validity has lapsed.")

        return quote

    def accept_quote(
        self,
        requester: Actor,
        rfq_id: uuid.UUID,
        quote_id: uuid.UUID,
        delivery_instructions: Optional[str] = None,
    ) -> AcceptanceResult:
        quote = self._precheck(requester, rfq_id, quote_id)
        winner_supplier_id = quote.supplier_id
        now = utcnow()

        try:
            # --- START TRANSACTION ---
            apply_statement_timeout(self.session, self.timeout_seconds)

            # Row lock where the database has them; SQLite serializes writers instead.
            self.session.exec(
                select(RfqRequest.id).where(RfqRequest.id == rfq_id).with_for_update()
            ).first()

            claimed = self.session.execute(
                update(RfqRequest)
                .where(RfqRequest.id == rfq_id)
                .where(col(RfqRequest.status).in_(list(OPEN_FOR_QUOTES)))
                .values(
                    status=RfqStatus.ACCEPTED,
                    accepted_quote_id=quote_id,
                    delivery_instructions=delivery_instructions,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                raise ConflictError("Another quote was accepted for this RFQ first.")

            won = self.session.execute(
                update(RfqQuote)
                .where(RfqQuote.id == quote_id)
                .where(RfqQuote.rfq_id == rfq_id)
                .where(RfqQuote.status == QuoteStatus.SUBMITTED)
                .values(status=QuoteStatus.ACCEPTED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if won.rowcount != 1:
                raise ConflictError("This quote is no longer open for acceptance.")

            losers = self.session.exec(
                select(RfqQuote.id, RfqQuote.supplier_id)
                .where(RfqQuote.rfq_id == rfq_id)
                .where(RfqQuote.id != quote_id)
                .where(RfqQuote.status == QuoteStatus.SUBMITTED)
            ).all()
            rejected_ids = [row[0] for row in losers]
            rejected_supplier_ids = [row[1] for row in losers]

            if rejected_ids:
                self.session.execute(
                    update(RfqQuote)
                    .where(col(RfqQuote.id).in_(rejected_ids))
                    .where(RfqQuote.status == QuoteStatus.SUBMITTED)
                    .values(status=QuoteStatus.REJECTED, updated_at=now)
                    .execution_options(synchronize_session=False)
                )

            self.session.commit()
            # --- END TRANSACTION ---

        except RfqWorkflowError:
            self.session.rollback()
            raise
        except Exception as e:
            self.session.rollback()
            if is_transient(e):
                logger.warning(f"Acceptance of quote {quote_id} timed out: {e}")
                raise TransientError(
                    "Storage is temporarily unavailable. Please try again.") from e
            logger.exception(f"Acceptance of quote {quote_id} on RFQ {rfq_id} failed")
            raise AcceptanceFailedError(
                "The quote could not be accepted. Nothing was changed; please retry.") from e

        logger.info(
            f"RFQ {rfq_id}: accepted quote {quote_id}, rejected {len(rejected_ids)} others")

        self.notifications.notify_acceptance(rfq_id, winner_supplier_id, rejected_supplier_ids)
        return AcceptanceResult(
            accepted_quote_id=quote_id,
            rejected_quote_ids=rejected_ids,
            rfq_status=RfqStatus.ACCEPTED,
        )
