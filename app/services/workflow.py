from datetime import datetime
from typing import Dict, FrozenSet, Optional

from loguru import logger
from sqlmodel import Session

from app.core.exceptions import ConflictError
from app.db.core import translate_storage_errors
from app.db.schema import RfqRequest, RfqStatus, QuoteStatus, utcnow


# Allowed RFQ transitions. ACCEPTED is only ever entered by the acceptance coordinator.
TRANSITIONS: Dict[RfqStatus, FrozenSet[RfqStatus]] = {
    RfqStatus.DRAFT: frozenset({RfqStatus.OPEN, RfqStatus.CANCELLED, RfqStatus.EXPIRED}),
    RfqStatus.OPEN: frozenset({RfqStatus.QUOTED, RfqStatus.ACCEPTED, RfqStatus.CANCELLED, RfqStatus.EXPIRED}),
    RfqStatus.QUOTED: frozenset({RfqStatus.ACCEPTED, RfqStatus.CANCELLED, RfqStatus.EXPIRED}),
    RfqStatus.ACCEPTED: frozenset({RfqStatus.ORDERED}),
    RfqStatus.ORDERED: frozenset({RfqStatus.DELIVERED}),
    RfqStatus.DELIVERED: frozenset(),
    RfqStatus.CANCELLED: frozenset(),
    RfqStatus.EXPIRED: frozenset(),
}

# States in which suppliers may still quote and the builder may still accept.
OPEN_FOR_QUOTES: FrozenSet[RfqStatus] = frozenset({RfqStatus.OPEN, RfqStatus.QUOTED})

ACTIVE_STATES: FrozenSet[RfqStatus] = frozenset(
    {RfqStatus.DRAFT, RfqStatus.OPEN, RfqStatus.QUOTED})

TERMINAL_QUOTE_STATES: FrozenSet[QuoteStatus] = frozenset(
    {QuoteStatus.ACCEPTED, QuoteStatus.REJECTED, QuoteStatus.EXPIRED})


def can_transition(current: RfqStatus, target: RfqStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: RfqStatus, target: RfqStatus):
    if not can_transition(current, target):
        raise ConflictError(
            f"RFQ cannot move from '{current.value}' to '{target.value}'.")


def is_overdue(rfq: RfqRequest, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return rfq.status in ACTIVE_STATES and rfq.expires_at <= now


def apply_lazy_expiry(rfq: RfqRequest, now: Optional[datetime] = None) -> bool:
    """
    Marks an overdue RFQ and its live quotes as expired, in memory.
    The caller owns the session and commits.

    Returns True when anything changed.
    """
    if not is_overdue(rfq, now):
        return False

    logger.info(f"RFQ {rfq.id} passed its deadline ({rfq.expires_at}); expiring.")
    rfq.status = RfqStatus.EXPIRED
    for quote in rfq.quotes:
        if quote.status == QuoteStatus.SUBMITTED:
            quote.status = QuoteStatus.EXPIRED
    return True


def persist_lazy_expiry(session: Session, rfq: RfqRequest, now: Optional[datetime] = None) -> bool:
    """apply_lazy_expiry + commit. Used on every read/write path that loads an RFQ."""
    if not apply_lazy_expiry(rfq, now):
        return False
    with translate_storage_errors(session, "RFQ expiry"):
        session.add(rfq)
        session.commit()
    return True
