from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError
from sqlmodel import Session
from pydantic import ValidationError

from app.core.config import settings
from app.core.exceptions import NotAuthorizedError
from app.db.core import get_session
from app.models.auth import Actor, TokenData

from app.services.rfq import RfqService
from app.services.quote import QuoteService
from app.services.acceptance import AcceptanceService
from app.services.notification import NotificationService, NotificationWorker

ALGORITHM = "HS256"

bearer_scheme = HTTPBearer()


def decode_access_token(token: str) -> TokenData:
    payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    return TokenData(
        user_id=payload.get("sub"),
        supplier_id=payload.get("supplier_id"),
    )


def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> Actor:
    """
    Validates the bearer token and returns who is calling.
    Sessions and sign-in live in the account service; we only verify the signature.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        token_data = decode_access_token(credentials.credentials)
    except (InvalidTokenError, ValidationError):
        raise credentials_exception

    return Actor(user_id=token_data.user_id, supplier_id=token_data.supplier_id)


def get_current_supplier(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_supplier:
        raise NotAuthorizedError("This action is restricted to supplier accounts.")
    return actor


def get_notification_operator(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Manual outbox drains are an operations action, limited to NOTIFICATION_OPERATOR_IDS."""
    operators = {
        value.strip() for value in settings.notification_operator_ids.split(",") if value.strip()
    }
    if str(actor.user_id) not in operators:
        raise NotAuthorizedError("Only notification operators can drain the outbox.")
    return actor


def get_storage_timeout(
    x_storage_timeout: Optional[float] = Header(
        default=None,
        description="Per-request storage timeout in seconds. Defaults to DB_TIMEOUT_SECONDS."
    )
) -> float:
    if x_storage_timeout is None or x_storage_timeout <= 0:
        return settings.db_timeout_seconds
    return x_storage_timeout


def get_notification_service(session: Session = Depends(get_session)) -> NotificationService:
    return NotificationService(session)


def get_notification_worker() -> NotificationWorker:
    return NotificationWorker()


def get_rfq_service(
    session: Session = Depends(get_session),
    timeout: float = Depends(get_storage_timeout),
) -> RfqService:
    return RfqService(session=session, timeout_seconds=timeout)


def get_quote_service(
    session: Session = Depends(get_session),
    timeout: float = Depends(get_storage_timeout),
) -> QuoteService:
    return QuoteService(session=session, timeout_seconds=timeout)


def get_acceptance_service(
    session: Session = Depends(get_session),
    timeout: float = Depends(get_storage_timeout),
) -> AcceptanceService:
    return AcceptanceService(session=session, timeout_seconds=timeout)
