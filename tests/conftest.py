"""Shared fixtures: a throwaway SQLite database, demo suppliers and fake channel senders."""

import os
import tempfile
import uuid
from datetime import timedelta

import jwt
import pytest

# Configure the app before anything imports app.core.config.
_DB_DIR = tempfile.mkdtemp(prefix="rfq-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'rfq.db')}"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["LOG_FILE"] = ""
os.environ["NOTIFICATION_CHANNELS"] = "email,whatsapp"
os.environ["NOTIFICATION_MOCK"] = "false"

from sqlmodel import Session, SQLModel  # noqa: E402

from app.core.config import MatchingConfig  # noqa: E402
from app.db.core import engine  # noqa: E402
from app.db.schema import (  # noqa: E402
    NotificationChannel, RfqRequest, Supplier, UserProfile, VerificationTier, utcnow
)
from app.models.auth import Actor  # noqa: E402
from app.models.quote import QuoteItemInput, QuoteSubmit  # noqa: E402
from app.models.rfq import RfqCreate, RfqItemInput  # noqa: E402
from app.services.catalog import MaterialCatalog, SupplierDirectory  # noqa: E402
from app.services.matching import SupplierMatcher  # noqa: E402
from app.services.notification import NotificationService, NotificationWorker  # noqa: E402
from app.services.quote import QuoteService  # noqa: E402
from app.services.rfq import RfqService  # noqa: E402
from app.utils.messaging import ChannelSender, DeliveryError  # noqa: E402


class RecordingSender(ChannelSender):
    """In-memory channel: records deliveries, or fails every one when `fail` is set."""

    def __init__(self, channel: NotificationChannel, fail: bool = False):
        self.channel = channel
        self.fail = fail
        self.sent = []

    def send(self, destination, title, body):
        if self.fail:
            raise DeliveryError(f"{self.channel.value} provider unavailable")
        if not destination:
            raise DeliveryError(f"Missing {self.channel.value} destination")
        self.sent.append((destination, title, body))


def make_token(user_id, supplier_id=None, secret="test-secret"):
    claims = {"sub": str(user_id), "exp": utcnow() + timedelta(hours=1)}
    if supplier_id:
        claims["supplier_id"] = str(supplier_id)
    return jwt.encode(claims, secret, algorithm="HS256")


# ==========================================================================
# DATABASE
# ==========================================================================


@pytest.fixture(autouse=True)
def db():
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(db):
    with Session(engine) as s:
        yield s


# ==========================================================================
# DIRECTORY DATA
# ==========================================================================


@pytest.fixture
def builder():
    return Actor(user_id=uuid.uuid4())


@pytest.fixture
def builder_profile(session, builder):
    profile = UserProfile(
        id=builder.user_id,
        full_name="Tendai Builder",
        email="tendai@example.com",
        phone_number="+263772000000",
    )
    session.add(profile)
    session.commit()
    return profile


def _supplier(session, **kwargs) -> Supplier:
    supplier = Supplier(**kwargs)
    session.add(supplier)
    session.commit()
    session.refresh(supplier)
    return supplier


@pytest.fixture
def suppliers(session):
    """
    s1/s2 are the two Harare cement suppliers every scenario uses.
    The rest exist to be filtered out.
    """
    s1_user = uuid.uuid4()
    session.add(UserProfile(
        id=s1_user, full_name="S1 Sales", email="profile@s1.example.com",
        notify_email=True, notify_whatsapp=True,
    ))
    session.commit()

    return {
        "s1": _supplier(
            session, name="S1 Harare Cement", user_id=s1_user, location="Harare",
            physical_address="45 Seke Road, Harare",
            material_categories=["Cement & Concrete"],
            verification_status=VerificationTier.TRUSTED, rating=4.5,
            contact_email="sales@s1.example.com", contact_phone="+263771000001",
        ),
        "s2": _supplier(
            session, name="S2 Msasa Hardware", location="Harare",
            material_categories=["Cement & Concrete", "Hardware & Fasteners"],
            verification_status=VerificationTier.VERIFIED, rating=4.0,
            contact_email="quotes@s2.example.com", contact_phone="+263771000002",
        ),
        "bulawayo": _supplier(
            session, name="Bulawayo Cement Depot", location="Bulawayo",
            material_categories=["Cement & Concrete"],
            verification_status=VerificationTier.PREMIUM, rating=5.0,
            contact_email="depot@byo.example.com",
        ),
        "roofing": _supplier(
            session, name="Harare Roofing", location="Harare",
            material_categories=["Roofing Materials"],
            verification_status=VerificationTier.PREMIUM, rating=5.0,
        ),
        "inactive": _supplier(
            session, name="Closed Cement Yard", location="Harare",
            material_categories=["Cement & Concrete"],
            verification_status=VerificationTier.PREMIUM, rating=5.0,
            is_active=False,
        ),
    }


# ==========================================================================
# SERVICES
# ==========================================================================


@pytest.fixture
def matcher(session):
    return SupplierMatcher(SupplierDirectory(session), MaterialCatalog(), MatchingConfig())


@pytest.fixture
def rfq_service(session):
    return RfqService(session)


@pytest.fixture
def quote_service(session):
    return QuoteService(session)


@pytest.fixture
def notification_service(session):
    return NotificationService(session)


@pytest.fixture
def senders():
    return {
        NotificationChannel.EMAIL: RecordingSender(NotificationChannel.EMAIL),
        NotificationChannel.WHATSAPP: RecordingSender(NotificationChannel.WHATSAPP),
    }


@pytest.fixture
def worker(senders):
    return NotificationWorker(engine=engine, senders=senders, batch_size=100)


# ==========================================================================
# SCENARIO HELPERS
# ==========================================================================


def cement_rfq(project_id=None, quantity=100, publish=True) -> RfqCreate:
    return RfqCreate(
        project_id=project_id or uuid.uuid4(),
        items=[RfqItemInput(material_key="cement_50kg", quantity=quantity, unit="bag")],
        delivery_address="12 Main St, Harare",
        required_by=(utcnow() + timedelta(days=7)).date(),
        publish=publish,
    )


def single_line_quote(rfq_item_id, unit_price="10.50", quantity="100", delivery_days=3, **kwargs) -> QuoteSubmit:
    return QuoteSubmit(
        items=[QuoteItemInput(
            rfq_item_id=rfq_item_id,
            unit_price_usd=unit_price,
            available_quantity=quantity,
        )],
        delivery_days=delivery_days,
        **kwargs,
    )


@pytest.fixture
def open_rfq(rfq_service, builder, builder_profile, suppliers):
    """Scenario A's RFQ: 100 bags of cement to Harare, matched to s1 and s2."""
    return rfq_service.create_rfq(builder, cement_rfq())


def expire_now(session, rfq_id):
    rfq = session.get(RfqRequest, rfq_id)
    rfq.expires_at = utcnow() - timedelta(minutes=1)
    session.add(rfq)
    session.commit()
