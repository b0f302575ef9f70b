"""Tests for atomic RFQ creation and the RFQ store's read/lifecycle operations."""

import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlmodel import select

from app.core.exceptions import (
    ConflictError, NotAuthorizedError, NotFoundError, RfqExpiredError, TransientError, ValidationError
)
from app.db.schema import (
    NotificationOutbox, RfqItem, RfqRecipient, RfqRequest, RfqStatus, utcnow
)
from app.models.auth import Actor
from app.models.rfq import RfqCreate, RfqItemInput
from app.services.matching import LocationPolicy, SupplierMatcher
from app.services.rfq import RfqService

from conftest import cement_rfq, expire_now


def _count(session, model):
    return len(session.exec(select(model)).all())


class TestCreateRfq:
    def test_scenario_a_creates_request_with_one_item(self, rfq_service, session, builder, suppliers):
        result = rfq_service.create_rfq(builder, cement_rfq())

        assert result.status == RfqStatus.OPEN
        assert len(result.item_ids) == 1
        assert rfq_service.get_quotes(builder, result.rfq_id).quotes == []

        item = session.get(RfqItem, result.item_ids[0])
        assert item.material_name == "Standard Cement 32.5N"
        assert item.unit == "bag"

    def test_matched_suppliers_become_recipients(self, rfq_service, session, builder, suppliers):
        result = rfq_service.create_rfq(builder, cement_rfq())

        assert result.matched_supplier_ids == [suppliers["s1"].id, suppliers["s2"].id]
        recipients = session.exec(
            select(RfqRecipient).where(RfqRecipient.rfq_id == result.rfq_id)).all()
        assert {r.supplier_id for r in recipients} == set(result.matched_supplier_ids)
        assert all(r.status.value == "notified" for r in recipients)

    def test_recipient_records_channels(self, rfq_service, session, builder, suppliers):
        result = rfq_service.create_rfq(builder, cement_rfq())
        s1 = session.exec(
            select(RfqRecipient).where(RfqRecipient.supplier_id == suppliers["s1"].id)).one()
        assert s1.notification_channels == ["email", "whatsapp"]

    def test_expiry_defaults_to_seven_days(self, rfq_service, session, builder, suppliers):
        result = rfq_service.create_rfq(builder, cement_rfq())
        rfq = session.get(RfqRequest, result.rfq_id)
        assert rfq.expires_at - rfq.created_at == timedelta(days=7)

    def test_new_rfq_notifications_are_queued(self, rfq_service, session, builder, suppliers):
        result = rfq_service.create_rfq(builder, cement_rfq())
        rows = session.exec(
            select(NotificationOutbox).where(NotificationOutbox.subject_id == result.rfq_id)).all()
        # two suppliers x (email, whatsapp)
        assert len(rows) == 4
        assert all(r.event.value == "new_rfq" for r in rows)

    def test_empty_item_list_is_rejected(self, rfq_service, session, builder, suppliers):
        data = RfqCreate(project_id=uuid.uuid4(), items=[])
        with pytest.raises(ValidationError) as exc:
            rfq_service.create_rfq(builder, data)
        assert "items" in exc.value.fields
        assert _count(session, RfqRequest) == 0

    def test_field_level_errors_for_every_bad_line(self, rfq_service, session, builder, suppliers):
        data = RfqCreate(project_id=uuid.uuid4(), items=[
            RfqItemInput(material_key="cement_50kg", quantity=0),
            RfqItemInput(material_key="unobtainium", quantity=5),
        ])
        with pytest.raises(ValidationError) as exc:
            rfq_service.create_rfq(builder, data)

        assert set(exc.value.fields) == {"items[0].quantity", "items[1].material_key"}
        assert _count(session, RfqRequest) == 0

    def test_no_matching_suppliers_still_creates_rfq(self, rfq_service, builder, suppliers):
        data = cement_rfq()
        data.delivery_address = "Victoria Falls"
        result = rfq_service.create_rfq(builder, data)
        assert result.recipient_ids == []
        assert result.status == RfqStatus.OPEN

    def test_matching_failure_does_not_block_creation(self, session, builder, suppliers):
        class Broken(LocationPolicy):
            def matches(self, delivery_location, supplier):
                raise RuntimeError("geo service down")

        service = RfqService(session)
        service.matcher.location_policy = Broken()
        result = service.create_rfq(builder, cement_rfq())

        assert result.recipient_ids == []
        assert session.get(RfqRequest, result.rfq_id) is not None

    def test_failure_mid_transaction_leaves_nothing_behind(self, rfq_service, session, builder, suppliers):
        with patch.object(RfqService, "_add_recipients", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                rfq_service.create_rfq(builder, cement_rfq())

        assert _count(session, RfqRequest) == 0
        assert _count(session, RfqItem) == 0
        assert _count(session, RfqRecipient) == 0

    def test_storage_timeout_is_retryable(self, rfq_service, session, builder, suppliers):
        from sqlalchemy.exc import OperationalError

        error = OperationalError("INSERT", {}, Exception("database is locked"))
        with patch.object(RfqService, "_add_recipients", side_effect=error):
            with pytest.raises(TransientError) as exc:
                rfq_service.create_rfq(builder, cement_rfq())

        assert exc.value.retryable
        assert _count(session, RfqRequest) == 0

    def test_notification_failure_does_not_undo_rfq(self, rfq_service, session, builder, suppliers):
        with patch.object(rfq_service.notifications, "enqueue", side_effect=RuntimeError("outbox down")):
            result = rfq_service.create_rfq(builder, cement_rfq())

        assert session.get(RfqRequest, result.rfq_id).status == RfqStatus.OPEN
        assert len(result.recipient_ids) == 2


class TestDraftAndPublish:
    def test_unpublished_rfq_is_a_draft_without_recipients(self, rfq_service, builder, suppliers):
        result = rfq_service.create_rfq(builder, cement_rfq(publish=False))
        assert result.status == RfqStatus.DRAFT
        assert result.recipient_ids == []

    def test_publish_matches_and_opens(self, rfq_service, session, builder, suppliers):
        draft = rfq_service.create_rfq(builder, cement_rfq(publish=False))
        result = rfq_service.publish_rfq(builder, draft.rfq_id)

        assert result.status == RfqStatus.OPEN
        assert len(result.recipient_ids) == 2
        assert session.get(RfqRequest, draft.rfq_id).status == RfqStatus.OPEN

    def test_publishing_twice_is_a_conflict(self, rfq_service, builder, suppliers):
        draft = rfq_service.create_rfq(builder, cement_rfq(publish=False))
        rfq_service.publish_rfq(builder, draft.rfq_id)
        with pytest.raises(ConflictError):
            rfq_service.publish_rfq(builder, draft.rfq_id)


class TestReads:
    def test_get_rfq_is_owner_only(self, rfq_service, open_rfq):
        with pytest.raises(NotAuthorizedError):
            rfq_service.get_rfq(Actor(user_id=uuid.uuid4()), open_rfq.rfq_id)

    def test_unknown_rfq(self, rfq_service, builder):
        with pytest.raises(NotFoundError):
            rfq_service.get_rfq(builder, uuid.uuid4())

    def test_get_rfq_details(self, rfq_service, builder, open_rfq, suppliers):
        detail = rfq_service.get_rfq(builder, open_rfq.rfq_id)
        assert detail.status == RfqStatus.OPEN
        assert len(detail.items) == 1
        assert {r.supplier_name for r in detail.recipients} == {
            suppliers["s1"].name, suppliers["s2"].name}

    def test_list_project_rfqs_newest_first(self, rfq_service, builder, suppliers):
        project_id = uuid.uuid4()
        first = rfq_service.create_rfq(builder, cement_rfq(project_id=project_id))
        second = rfq_service.create_rfq(builder, cement_rfq(project_id=project_id, quantity=5))
        rfq_service.create_rfq(builder, cement_rfq())  # other project

        listed = rfq_service.list_project_rfqs(builder, project_id)
        assert [r.id for r in listed] == [second.rfq_id, first.rfq_id]

    def test_overdue_rfq_reads_as_expired(self, rfq_service, session, builder, open_rfq):
        expire_now(session, open_rfq.rfq_id)
        assert rfq_service.get_rfq(builder, open_rfq.rfq_id).status == RfqStatus.EXPIRED


class TestRefreshRecipients:
    def test_adds_only_new_suppliers(self, rfq_service, session, builder, suppliers):
        data = cement_rfq()
        data.delivery_address = ""
        with patch.object(SupplierMatcher, "match_suppliers", return_value=[]):
            created = rfq_service.create_rfq(builder, data)
        assert created.recipient_ids == []

        refreshed = rfq_service.refresh_recipients(builder, created.rfq_id)
        assert len(refreshed.added_supplier_ids) == 3

        again = rfq_service.refresh_recipients(builder, created.rfq_id)
        assert again.added_supplier_ids == []

    def test_refresh_on_expired_rfq(self, rfq_service, session, builder, open_rfq):
        expire_now(session, open_rfq.rfq_id)
        with pytest.raises(RfqExpiredError):
            rfq_service.refresh_recipients(builder, open_rfq.rfq_id)


class TestLifecycle:
    def test_cancel_open_rfq(self, rfq_service, builder, open_rfq):
        assert rfq_service.cancel_rfq(builder, open_rfq.rfq_id).status == RfqStatus.CANCELLED

    def test_cannot_order_before_acceptance(self, rfq_service, builder, open_rfq):
        with pytest.raises(ConflictError):
            rfq_service.mark_ordered(builder, open_rfq.rfq_id)

    def test_cancel_is_owner_only(self, rfq_service, open_rfq):
        with pytest.raises(NotAuthorizedError):
            rfq_service.cancel_rfq(Actor(user_id=uuid.uuid4()), open_rfq.rfq_id)

    def test_expire_overdue_sweep(self, rfq_service, session, builder, suppliers):
        live = rfq_service.create_rfq(builder, cement_rfq())
        stale = rfq_service.create_rfq(builder, cement_rfq())
        expire_now(session, stale.rfq_id)

        assert rfq_service.expire_overdue() == 1
        session.expire_all()
        assert session.get(RfqRequest, stale.rfq_id).status == RfqStatus.EXPIRED
        assert session.get(RfqRequest, live.rfq_id).status == RfqStatus.OPEN

    def test_sweep_respects_explicit_now(self, rfq_service, builder, suppliers):
        rfq_service.create_rfq(builder, cement_rfq())
        assert rfq_service.expire_overdue(now=utcnow() + timedelta(days=8)) == 1
