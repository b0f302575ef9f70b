"""Tests for notification rendering, the outbox and the delivery worker."""

import uuid
from unittest.mock import patch

import pytest
from sqlmodel import select

from app.core.config import Settings
from app.core.exceptions import NotAuthorizedError, NotFoundError
from app.db.schema import (
    NotificationChannel, NotificationDeliveryLog, NotificationEvent, NotificationOutbox,
    NotificationSubject, OutboxStatus, Supplier, UserProfile
)
from app.models.auth import Actor
from app.services.notification import (
    NotificationService, NotificationWorker, enabled_channels, render_template
)
from app.utils.messaging import (
    DeliveryError, EmailSender, LogOnlySender, WhatsAppSender, build_default_senders
)

from conftest import RecordingSender, single_line_quote


def _logs(session, subject_id):
    return session.exec(
        select(NotificationDeliveryLog).where(NotificationDeliveryLog.subject_id == subject_id)
    ).all()


class TestTemplates:
    def test_placeholders_are_filled(self):
        title, body = render_template(
            NotificationEvent.NEW_RFQ, NotificationChannel.EMAIL,
            {"rfq_id": "abc", "item_count": 3, "required_by": "2026-10-25",
             "delivery_address": "Harare", "supplier_name": "S1"},
        )
        assert title == "New RFQ request for delivery to Harare"
        assert "new RFQ (abc) for 3 items" in body
        assert "Required by 2026-10-25" in body

    def test_missing_values_render_empty(self):
        title, body = render_template(NotificationEvent.QUOTE_REJECTED, NotificationChannel.PUSH, {})
        assert title == "Quote not selected"
        assert body == "RFQ  was awarded to another supplier."

    def test_every_event_has_every_channel(self):
        for event in NotificationEvent:
            for channel in NotificationChannel:
                render_template(event, channel, {})


class TestEnabledChannels:
    def test_parses_and_ignores_unknown(self):
        assert enabled_channels("email, push,fax,") == [
            NotificationChannel.EMAIL, NotificationChannel.PUSH]


class TestNotifyRecipients:
    def test_one_outbox_row_per_supplier_and_channel(self, notification_service, session, open_rfq, suppliers):
        rows = session.exec(
            select(NotificationOutbox).where(NotificationOutbox.subject_id == open_rfq.rfq_id)).all()
        by_target = {(r.recipient, r.channel) for r in rows}
        assert by_target == {
            (f"supplier:{suppliers['s1'].id}", NotificationChannel.EMAIL),
            (f"supplier:{suppliers['s1'].id}", NotificationChannel.WHATSAPP),
            (f"supplier:{suppliers['s2'].id}", NotificationChannel.EMAIL),
            (f"supplier:{suppliers['s2'].id}", NotificationChannel.WHATSAPP),
        }

    def test_supplier_contact_wins_over_profile(self, session, open_rfq, suppliers):
        row = session.exec(
            select(NotificationOutbox)
            .where(NotificationOutbox.recipient == f"supplier:{suppliers['s1'].id}")
            .where(NotificationOutbox.channel == NotificationChannel.EMAIL)
        ).one()
        assert row.destination == "sales@s1.example.com"
        assert "S1 Harare Cement" in row.body

    def test_preferences_limit_channels(self, session, open_rfq, suppliers):
        profile = UserProfile(id=uuid.uuid4(), notify_email=True, notify_whatsapp=False)
        supplier = Supplier(
            name="Email Only", user_id=profile.id, contact_email="e@x.example.com",
            material_categories=["Cement & Concrete"],
        )
        session.add(profile)
        session.add(supplier)
        session.commit()

        queued = NotificationService(session).notify_recipients(open_rfq.rfq_id, [supplier.id])
        assert queued == 1

    def test_opted_out_supplier_gets_nothing(self, session, open_rfq):
        profile = UserProfile(id=uuid.uuid4(), notify_rfq=False)
        supplier = Supplier(name="Quiet", user_id=profile.id, material_categories=[])
        session.add(profile)
        session.add(supplier)
        session.commit()

        assert NotificationService(session).notify_recipients(open_rfq.rfq_id, [supplier.id]) == 0

    def test_failures_are_swallowed(self, notification_service, open_rfq, suppliers):
        with patch.object(notification_service, "enqueue", side_effect=RuntimeError("db gone")):
            assert notification_service.notify_recipients(open_rfq.rfq_id, [suppliers["s1"].id]) == 0

    def test_unknown_rfq_queues_nothing(self, notification_service, suppliers):
        assert notification_service.notify_recipients(uuid.uuid4(), [suppliers["s1"].id]) == 0


class TestWorker:
    def test_delivers_and_logs_every_attempt(self, worker, senders, session, open_rfq):
        summary = worker.dispatch_pending()

        assert summary.processed == 4
        assert summary.sent == 4
        assert len(senders[NotificationChannel.EMAIL].sent) == 2
        assert len(senders[NotificationChannel.WHATSAPP].sent) == 2

        logs = _logs(session, open_rfq.rfq_id)
        assert len(logs) == 4
        assert all(log.success for log in logs)
        assert all(log.subject_type == NotificationSubject.RFQ for log in logs)

    def test_rows_are_sent_once(self, worker, senders, open_rfq):
        worker.dispatch_pending()
        assert worker.dispatch_pending().processed == 0
        assert len(senders[NotificationChannel.EMAIL].sent) == 2

    def test_one_failing_channel_does_not_stop_the_others(self, session, open_rfq):
        senders = {
            NotificationChannel.EMAIL: RecordingSender(NotificationChannel.EMAIL, fail=True),
            NotificationChannel.WHATSAPP: RecordingSender(NotificationChannel.WHATSAPP),
        }
        summary = NotificationWorker(senders=senders).dispatch_pending()

        assert summary.sent == 2
        assert summary.failed == 2
        assert len(senders[NotificationChannel.WHATSAPP].sent) == 2

        failures = [log for log in _logs(session, open_rfq.rfq_id) if not log.success]
        assert len(failures) == 2
        assert all("email provider unavailable" in log.error_detail for log in failures)

        rows = session.exec(select(NotificationOutbox).where(
            NotificationOutbox.status == OutboxStatus.FAILED)).all()
        assert {r.channel for r in rows} == {NotificationChannel.EMAIL}
        assert all(r.attempt_count == 1 for r in rows)

    def test_missing_sender_is_logged_as_not_configured(self, session, open_rfq):
        summary = NotificationWorker(senders={}).dispatch_pending()
        assert summary.failed == 4
        assert all(log.error_detail == "Channel not configured" for log in _logs(session, open_rfq.rfq_id))

    def test_missing_destination_fails_that_attempt_only(self, session, worker, senders, open_rfq, suppliers):
        supplier = Supplier(name="No Phone", contact_email="np@x.example.com", material_categories=[])
        session.add(supplier)
        session.commit()
        NotificationService(session).notify_recipients(open_rfq.rfq_id, [supplier.id])

        summary = worker.dispatch_pending()
        assert summary.processed == 6
        assert summary.failed == 1

        failure = next(log for log in _logs(session, open_rfq.rfq_id) if not log.success)
        assert failure.recipient == f"supplier:{supplier.id}"
        assert failure.channel == NotificationChannel.WHATSAPP

    def test_overlapping_drains_deliver_each_row_once(self, session, open_rfq):
        inner = NotificationWorker(senders={
            NotificationChannel.EMAIL: RecordingSender(NotificationChannel.EMAIL),
            NotificationChannel.WHATSAPP: RecordingSender(NotificationChannel.WHATSAPP),
        })

        class DrainingSender(RecordingSender):
            """Starts a second drain while the first is mid-send."""

            def send(self, destination, title, body):
                super().send(destination, title, body)
                inner.dispatch_pending()

        outer_senders = {
            NotificationChannel.EMAIL: DrainingSender(NotificationChannel.EMAIL),
            NotificationChannel.WHATSAPP: RecordingSender(NotificationChannel.WHATSAPP),
        }
        outer = NotificationWorker(senders=outer_senders)
        outer.dispatch_pending()

        sent = [
            (channel, message)
            for senders in (outer_senders, inner.senders)
            for channel, sender in senders.items()
            for message in sender.sent
        ]
        assert len(sent) == 4
        assert len(set(sent)) == 4
        assert len(_logs(session, open_rfq.rfq_id)) == 4

        session.expire_all()
        rows = session.exec(select(NotificationOutbox)).all()
        assert all(r.status == OutboxStatus.SENT for r in rows)
        assert all(r.attempt_count == 1 for r in rows)

    def test_claimed_row_is_not_picked_up_again(self, session, worker, senders, open_rfq):
        row = session.exec(select(NotificationOutbox)).first()
        row.status = OutboxStatus.SENDING
        session.add(row)
        session.commit()

        assert worker.dispatch_pending().processed == 3


class TestDeliveryLog:
    def test_requester_sees_every_attempt(self, worker, notification_service, builder, open_rfq):
        worker.dispatch_pending()
        logs = notification_service.list_deliveries(builder, NotificationSubject.RFQ, open_rfq.rfq_id)
        assert len(logs) == 4

    def test_supplier_sees_only_its_own_attempts(self, worker, notification_service, open_rfq, suppliers):
        worker.dispatch_pending()
        s1 = Actor(user_id=uuid.uuid4(), supplier_id=suppliers["s1"].id)

        logs = notification_service.list_deliveries(s1, NotificationSubject.RFQ, open_rfq.rfq_id)
        assert len(logs) == 2
        assert {log.recipient for log in logs} == {f"supplier:{suppliers['s1'].id}"}

    def test_strangers_are_refused(self, worker, notification_service, open_rfq, suppliers):
        worker.dispatch_pending()
        with pytest.raises(NotAuthorizedError):
            notification_service.list_deliveries(
                Actor(user_id=uuid.uuid4()), NotificationSubject.RFQ, open_rfq.rfq_id)
        with pytest.raises(NotAuthorizedError):
            notification_service.list_deliveries(
                Actor(user_id=uuid.uuid4(), supplier_id=suppliers["bulawayo"].id),
                NotificationSubject.RFQ, open_rfq.rfq_id)

    def test_quote_logs_resolve_through_the_quote(
            self, worker, notification_service, quote_service, builder, open_rfq, suppliers):
        result = quote_service.submit_quote(
            suppliers["s1"].id, open_rfq.rfq_id, single_line_quote(open_rfq.item_ids[0]))
        worker.dispatch_pending()

        logs = notification_service.list_deliveries(builder, NotificationSubject.QUOTE, result.quote_id)
        assert logs
        assert all(log.recipient == f"user:{builder.user_id}" for log in logs)

    def test_unknown_subject(self, notification_service, builder):
        with pytest.raises(NotFoundError):
            notification_service.list_deliveries(builder, NotificationSubject.RFQ, uuid.uuid4())


class TestSenders:
    def test_email_needs_configuration(self):
        with pytest.raises(DeliveryError, match="not configured"):
            EmailSender("", 587, "", "", "rfq@x").send("a@b.c", "t", "b")

    def test_email_needs_destination(self):
        with pytest.raises(DeliveryError, match="Missing email"):
            EmailSender("smtp.example.com", 587, "", "", "rfq@x").send(None, "t", "b")

    def test_whatsapp_posts_to_cloud_api(self):
        sender = WhatsAppSender("https://graph.example.com/v19.0/", "123", "tok")
        with patch("app.utils.messaging.requests.post") as post:
            post.return_value.ok = True
            sender.send("+263771000001", "t", "hello")

        url = post.call_args.args[0]
        assert url == "https://graph.example.com/v19.0/123/messages"
        assert post.call_args.kwargs["json"]["text"] == {"body": "hello"}
        assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer tok"

    def test_whatsapp_api_error_is_a_delivery_error(self):
        sender = WhatsAppSender("https://graph.example.com", "123", "tok")
        with patch("app.utils.messaging.requests.post") as post:
            post.return_value.ok = False
            post.return_value.text = "invalid recipient"
            with pytest.raises(DeliveryError, match="invalid recipient"):
                sender.send("+263", "t", "b")

    def test_mock_mode_uses_log_only_senders(self):
        senders = build_default_senders(Settings(secret_key="x", notification_mock=True))
        assert all(isinstance(s, LogOnlySender) for s in senders.values())
