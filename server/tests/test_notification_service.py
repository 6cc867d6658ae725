"""
Tests for rendering outbox entries and draining the notification outbox.
"""

from datetime import timedelta

import pytest

from signdesk.integrations.notifications import NotificationType
from signdesk.models import NotificationOutbox, NotificationStatus
from signdesk.services.notification_service import (
    NotificationRelay,
    discard_pending_notifications,
    dispatch_notifications,
    dispatch_pending_notifications,
    render_message,
)
from signdesk.services.signature_state import utcnow


def outbox_entry(notification_type, **payload):
    return NotificationOutbox(
        notification_type=notification_type.value,
        recipient_email="bob@example.com",
        recipient_name="Bob Signer",
        signature_request_id="req-1",
        payload={"contract_title": "MSA", **payload},
    )


def test_invitation_carries_link_message_and_deadline():
    message = render_message(
        outbox_entry(
            NotificationType.SIGNER_INVITED,
            signing_url="https://sign.example.com/doc-1/1",
            message="Please sign by Friday.",
            expires_at="2026-04-01T00:00:00+00:00",
        )
    )

    assert message.subject == "Signature requested: MSA"
    assert "https://sign.example.com/doc-1/1" in message.text_body
    assert "Please sign by Friday." in message.text_body
    assert "2026-04-01T00:00:00+00:00" in message.text_body
    assert message.tag == "signer_invited"
    assert message.metadata == {"signature_request_id": "req-1"}


def test_progress_update_counts_signatures():
    message = render_message(
        outbox_entry(NotificationType.INITIATOR_PROGRESS, signer_name="Bob Signer", signed_count=1, total=2)
    )

    assert "1 of 2 signatures collected." in message.text_body


def test_decline_includes_reason():
    message = render_message(
        outbox_entry(NotificationType.SIGNER_DECLINED, signer_name="Bob Signer", reason="Wrong entity name")
    )

    assert message.subject == "Signer declined: MSA"
    assert "Reason: Wrong entity name" in message.text_body


def test_missing_title_falls_back_to_generic_wording():
    entry = outbox_entry(NotificationType.SIGNER_CONFIRMED)
    entry.payload = {"contract_title": None, "signer_name": None}

    message = render_message(entry)

    assert message.subject == "You signed: your document"
    assert "None" not in message.text_body


class TestOutboxRelay:
    @pytest.mark.asyncio
    async def test_rows_left_pending_by_a_restart_are_sent(
        self, session, session_factory, create_request, contract, bob, notifier, fetch_all
    ):
        await create_request(contract, [bob])
        discard_pending_notifications(session)

        async with session_factory() as fresh:
            assert await dispatch_notifications(fresh, notifier) == 0
            assert await dispatch_pending_notifications(fresh, notifier) == 0
            relayed = await dispatch_pending_notifications(fresh, notifier, now=utcnow() + timedelta(minutes=2))

        assert relayed == 1
        assert notifier.tags_for("bob@example.com") == ["signer_invited"]
        rows = await fetch_all(NotificationOutbox)
        assert [(row.status, row.attempts) for row in rows] == [(NotificationStatus.DISPATCHED, 1)]

    @pytest.mark.asyncio
    async def test_failed_rows_are_retried_after_backoff(
        self, session, session_factory, create_request, contract, bob, notifier, fetch_all
    ):
        notifier.failing_recipients.add("bob@example.com")
        await create_request(contract, [bob])
        assert await dispatch_notifications(session, notifier, retry_delay_seconds=30) == 0

        failed = await fetch_all(NotificationOutbox)
        assert [(row.status, row.attempts) for row in failed] == [(NotificationStatus.FAILED, 1)]
        assert failed[0].next_run_at is not None

        notifier.failing_recipients.clear()
        async with session_factory() as fresh:
            too_soon = await dispatch_pending_notifications(fresh, notifier, retry_delay_seconds=30)
            retried = await dispatch_pending_notifications(
                fresh, notifier, now=utcnow() + timedelta(seconds=45), retry_delay_seconds=30
            )

        assert (too_soon, retried) == (0, 1)
        rows = await fetch_all(NotificationOutbox)
        assert [(row.status, row.attempts, row.last_error) for row in rows] == [(NotificationStatus.DISPATCHED, 2, None)]

    @pytest.mark.asyncio
    async def test_retries_stop_at_max_attempts(
        self, session, session_factory, create_request, contract, bob, notifier, fetch_all
    ):
        notifier.failing_recipients.add("bob@example.com")
        await create_request(contract, [bob])
        await dispatch_notifications(session, notifier)

        async with session_factory() as fresh:
            for hours in (1, 2, 3):
                await dispatch_pending_notifications(
                    fresh, notifier, now=utcnow() + timedelta(hours=hours), max_attempts=2
                )

        rows = await fetch_all(NotificationOutbox)
        assert [(row.status, row.attempts) for row in rows] == [(NotificationStatus.FAILED, 2)]
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_relay_leaves_fresh_rows_to_the_writing_request(self, session, session_factory, create_request, contract, bob, notifier):
        await create_request(contract, [bob])
        discard_pending_notifications(session)
        relay = NotificationRelay(session_factory, notifier, interval_seconds=60, retry_delay_seconds=0)

        assert await relay.run_once() == 0
        assert notifier.sent == []
