from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signdesk.core.logging import get_logger
from signdesk.integrations.notifications import EmailMessage, NotificationType, Notifier
from signdesk.models.event import NotificationOutbox, NotificationStatus
from signdesk.services.background import PeriodicJob
from signdesk.services.signature_state import utcnow

logger = get_logger(__name__)

PENDING_KEY = "signdesk.pending_notifications"
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_DELAY_SECONDS = 30
# Rows the request that wrote them has not sent by then are left to the relay.
INLINE_DISPATCH_GRACE = timedelta(seconds=60)


async def enqueue_notification(
    session: AsyncSession,
    *,
    notification_type: NotificationType,
    recipient_email: str,
    recipient_name: str | None = None,
    signature_request_id: str | None = None,
    payload: dict[str, Any] | None = None,
) -> NotificationOutbox:
    """Write a notification in the caller's transaction; it is sent by ``dispatch_notifications`` after commit."""
    entry = NotificationOutbox(
        signature_request_id=signature_request_id,
        notification_type=notification_type.value,
        recipient_email=recipient_email,
        recipient_name=recipient_name,
        payload=payload or {},
        next_run_at=utcnow() + INLINE_DISPATCH_GRACE,
    )
    session.add(entry)
    await session.flush()
    session.info.setdefault(PENDING_KEY, []).append(entry.id)
    logger.info(
        "notification.outbox.enqueued",
        notification_type=notification_type.value,
        signature_request_id=signature_request_id,
    )
    return entry


def render_message(entry: NotificationOutbox) -> EmailMessage:
    data = entry.payload
    title = data.get("contract_title") or "your document"
    kind = NotificationType(entry.notification_type)

    if kind is NotificationType.SIGNER_INVITED:
        subject = f"Signature requested: {title}"
        lines = [f"You have been asked to sign \"{title}\"."]
        if data.get("message"):
            lines.append(data["message"])
        if data.get("signing_url"):
            lines.append(f"Sign here: {data['signing_url']}")
        if data.get("expires_at"):
            lines.append(f"This request expires at {data['expires_at']}.")
    elif kind is NotificationType.SIGNER_CONFIRMED:
        subject = f"You signed: {title}"
        lines = [f"Your signature on \"{title}\" has been recorded."]
    elif kind is NotificationType.INITIATOR_PROGRESS:
        subject = f"Signing progress: {title}"
        lines = [
            f"{data.get('signer_name') or 'A signer'} signed \"{title}\".",
            f"{data.get('signed_count', 0)} of {data.get('total', 0)} signatures collected.",
        ]
    elif kind is NotificationType.REQUEST_CANCELLED:
        subject = f"Signature request cancelled: {title}"
        lines = [f"The request to sign \"{title}\" was cancelled. No further action is needed."]
    elif kind is NotificationType.REQUEST_COMPLETED:
        subject = f"Fully signed: {title}"
        lines = [f"Every party has signed \"{title}\". The signed document is now available."]
    else:
        subject = f"Signer declined: {title}"
        lines = [f"{data.get('signer_name') or 'A signer'} declined to sign \"{title}\"."]
        if data.get("reason"):
            lines.append(f"Reason: {data['reason']}")

    return EmailMessage(
        to_email=entry.recipient_email,
        to_name=entry.recipient_name,
        subject=subject,
        text_body="\n\n".join(lines),
        tag=entry.notification_type,
        metadata={"signature_request_id": entry.signature_request_id or ""},
    )


async def _deliver(
    entry: NotificationOutbox,
    notifier: Notifier,
    *,
    now: datetime,
    retry_delay_seconds: float,
) -> bool:
    try:
        await notifier.send(render_message(entry))
    except Exception as exc:
        entry.status = NotificationStatus.FAILED
        entry.last_error = str(exc)
        entry.next_run_at = now + timedelta(seconds=retry_delay_seconds * entry.attempts)
        logger.warning(
            "notification.outbox.failed",
            notification_id=entry.id,
            notification_type=entry.notification_type,
            attempts=entry.attempts,
            error=str(exc),
        )
        return False
    entry.status = NotificationStatus.DISPATCHED
    entry.last_error = None
    entry.next_run_at = None
    logger.info("notification.outbox.dispatched", notification_type=entry.notification_type)
    return True


async def dispatch_notifications(
    session: AsyncSession,
    notifier: Notifier,
    *,
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
) -> int:
    """
    Send the notifications enqueued on this session since the last dispatch.

    Delivery failures are recorded on the outbox row and logged; they never
    propagate, so a committed state change is never undone by an email error.
    Rows left behind here are picked up by ``dispatch_pending_notifications``.
    """
    ids = session.info.pop(PENDING_KEY, [])
    if not ids:
        return 0
    result = await session.execute(
        select(NotificationOutbox).where(
            NotificationOutbox.id.in_(ids),
            NotificationOutbox.status == NotificationStatus.PENDING,
        )
    )
    now = utcnow()
    dispatched = 0
    for entry in result.scalars().all():
        entry.attempts += 1
        if await _deliver(entry, notifier, now=now, retry_delay_seconds=retry_delay_seconds):
            dispatched += 1
    await session.commit()
    return dispatched


async def dispatch_pending_notifications(
    session: AsyncSession,
    notifier: Notifier,
    *,
    now: datetime | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    limit: int = 100,
) -> int:
    """
    Drain outbox rows nobody delivered: pending rows past their grace period
    and failed rows whose backoff has elapsed, up to ``max_attempts`` sends.

    Each row is claimed with a guarded update on its attempt counter before it
    is sent, so two relays never deliver the same attempt.
    """
    now = now or utcnow()
    result = await session.execute(
        select(NotificationOutbox)
        .where(
            NotificationOutbox.status.in_((NotificationStatus.PENDING, NotificationStatus.FAILED)),
            NotificationOutbox.attempts < max_attempts,
            or_(NotificationOutbox.next_run_at.is_(None), NotificationOutbox.next_run_at <= now),
        )
        .order_by(NotificationOutbox.created_at)
        .limit(limit)
    )
    dispatched = 0
    for entry in result.scalars().all():
        attempts = entry.attempts
        claimed = await session.execute(
            update(NotificationOutbox)
            .where(NotificationOutbox.id == entry.id, NotificationOutbox.attempts == attempts)
            .values(attempts=attempts + 1)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            continue
        await session.commit()
        entry.attempts = attempts + 1
        if await _deliver(entry, notifier, now=now, retry_delay_seconds=retry_delay_seconds):
            dispatched += 1
        await session.commit()
    if dispatched:
        logger.info("notification.outbox.relayed", count=dispatched)
    return dispatched


def discard_pending_notifications(session: AsyncSession) -> None:
    session.info.pop(PENDING_KEY, None)


class NotificationRelay(PeriodicJob):
    """Runs ``dispatch_pending_notifications`` on a fixed interval in the background."""

    name = "notification_relay"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        *,
        interval_seconds: float,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ):
        super().__init__(interval_seconds=interval_seconds)
        self.session_factory = session_factory
        self.notifier = notifier
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds

    async def run_once(self) -> int:
        async with self.session_factory() as session:
            return await dispatch_pending_notifications(
                session,
                self.notifier,
                max_attempts=self.max_attempts,
                retry_delay_seconds=self.retry_delay_seconds,
            )
