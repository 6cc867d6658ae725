"""
Operational commands for the signing service.

    signdesk-admin sweep-expired [--dry-run] [--exclude-in-progress]
    signdesk-admin dispatch-notifications
"""

import asyncio

import click

from signdesk.api.dependencies.services import close_integrations, get_notifier
from signdesk.core.config import get_settings
from signdesk.core.logging import configure_logging, get_logger
from signdesk.db.session import async_session_factory, engine
from signdesk.services.expiration_sweeper import find_expired_requests, sweep_expired_requests
from signdesk.services.notification_service import dispatch_pending_notifications

logger = get_logger(__name__)


@click.group()
def cli():
    """Signing service maintenance CLI"""
    configure_logging()


async def _sweep(dry_run: bool, include_in_progress: bool) -> list[str]:
    try:
        async with async_session_factory() as session:
            if dry_run:
                candidates = await find_expired_requests(session, include_in_progress=include_in_progress)
                return [request_id for request_id, _ in candidates]
            expired = await sweep_expired_requests(session, include_in_progress=include_in_progress)
            await session.commit()
            return expired
    finally:
        await engine.dispose()


@cli.command("sweep-expired")
@click.option("--dry-run", is_flag=True, help="List overdue requests without expiring them")
@click.option(
    "--exclude-in-progress",
    is_flag=True,
    help="Only expire requests nobody has signed yet",
)
def sweep_expired(dry_run: bool, exclude_in_progress: bool):
    """Expire every active signature request whose deadline has passed"""
    settings = get_settings()
    include_in_progress = settings.expire_in_progress_requests and not exclude_in_progress
    request_ids = asyncio.run(_sweep(dry_run, include_in_progress))

    if dry_run:
        click.echo(f"{len(request_ids)} signature request(s) would expire")
    else:
        click.echo(f"Expired {len(request_ids)} signature request(s)")
    for request_id in request_ids:
        click.echo(f"  {request_id}")
    logger.info("cli.sweep_expired", dry_run=dry_run, count=len(request_ids))


async def _dispatch() -> int:
    settings = get_settings()
    try:
        async with async_session_factory() as session:
            return await dispatch_pending_notifications(
                session,
                get_notifier(),
                max_attempts=settings.notification_max_attempts,
                retry_delay_seconds=settings.notification_retry_delay_seconds,
            )
    finally:
        await close_integrations()
        await engine.dispose()


@cli.command("dispatch-notifications")
def dispatch_notifications():
    """Send outbox notifications that are still pending or due for a retry"""
    count = asyncio.run(_dispatch())
    click.echo(f"Dispatched {count} notification(s)")
    logger.info("cli.dispatch_notifications", count=count)


if __name__ == "__main__":
    cli()
