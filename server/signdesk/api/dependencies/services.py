"""
Component wiring.

Each collaborator is built once from ``Settings`` and handed to the services
that need it; tests replace these through ``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.api.dependencies.database import get_db
from signdesk.core.config import get_settings
from signdesk.integrations.esignature import DocuSealAdapter, SigningProvider
from signdesk.integrations.notifications import LoggingNotifier, Notifier, PostmarkNotifier
from signdesk.services.artifact_store import ArtifactStore
from signdesk.services.document_renderer import DocumentRenderer, ReportLabRenderer
from signdesk.services.signature_service import SignatureService
from signdesk.services.webhook_handlers import SignatureEventHandlers
from signdesk.services.webhook_ingestor import WebhookIngestor


@lru_cache(maxsize=None)
def get_signing_provider() -> SigningProvider:
    settings = get_settings()
    return DocuSealAdapter(
        base_url=settings.docuseal_base_url,
        api_key=settings.docuseal_api_key or "",
        timeout_seconds=settings.docuseal_timeout_seconds,
        max_retries=settings.docuseal_max_retries,
        retry_delay_seconds=settings.docuseal_retry_delay_seconds,
    )


@lru_cache(maxsize=None)
def get_notifier() -> Notifier:
    settings = get_settings()
    if settings.postmark_api_key:
        return PostmarkNotifier(settings.postmark_api_key, settings.notification_from_email)
    return LoggingNotifier()


@lru_cache(maxsize=None)
def get_renderer() -> DocumentRenderer:
    return ReportLabRenderer()


@lru_cache(maxsize=None)
def get_artifact_store() -> ArtifactStore:
    settings = get_settings()
    return ArtifactStore(settings.storage_root, max_bytes=settings.max_artifact_bytes)


def get_signature_service(
    session: AsyncSession = Depends(get_db),
    provider: SigningProvider = Depends(get_signing_provider),
    renderer: DocumentRenderer = Depends(get_renderer),
    store: ArtifactStore = Depends(get_artifact_store),
) -> SignatureService:
    return SignatureService(session, provider=provider, renderer=renderer, store=store)


def get_webhook_ingestor(
    provider: SigningProvider = Depends(get_signing_provider),
    store: ArtifactStore = Depends(get_artifact_store),
    notifier: Notifier = Depends(get_notifier),
) -> WebhookIngestor:
    settings = get_settings()

    def handler_factory(session: AsyncSession) -> SignatureEventHandlers:
        return SignatureEventHandlers(
            session,
            provider=provider,
            store=store,
            download_timeout_seconds=settings.artifact_download_timeout_seconds,
        )

    return WebhookIngestor(
        secret=settings.webhook_secret,
        require_secret=settings.is_production,
        handler_factory=handler_factory,
        notifier=notifier,
    )


async def close_integrations() -> None:
    if get_signing_provider.cache_info().currsize:
        await get_signing_provider().close()
    if get_notifier.cache_info().currsize:
        await get_notifier().close()
