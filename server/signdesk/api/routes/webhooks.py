from fastapi import APIRouter, Depends, Header, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.api.dependencies.database import get_db
from signdesk.api.dependencies.redis import get_redis_client
from signdesk.api.dependencies.services import get_webhook_ingestor
from signdesk.schemas.webhook import WebhookAck
from signdesk.services.webhook_ingestor import WebhookIngestor


router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/signing", response_model=WebhookAck)
async def receive_signing_webhook(
    request: Request,
    signature: str | None = Header(default=None, alias="X-Signature"),
    event_type: str | None = Header(default=None, alias="X-Event-Type"),
    session: AsyncSession = Depends(get_db),
    ingestor: WebhookIngestor = Depends(get_webhook_ingestor),
    redis_client: Redis | None = Depends(get_redis_client),
) -> WebhookAck:
    raw_payload = await request.body()
    result = await ingestor.handle(session, raw_payload, signature, event_type, redis_client=redis_client)
    return WebhookAck(status=result.status, event_type=result.event_type, event_id=result.event_id)
