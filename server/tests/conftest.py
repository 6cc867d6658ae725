"""
Shared test configuration and fixtures for the SignDesk test suite.
"""

import hashlib
import hmac
import itertools
import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["REDIS_URL"] = ""
os.environ["EXPIRATION_SWEEP_ENABLED"] = "false"
os.environ["NOTIFICATION_DISPATCH_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-for-jwt"

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from signdesk.api.dependencies.database import get_db
from signdesk.api.dependencies.services import (
    get_artifact_store,
    get_notifier,
    get_renderer,
    get_signing_provider,
)
from signdesk.core.security import create_access_token
from signdesk.db.base import Base
from signdesk.integrations.esignature import (
    ProviderError,
    SignerRegistration,
    SignerSpec,
    SigningProvider,
    SigningProviderType,
    UploadedDocument,
)
from signdesk.integrations.notifications import EmailMessage, NotificationError, Notifier
from signdesk.main import app
from signdesk.models import Contract, ContractStatus, SigningOrder, User
from signdesk.schemas.signature import SignatoryInput
from signdesk.services.artifact_store import ArtifactStore
from signdesk.services.document_renderer import DocumentRenderer, RenderedDocument, document_filename
from signdesk.services.signature_service import SignatureService
from signdesk.services.signature_state import load_request
from signdesk.services.webhook_handlers import SignatureEventHandlers
from signdesk.services.webhook_ingestor import WebhookIngestor, compute_signature

WEBHOOK_SECRET = "test-webhook-secret"
SIGNED_PDF = b"%PDF-1.7\n% signed artifact\n%%EOF\n"


class FakeSigningProvider(SigningProvider):
    """In-memory signing provider that records every call."""

    def __init__(self):
        super().__init__()
        self._documents = itertools.count(1)
        self.uploads: List[Dict[str, Any]] = []
        self.batches: List[Dict[str, Any]] = []
        self.downloads: List[str] = []
        self.upload_error: Optional[ProviderError] = None
        self.download_error: Optional[Exception] = None
        self.signed_content = SIGNED_PDF

    def _get_provider_type(self) -> SigningProviderType:
        return SigningProviderType.DOCUSEAL

    async def upload_document(self, content: bytes, filename: str) -> UploadedDocument:
        if self.upload_error is not None:
            raise self.upload_error
        document_id = f"doc-{next(self._documents)}"
        self.uploads.append({"document_id": document_id, "filename": filename, "content": content})
        return UploadedDocument(document_id=document_id, filename=filename)

    async def create_signer_batch(
        self,
        document_id: str,
        signers: List[SignerSpec],
        expires_at: Optional[datetime] = None,
    ) -> List[SignerRegistration]:
        self.batches.append({"document_id": document_id, "signers": list(signers), "expires_at": expires_at})
        return [
            SignerRegistration(
                signer_id=f"{document_id}-signer-{signer.sequence_index}",
                email=signer.email,
                sequence_index=signer.sequence_index,
                signing_token=f"token-{document_id}-{signer.sequence_index}",
                signing_url=f"https://sign.example.com/{document_id}/{signer.sequence_index}",
            )
            for signer in signers
        ]

    async def download_signed_document(self, document_id: str) -> bytes:
        self.downloads.append(document_id)
        if self.download_error is not None:
            raise self.download_error
        return self.signed_content

    async def health_check(self) -> bool:
        return True


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent: List[EmailMessage] = []
        self.failing_recipients: set = set()

    async def send(self, message: EmailMessage) -> None:
        if message.to_email in self.failing_recipients:
            raise NotificationError("mailbox unavailable", status_code=422)
        self.sent.append(message)

    def tags_for(self, email: str) -> List[str]:
        return [message.tag for message in self.sent if message.to_email == email]


class StubRenderer(DocumentRenderer):
    def render(self, contract: Contract) -> RenderedDocument:
        return RenderedDocument(
            content=b"%PDF-1.4\n" + contract.title.encode("utf-8"),
            filename=document_filename(contract.title),
        )


def webhook_payload(event: str, data: Dict[str, Any], event_id: Optional[str] = None) -> bytes:
    body: Dict[str, Any] = {
        "event": event,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }
    if event_id is not None:
        body["id"] = event_id
    return json.dumps(body).encode("utf-8")


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(secret, payload)


def tampered_signature(payload: bytes) -> str:
    digest = hmac.new(b"wrong-secret", payload, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.email)}"}


@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'signdesk.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncSession:
    async with session_factory() as db_session:
        yield db_session


@pytest.fixture
def provider() -> FakeSigningProvider:
    return FakeSigningProvider()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def renderer() -> StubRenderer:
    return StubRenderer()


@pytest.fixture
def store(tmp_path) -> ArtifactStore:
    return ArtifactStore(tmp_path / "storage", max_bytes=1024 * 1024)


@pytest.fixture
def make_user(session):
    async def _make_user(email: str, full_name: Optional[str] = None) -> User:
        user = User(
            email=email,
            full_name=full_name or email.split("@")[0].title(),
            hashed_password="not-a-real-hash",
        )
        session.add(user)
        await session.commit()
        return user

    return _make_user


@pytest.fixture
def make_contract(session):
    async def _make_contract(owner: User, title: str = "Master Services Agreement", **values: Any) -> Contract:
        values.setdefault("body", "The parties agree to the terms set out below.")
        contract = Contract(owner_id=owner.id, title=title, status=ContractStatus.DRAFT, **values)
        session.add(contract)
        await session.commit()
        return contract

    return _make_contract


@pytest_asyncio.fixture
async def alice(make_user) -> User:
    return await make_user("alice@example.com", "Alice Initiator")


@pytest_asyncio.fixture
async def bob(make_user) -> User:
    return await make_user("bob@example.com", "Bob Signer")


@pytest_asyncio.fixture
async def carol(make_user) -> User:
    return await make_user("carol@example.com", "Carol Signer")


@pytest_asyncio.fixture
async def contract(make_contract, alice) -> Contract:
    return await make_contract(alice)


@pytest.fixture
def signature_service(session, provider, renderer, store) -> SignatureService:
    return SignatureService(session, provider=provider, renderer=renderer, store=store)


@pytest.fixture
def create_request(session, signature_service):
    """Create and commit a signature request for ``contract`` on behalf of its owner."""

    async def _create_request(
        contract: Contract,
        signers: List[User],
        signing_order: SigningOrder = SigningOrder.SEQUENTIAL,
        **options: Any,
    ):
        request = await signature_service.create(
            contract_id=contract.id,
            initiator_id=contract.owner_id,
            signatories=[SignatoryInput(name=signer.full_name, email=signer.email) for signer in signers],
            signing_order=signing_order,
            **options,
        )
        await session.commit()
        return request

    return _create_request


@pytest.fixture
def handlers(session, provider, store) -> SignatureEventHandlers:
    return SignatureEventHandlers(session, provider=provider, store=store, download_timeout_seconds=1.0)


@pytest.fixture
def ingestor(provider, store, notifier) -> WebhookIngestor:
    return WebhookIngestor(
        secret=WEBHOOK_SECRET,
        require_secret=False,
        handler_factory=lambda db_session: SignatureEventHandlers(
            db_session, provider=provider, store=store, download_timeout_seconds=1.0
        ),
        notifier=notifier,
    )


@pytest.fixture
def deliver(session, ingestor):
    """Sign and hand one webhook event to the ingestor."""

    async def _deliver(event: str, data: Dict[str, Any], event_id: Optional[str] = None):
        payload = webhook_payload(event, data, event_id)
        return await ingestor.handle(session, payload, sign_payload(payload), event)

    return _deliver


@pytest_asyncio.fixture
async def client(session_factory, provider, notifier, renderer, store):
    async def override_get_db():
        async with session_factory() as db_session:
            yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_signing_provider] = lambda: provider
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_renderer] = lambda: renderer
    app.dependency_overrides[get_artifact_store] = lambda: store

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def fetch_request(session_factory):
    """Read a signature request through a fresh session, bypassing any stale identity map."""

    async def _fetch_request(request_id: str):
        async with session_factory() as fresh:
            return await load_request(fresh, request_id)

    return _fetch_request


@pytest.fixture
def fetch_all(session_factory):
    async def _fetch_all(model, *criteria):
        query = select(model)
        if criteria:
            query = query.where(*criteria)
        async with session_factory() as fresh:
            result = await fresh.execute(query)
            return list(result.scalars().all())

    return _fetch_all
