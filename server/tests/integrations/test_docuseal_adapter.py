"""
DocuSeal adapter tests against a patched aiohttp session.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest
import pytest_asyncio

from signdesk.integrations.esignature import (
    DocuSealAdapter,
    ProviderError,
    SignerSpec,
    SigningProviderType,
)


class TestDocuSealAdapter:
    """Test DocuSeal signing adapter."""

    @pytest_asyncio.fixture
    async def adapter(self):
        docuseal = DocuSealAdapter(
            base_url="https://docuseal.test/api/",
            api_key="test_api_key",
            max_retries=2,
            retry_delay_seconds=0,
        )
        yield docuseal
        await docuseal.close()

    @pytest.fixture
    def signers(self):
        return [
            SignerSpec(name="Bob Signer", email="bob@example.com", sequence_index=1),
            SignerSpec(name="Carol Signer", email="carol@example.com", sequence_index=2),
        ]

    @pytest.mark.asyncio
    async def test_adapter_initialization(self, adapter):
        assert adapter.provider_type == SigningProviderType.DOCUSEAL
        assert adapter.base_url == "https://docuseal.test/api"
        assert adapter.api_key == "test_api_key"
        # Session is created lazily
        assert adapter._session is None

    @pytest.mark.asyncio
    async def test_upload_document(self, adapter):
        with patch("aiohttp.ClientSession.request") as mock_request:
            mock_request.return_value.__aenter__.return_value.status = 201
            mock_request.return_value.__aenter__.return_value.json = AsyncMock(
                return_value={"id": "doc_123", "filename": "msa.pdf", "uploadedAt": "2026-03-01T10:00:00Z"}
            )

            uploaded = await adapter.upload_document(b"%PDF-1.4 body", "msa.pdf")

            assert uploaded.document_id == "doc_123"
            assert uploaded.uploaded_at == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
            args, kwargs = mock_request.call_args
            assert args == ("POST", "https://docuseal.test/api/documents")
            assert isinstance(kwargs["data"], aiohttp.FormData)

    @pytest.mark.asyncio
    async def test_upload_rejects_empty_document(self, adapter):
        with pytest.raises(ProviderError) as exc_info:
            await adapter.upload_document(b"", "empty.pdf")

        assert exc_info.value.transient is False

    @pytest.mark.asyncio
    async def test_create_signer_batch(self, adapter, signers):
        response = {
            "signatureRequests": [
                {
                    "id": "sig_2",
                    "signerEmail": "carol@example.com",
                    "signingOrder": 2,
                    "signingToken": "tok_2",
                    "signingUrl": "https://docuseal.test/s/tok_2",
                    "status": "waiting",
                },
                {
                    "id": "sig_1",
                    "signerEmail": "bob@example.com",
                    "signingOrder": 1,
                    "signingToken": "tok_1",
                    "signingUrl": "https://docuseal.test/s/tok_1",
                    "status": "pending",
                },
            ]
        }
        expires_at = datetime(2026, 4, 1, tzinfo=timezone.utc)

        with patch("aiohttp.ClientSession.request") as mock_request:
            mock_request.return_value.__aenter__.return_value.status = 200
            mock_request.return_value.__aenter__.return_value.json = AsyncMock(return_value=response)

            registrations = await adapter.create_signer_batch("doc_123", signers, expires_at)

            assert [registration.signer_id for registration in registrations] == ["sig_1", "sig_2"]
            assert registrations[0].signing_url == "https://docuseal.test/s/tok_1"
            payload = mock_request.call_args[1]["json"]
            assert payload["documentId"] == "doc_123"
            assert payload["expiresAt"] == expires_at.isoformat()
            assert [signer["signingOrder"] for signer in payload["signers"]] == [1, 2]

    @pytest.mark.asyncio
    async def test_short_signer_batch_is_rejected(self, adapter, signers):
        with patch("aiohttp.ClientSession.request") as mock_request:
            mock_request.return_value.__aenter__.return_value.status = 200
            mock_request.return_value.__aenter__.return_value.json = AsyncMock(
                return_value={"signatureRequests": [{"id": "sig_1", "signingOrder": 1}]}
            )

            with pytest.raises(ProviderError) as exc_info:
                await adapter.create_signer_batch("doc_123", signers)

            assert exc_info.value.error_code == "invalid_response"

    @pytest.mark.asyncio
    async def test_download_signed_document(self, adapter):
        with patch("aiohttp.ClientSession.request") as mock_request:
            mock_request.return_value.__aenter__.return_value.status = 200
            mock_request.return_value.__aenter__.return_value.read = AsyncMock(return_value=b"%PDF-1.7 signed")

            content = await adapter.download_signed_document("doc_123")

            assert content == b"%PDF-1.7 signed"
            assert mock_request.call_args[0] == ("GET", "https://docuseal.test/api/documents/doc_123/download")

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self, adapter):
        with patch("aiohttp.ClientSession.request") as mock_request:
            mock_request.return_value.__aenter__.return_value.status = 503
            mock_request.return_value.__aenter__.return_value.json = AsyncMock(return_value={"message": "busy"})

            with pytest.raises(ProviderError) as exc_info:
                await adapter.download_signed_document("doc_123")

            assert exc_info.value.transient is True
            assert exc_info.value.status_code == 503
            assert mock_request.call_count == 3

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self, adapter):
        with patch("aiohttp.ClientSession.request") as mock_request:
            mock_request.return_value.__aenter__.return_value.status = 422
            mock_request.return_value.__aenter__.return_value.json = AsyncMock(
                return_value={"message": "signingOrder must be positive"}
            )

            with pytest.raises(ProviderError) as exc_info:
                await adapter.download_signed_document("doc_123")

            assert exc_info.value.transient is False
            assert exc_info.value.message == "signingOrder must be positive"
            assert mock_request.call_count == 1

    @pytest.mark.asyncio
    async def test_timeouts_become_transient_provider_errors(self, adapter):
        with patch("aiohttp.ClientSession.request", side_effect=asyncio.TimeoutError):
            with pytest.raises(ProviderError) as exc_info:
                await adapter.download_signed_document("doc_123")

        assert exc_info.value.error_code == "timeout"
        assert exc_info.value.transient is True

    @pytest.mark.asyncio
    async def test_network_errors_become_transient_provider_errors(self, adapter):
        with patch("aiohttp.ClientSession.request", side_effect=aiohttp.ClientConnectionError("refused")):
            with pytest.raises(ProviderError) as exc_info:
                await adapter.upload_document(b"%PDF-1.4", "msa.pdf")

        assert exc_info.value.error_code == "network_error"

    @pytest.mark.asyncio
    async def test_health_check(self, adapter):
        with patch("aiohttp.ClientSession.get") as mock_get:
            mock_get.return_value.__aenter__.return_value.status = 200

            assert await adapter.health_check() is True
