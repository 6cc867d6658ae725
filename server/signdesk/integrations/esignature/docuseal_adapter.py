"""
DocuSeal Signing Adapter

Provides integration with a DocuSeal-compatible signing API
for the SignDesk signing engine.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp
from aiohttp import ClientTimeout

from .base import (
    ProviderError,
    ProviderSignerStatus,
    SignerRegistration,
    SignerSpec,
    SigningProvider,
    SigningProviderType,
    UploadedDocument,
)

logger = logging.getLogger(__name__)


class DocuSealAdapter(SigningProvider):
    """DocuSeal signing adapter."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 30,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        **config
    ):
        """
        Initialize DocuSeal adapter.

        Args:
            base_url: API base URL
            api_key: API key sent in the X-API-Key header
            timeout_seconds: Total timeout per HTTP call
            max_retries: Retries for transient failures (network, 408/429/5xx)
            retry_delay_seconds: Linear backoff unit between retries
            **config: Additional configuration
        """
        super().__init__(base_url=base_url, api_key=api_key, **config)
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds

        # Session will be created lazily to avoid event loop issues during initialization
        self._session: Optional[aiohttp.ClientSession] = None
        self._timeout = ClientTimeout(total=timeout_seconds, connect=min(10, timeout_seconds))

    def _get_provider_type(self) -> SigningProviderType:
        return SigningProviderType.DOCUSEAL

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={
                    "X-API-Key": self.api_key,
                    "Accept": "application/json",
                },
            )
        return self._session

    async def upload_document(self, content: bytes, filename: str) -> UploadedDocument:
        if not content:
            raise ProviderError("Cannot upload an empty document", "empty_document", "docuseal", transient=False)

        def build_form() -> aiohttp.FormData:
            form = aiohttp.FormData()
            form.add_field("file", content, filename=filename, content_type="application/pdf")
            return form

        response_data = await self._request_json("POST", "/documents", "upload_document", form_factory=build_form)
        document_id = response_data.get("id") or response_data.get("documentId")
        if not document_id:
            raise ProviderError(
                "Upload response did not include a document id",
                "invalid_response",
                "docuseal",
                provider_response=response_data,
                transient=False,
            )
        return UploadedDocument(
            document_id=str(document_id),
            filename=response_data.get("filename", filename),
            status=response_data.get("status"),
            uploaded_at=self._parse_datetime(response_data.get("uploadedAt")),
        )

    async def create_signer_batch(
        self,
        document_id: str,
        signers: List[SignerSpec],
        expires_at: Optional[datetime] = None,
    ) -> List[SignerRegistration]:
        payload: Dict[str, Any] = {
            "documentId": document_id,
            "signers": [
                {
                    "signerName": signer.name,
                    "signerEmail": signer.email,
                    "signingOrder": signer.sequence_index,
                }
                for signer in signers
            ],
        }
        if expires_at is not None:
            payload["expiresAt"] = expires_at.isoformat()

        response_data = await self._request_json(
            "POST", "/signature-requests/batch", "create_signer_batch", json_body=payload
        )
        registrations = [
            self._parse_registration(item) for item in response_data.get("signatureRequests", [])
        ]
        if len(registrations) != len(signers):
            raise ProviderError(
                f"Provider registered {len(registrations)} signers, expected {len(signers)}",
                "invalid_response",
                "docuseal",
                provider_response=response_data,
                transient=False,
            )
        return sorted(registrations, key=lambda registration: registration.sequence_index)

    async def download_signed_document(self, document_id: str) -> bytes:
        return await self._request_bytes("GET", f"/documents/{document_id}/download", "download_signed_document")

    async def health_check(self) -> bool:
        try:
            async with self.session.get(f"{self.base_url}/health") as response:
                return response.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"DocuSeal health check failed: {e}")
            return False

    async def _request_json(
        self,
        method: str,
        path: str,
        operation: str,
        json_body: Optional[Dict[str, Any]] = None,
        form_factory=None,
    ) -> Dict[str, Any]:
        async def call() -> Dict[str, Any]:
            data = form_factory() if form_factory is not None else None
            async with self.session.request(method, f"{self.base_url}{path}", json=json_body, data=data) as response:
                await self._handle_api_error(response, operation)
                return await response.json()

        return await self._with_retries(call, operation)

    async def _request_bytes(self, method: str, path: str, operation: str) -> bytes:
        async def call() -> bytes:
            async with self.session.request(method, f"{self.base_url}{path}") as response:
                await self._handle_api_error(response, operation)
                return await response.read()

        return await self._with_retries(call, operation)

    async def _with_retries(self, call, operation: str):
        attempt = 0
        while True:
            try:
                return await call()
            except ProviderError as e:
                if not e.transient or attempt >= self.max_retries:
                    raise
                last_error = e
            except asyncio.TimeoutError as e:
                last_error = ProviderError(
                    f"DocuSeal request timed out in {operation}", "timeout", "docuseal", status_code=408
                )
                if attempt >= self.max_retries:
                    raise last_error from e
            except aiohttp.ClientError as e:
                last_error = ProviderError(
                    f"DocuSeal network error in {operation}: {e}", "network_error", "docuseal", transient=True
                )
                if attempt >= self.max_retries:
                    raise last_error from e

            attempt += 1
            delay = self.retry_delay_seconds * attempt
            logger.warning(
                f"DocuSeal {operation} failed ({last_error.error_code}), retry {attempt}/{self.max_retries} in {delay}s"
            )
            await asyncio.sleep(delay)

    def _parse_registration(self, item: Dict[str, Any]) -> SignerRegistration:
        try:
            status = ProviderSignerStatus(item.get("status", "waiting"))
        except ValueError:
            status = ProviderSignerStatus.WAITING
        return SignerRegistration(
            signer_id=str(item["id"]),
            email=item.get("signerEmail", ""),
            sequence_index=int(item.get("signingOrder", 0)),
            signing_token=item.get("signingToken"),
            signing_url=item.get("signingUrl"),
            status=status,
        )

    def _parse_datetime(self, datetime_str: Optional[str]) -> Optional[datetime]:
        if not datetime_str:
            return None
        try:
            return datetime.fromisoformat(datetime_str.replace('Z', '+00:00'))
        except (ValueError, AttributeError):
            return None

    async def _handle_api_error(self, response: aiohttp.ClientResponse, operation: str):
        """Handle DocuSeal API response with proper error handling."""
        if response.status in (200, 201, 204):
            return

        error_message = f"DocuSeal API error in {operation}"
        error_code = "api_error"
        error_data: Dict[str, Any] = {}

        try:
            error_data = await response.json()
            error_message = error_data.get("message") or error_data.get("error") or error_message
        except (aiohttp.ContentTypeError, json.JSONDecodeError):
            error_message = await response.text() or error_message

        if response.status == 401:
            raise ProviderError("Authentication failed - check API key", "AUTH_ERROR", "docuseal", status_code=401)
        elif response.status == 403:
            raise ProviderError("Insufficient permissions", "PERMISSION_ERROR", "docuseal", status_code=403)
        elif response.status == 404:
            raise ProviderError("Resource not found", "NOT_FOUND", "docuseal", status_code=404)
        elif response.status == 429:
            retry_after = response.headers.get('Retry-After', '60')
            raise ProviderError(
                f"Rate limit exceeded, retry after {retry_after}s", "RATE_LIMIT", "docuseal", status_code=429
            )
        elif response.status >= 500:
            raise ProviderError("DocuSeal server error", "SERVER_ERROR", "docuseal", status_code=response.status)
        else:
            raise ProviderError(
                error_message, error_code, "docuseal", status_code=response.status, provider_response=error_data
            )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
