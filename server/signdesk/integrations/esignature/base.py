"""
Signing Provider Base Classes and Interfaces

Defines the contract every signing provider adapter fulfils for the
SignDesk signing engine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class SigningProviderType(str, Enum):
    """Supported signing provider types."""
    DOCUSEAL = "docuseal"


class ProviderSignerStatus(str, Enum):
    """Per-signer status as reported by the provider at registration time."""
    PENDING = "pending"
    WAITING = "waiting"
    SIGNED = "signed"
    EXPIRED = "expired"


@dataclass
class SignerSpec:
    """One signer to register with the provider."""
    name: str
    email: str
    sequence_index: int


@dataclass
class UploadedDocument:
    """Result of uploading a document to the provider."""
    document_id: str
    filename: str
    status: Optional[str] = None
    uploaded_at: Optional[datetime] = None


@dataclass
class SignerRegistration:
    """Provider-issued identity for one registered signer."""
    signer_id: str
    email: str
    sequence_index: int
    signing_token: Optional[str] = None
    signing_url: Optional[str] = None
    status: ProviderSignerStatus = ProviderSignerStatus.WAITING


class ProviderError(Exception):
    """Signing provider specific errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        provider_response: Optional[Dict[str, Any]] = None,
        transient: Optional[bool] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.provider = provider
        self.status_code = status_code
        self.provider_response = provider_response or {}
        if transient is None:
            transient = status_code is None or status_code in TRANSIENT_STATUS_CODES
        self.transient = transient


class SigningProvider(ABC):
    """Abstract base class for signing providers."""

    def __init__(self, **config):
        self.config = config
        self.provider_type = self._get_provider_type()

    @abstractmethod
    def _get_provider_type(self) -> SigningProviderType:
        """Return the provider type identifier."""

    @abstractmethod
    async def upload_document(self, content: bytes, filename: str) -> UploadedDocument:
        """
        Upload a rendered document for signing.

        Args:
            content: Document bytes (PDF)
            filename: Name shown to signers

        Returns:
            UploadedDocument carrying the provider's document id

        Raises:
            ProviderError: If the upload fails
        """

    @abstractmethod
    async def create_signer_batch(
        self,
        document_id: str,
        signers: List[SignerSpec],
        expires_at: Optional[datetime] = None,
    ) -> List[SignerRegistration]:
        """
        Register every signer for a document in one call.

        Args:
            document_id: Provider document id from ``upload_document``
            signers: Signers with their sequence index
            expires_at: Optional expiry passed through to the provider

        Returns:
            One registration per signer, with signing token and URL

        Raises:
            ProviderError: If registration fails
        """

    @abstractmethod
    async def download_signed_document(self, document_id: str) -> bytes:
        """
        Download the final signed artifact.

        Raises:
            ProviderError: If the download fails
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the provider is reachable."""

    async def close(self) -> None:
        """Release any held resources."""
