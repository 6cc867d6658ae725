"""
Signing provider integration modules

Provides adapters for signing platforms behind one consistent interface.
"""

from .base import (
    ProviderError,
    ProviderSignerStatus,
    SignerRegistration,
    SignerSpec,
    SigningProvider,
    SigningProviderType,
    UploadedDocument,
)
from .docuseal_adapter import DocuSealAdapter

__all__ = [
    "DocuSealAdapter",
    "ProviderError",
    "ProviderSignerStatus",
    "SignerRegistration",
    "SignerSpec",
    "SigningProvider",
    "SigningProviderType",
    "UploadedDocument",
]
