"""
Integration test modules

Tests for the external adapters:
- Signing provider (DocuSeal-compatible API)
- Transactional email (Postmark)
"""
