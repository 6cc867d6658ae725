"""
Integration modules for SignDesk

Contains adapters and clients for external systems:
- Signing providers (DocuSeal-compatible API)
- Transactional email (Postmark)
"""
