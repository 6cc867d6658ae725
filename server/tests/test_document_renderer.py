"""
Tests for rendering contracts to PDF.
"""

import pytest

from signdesk.core.errors import ValidationFailed
from signdesk.models import Contract
from signdesk.services.document_renderer import ReportLabRenderer, document_filename


def test_document_filename_is_slugged():
    assert document_filename("Master Services Agreement (v2)") == "master-services-agreement-v2.pdf"
    assert document_filename("!!!") == "contract.pdf"


def test_renders_pdf_from_body():
    contract = Contract(title="Statement of Work", body="Line one.\n\nLine two. " * 400)

    rendered = ReportLabRenderer().render(contract)

    assert rendered.content.startswith(b"%PDF-")
    assert rendered.filename == "statement-of-work.pdf"


def test_falls_back_to_extracted_text():
    contract = Contract(title="Scanned NDA", body=None, extracted_text="Recovered text from the upload.")

    assert ReportLabRenderer().render(contract).content.startswith(b"%PDF-")


def test_contract_without_text_cannot_be_rendered():
    with pytest.raises(ValidationFailed):
        ReportLabRenderer().render(Contract(title="Empty", body="   "))
