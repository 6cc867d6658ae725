"""
Render a contract record to a fixed-layout PDF for the signing provider.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from io import BytesIO

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from signdesk.core.errors import ValidationFailed
from signdesk.models.contract import Contract


@dataclass(slots=True)
class RenderedDocument:
    content: bytes
    filename: str


def document_filename(title: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "-", title).strip("-").lower()
    return f"{slug[:60] or 'contract'}.pdf"


class DocumentRenderer(ABC):
    @abstractmethod
    def render(self, contract: Contract) -> RenderedDocument:
        """Render the contract; raises ValidationFailed when there is nothing to render."""


class ReportLabRenderer(DocumentRenderer):
    """Lays out the contract text on A4 pages with a title header and page numbers."""

    font_name = "Helvetica"
    title_font_name = "Helvetica-Bold"
    font_size = 10
    title_font_size = 16
    leading = 14
    margin = 2 * cm

    def render(self, contract: Contract) -> RenderedDocument:
        text = contract.body or contract.extracted_text
        if not text or not text.strip():
            raise ValidationFailed("Contract has no content to render", field="contract_id")

        buffer = BytesIO()
        width, height = A4
        pdf = canvas.Canvas(buffer, pagesize=A4)
        pdf.setTitle(contract.title)
        usable_width = width - 2 * self.margin

        page_number = 1
        y = self._start_page(pdf, contract.title, height, first=True)
        for paragraph in text.splitlines():
            lines = simpleSplit(paragraph, self.font_name, self.font_size, usable_width) or [""]
            for line in lines:
                if y < self.margin + self.leading:
                    self._finish_page(pdf, width, page_number)
                    page_number += 1
                    y = self._start_page(pdf, contract.title, height, first=False)
                pdf.drawString(self.margin, y, line)
                y -= self.leading
        self._finish_page(pdf, width, page_number)
        pdf.save()

        return RenderedDocument(content=buffer.getvalue(), filename=document_filename(contract.title))

    def _start_page(self, pdf: canvas.Canvas, title: str, height: float, *, first: bool) -> float:
        y = height - self.margin
        if first:
            pdf.setFont(self.title_font_name, self.title_font_size)
            pdf.drawString(self.margin, y, title)
            y -= self.leading * 2
        pdf.setFont(self.font_name, self.font_size)
        return y

    def _finish_page(self, pdf: canvas.Canvas, width: float, page_number: int) -> None:
        pdf.setFont(self.font_name, 8)
        pdf.drawRightString(width - self.margin, self.margin / 2, f"Page {page_number}")
        pdf.showPage()
