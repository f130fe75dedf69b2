"""
Tests for invoice PDF rendering.
"""

from unittest.mock import patch

import pytest

from backoffice.exceptions import InternalError
from backoffice.services.pdf import BusinessProfile, InvoicePDFRenderer


@pytest.fixture
def renderer() -> InvoicePDFRenderer:
    return InvoicePDFRenderer(
        BusinessProfile(name="Payne Leadership", email="office@example.com", website="https://coach.example.com")
    )


class TestRender:
    async def test_produces_pdf(self, renderer: InvoicePDFRenderer, draft_invoice):
        draft_invoice.notes = "Thank you & see you soon <3"

        pdf = await renderer.render(draft_invoice)

        assert pdf.startswith(b"%PDF")
        assert len(pdf) > 1000

    async def test_layout_failure_is_internal_error(self, renderer: InvoicePDFRenderer, draft_invoice):
        with patch.object(InvoicePDFRenderer, "_render", side_effect=RuntimeError("bad font")):
            with pytest.raises(InternalError):
                await renderer.render(draft_invoice)
