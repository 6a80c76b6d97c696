"""Shared fixtures for TaxSmart tests."""
import asyncio
import os

import fitz  # PyMuPDF
import pytest

from taxsmart.config import Settings
from taxsmart.core.models import RECORD_MODELS


def build_pdf(pages: int = 1, padding: int = 0) -> bytes:
    """Build a real PDF with the given number of pages.

    ``padding`` embeds that many random bytes as an attachment, for uploads
    that need to be large without being long.
    """
    doc = fitz.open()
    try:
        for number in range(pages):
            page = doc.new_page()
            page.insert_text((72, 72), f"Page {number + 1}")
        if padding:
            doc.embfile_add("padding.bin", os.urandom(padding))
        return doc.tobytes()
    finally:
        doc.close()


class FakeExtractor:
    """Stands in for DocumentExtractor.

    ``outcomes`` maps a DocumentKind to a dict of fields, an exception to
    raise, or a list of either (consumed one per call). ``delays`` lets a
    slot finish later than the others. ``received`` keeps the bytes each
    kind was given and ``cancelled`` the kinds whose call was cancelled.
    """

    def __init__(self, outcomes=None, delays=None):
        self.outcomes = dict(outcomes or {})
        self.delays = dict(delays or {})
        self.calls = []
        self.received = {}
        self.cancelled = []

    async def extract(self, document_bytes, kind):
        self.calls.append(kind)
        self.received[kind] = document_bytes
        if kind in self.delays:
            try:
                await asyncio.sleep(self.delays[kind])
            except asyncio.CancelledError:
                self.cancelled.append(kind)
                raise

        outcome = self.outcomes.get(kind, {})
        if isinstance(outcome, list):
            outcome = outcome.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return RECORD_MODELS[kind].model_validate(outcome)


@pytest.fixture
def pdf_bytes():
    """A one-page PDF."""
    return build_pdf()


@pytest.fixture
def settings():
    """Settings with a configured backend and no .env lookup."""
    return Settings(
        _env_file=None,
        gemini_api_key="AIzaSyA-not-a-real-key-0123456789",
        rate_limit_max_requests=10,
    )


@pytest.fixture
def fake_extractor():
    return FakeExtractor()

