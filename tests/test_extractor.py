"""Integration tests for the extractor with mocked Gemini API responses."""
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from google.genai import errors as genai_errors

from conftest import build_pdf
from taxsmart.core.exceptions import ExtractionFailed, TransientExtractionError
from taxsmart.core.extractor import (
    INVALID_RESPONSE,
    DocumentExtractor,
    parse_model_json,
    strip_code_fences,
)
from taxsmart.core.models import AISRecord, DocumentKind, Form16Record, Form26ASRecord
from taxsmart.core.rate_limit import CapacityLimiter
from taxsmart.prompts import EXTRACTION_PROMPTS


class MockGeminiResponse:
    """Mock response from Gemini API."""

    def __init__(self, text):
        self.text = text


@pytest.fixture
def mock_genai_client():
    """Mock Gemini AI client."""
    client = MagicMock()
    client.aio = MagicMock()
    client.aio.models = MagicMock()
    client.aio.models.generate_content = AsyncMock()
    return client


@pytest.fixture
def extractor(mock_genai_client):
    return DocumentExtractor(mock_genai_client, model="gemini-2.5-flash")


def respond_with(client, text):
    client.aio.models.generate_content.return_value = MockGeminiResponse(text)


class TestParsing:
    """Tolerant parsing of model replies."""

    def test_strip_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_strip_bare_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_parse_plain(self):
        assert parse_model_json('{"pan": "ABCDE1234F"}') == {"pan": "ABCDE1234F"}

    def test_parse_with_surrounding_prose(self):
        assert parse_model_json('Here is the data: {"pan": ""} Hope this helps.') == {"pan": ""}

    def test_parse_garbage_raises(self):
        with pytest.raises(json.JSONDecodeError):
            parse_model_json("I could not read this document.")


class TestExtract:
    """DocumentExtractor.extract."""

    @pytest.mark.asyncio
    async def test_extract_form16(self, extractor, mock_genai_client, pdf_bytes):
        respond_with(mock_genai_client, json.dumps({
            "name": "Asha Verma",
            "pan": "ABCDE1234F",
            "gross_salary": 1200000,
            "tds_deducted_form16": 60000,
        }))

        record = await extractor.extract(pdf_bytes, DocumentKind.F16)

        assert isinstance(record, Form16Record)
        assert record.name == "Asha Verma"
        assert record.tds_deducted_form16 == 60000
        assert record.standard_deduction == 50000

    @pytest.mark.asyncio
    async def test_sends_pdf_and_schema_prompt(self, extractor, mock_genai_client, pdf_bytes):
        respond_with(mock_genai_client, '{"pan": "ABCDE1234F"}')

        await extractor.extract(pdf_bytes, DocumentKind.AS26)

        kwargs = mock_genai_client.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-2.5-flash"
        pdf_part, prompt = kwargs["contents"]
        assert pdf_part.inline_data.mime_type == "application/pdf"
        assert pdf_part.inline_data.data == pdf_bytes
        assert prompt == EXTRACTION_PROMPTS[DocumentKind.AS26]
        assert kwargs["config"].temperature == 0.0
        assert kwargs["config"].max_output_tokens == 2000

    @pytest.mark.asyncio
    async def test_fenced_response(self, extractor, mock_genai_client, pdf_bytes):
        respond_with(mock_genai_client, '```json\n{"pan": "ABCDE1234F", "tds_entries": [], "total_tds_26as": 55000}\n```')

        record = await extractor.extract(pdf_bytes, DocumentKind.AS26)

        assert isinstance(record, Form26ASRecord)
        assert record.total_tds_26as == 55000

    @pytest.mark.asyncio
    async def test_string_amounts_coerced(self, extractor, mock_genai_client, pdf_bytes):
        respond_with(mock_genai_client, '{"dividend_ais": "₹12,500", "ltcg_ais": 1500.6}')

        record = await extractor.extract(pdf_bytes, DocumentKind.AIS)

        assert isinstance(record, AISRecord)
        assert record.dividend_ais == 12500
        assert record.ltcg_ais == 1501

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", [
        "",
        "   ",
        "Sorry, I cannot help with that.",
        "{}",
        "[1, 2, 3]",
        '"just a string"',
        "```json\n```",
    ])
    async def test_invalid_response(self, extractor, mock_genai_client, pdf_bytes, text):
        respond_with(mock_genai_client, text)

        with pytest.raises(ExtractionFailed) as exc_info:
            await extractor.extract(pdf_bytes, DocumentKind.F16)

        assert exc_info.value.reason == INVALID_RESPONSE
        assert exc_info.value.transient is False

    @pytest.mark.asyncio
    async def test_none_text_is_invalid(self, extractor, mock_genai_client, pdf_bytes):
        respond_with(mock_genai_client, None)

        with pytest.raises(ExtractionFailed) as exc_info:
            await extractor.extract(pdf_bytes, DocumentKind.F16)

        assert exc_info.value.reason == INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_schema_violation_is_invalid(self, extractor, mock_genai_client, pdf_bytes):
        respond_with(mock_genai_client, '{"gross_salary": -5}')

        with pytest.raises(ExtractionFailed) as exc_info:
            await extractor.extract(pdf_bytes, DocumentKind.F16)

        assert exc_info.value.reason == INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_upstream_client_error(self, extractor, mock_genai_client, pdf_bytes):
        mock_genai_client.aio.models.generate_content.side_effect = genai_errors.ClientError(
            400,
            {"error": {"code": 400, "message": "API key not valid.", "status": "INVALID_ARGUMENT"}},
        )

        with pytest.raises(ExtractionFailed) as exc_info:
            await extractor.extract(pdf_bytes, DocumentKind.AIS)

        assert exc_info.value.reason == "Gemini error: API key not valid."
        assert exc_info.value.transient is False
        assert not isinstance(exc_info.value, TransientExtractionError)

    @pytest.mark.asyncio
    async def test_upstream_overload_is_transient(self, extractor, mock_genai_client, pdf_bytes):
        mock_genai_client.aio.models.generate_content.side_effect = genai_errors.ServerError(
            503,
            {"error": {"code": 503, "message": "The model is overloaded.", "status": "UNAVAILABLE"}},
        )

        with pytest.raises(TransientExtractionError) as exc_info:
            await extractor.extract(pdf_bytes, DocumentKind.AIS)

        assert exc_info.value.reason == "Gemini error: The model is overloaded."
        assert exc_info.value.document_kind == "ais"

    @pytest.mark.asyncio
    async def test_single_attempt(self, extractor, mock_genai_client, pdf_bytes):
        mock_genai_client.aio.models.generate_content.side_effect = genai_errors.ServerError(
            500,
            {"error": {"code": 500, "message": "Internal error", "status": "INTERNAL"}},
        )

        with pytest.raises(ExtractionFailed):
            await extractor.extract(pdf_bytes, DocumentKind.F16)

        assert mock_genai_client.aio.models.generate_content.await_count == 1

    @pytest.mark.asyncio
    async def test_capacity_limiter_released(self, mock_genai_client, pdf_bytes):
        limiter = CapacityLimiter(1)
        extractor = DocumentExtractor(mock_genai_client, capacity_limiter=limiter)
        respond_with(mock_genai_client, '{"pan": "X"}')

        await extractor.extract(pdf_bytes, DocumentKind.AIS)

        assert limiter.borrowed_tokens == 0


class TestPartialReplies:
    """A field the model got wrong does not cost the rest of the document."""

    @pytest.mark.asyncio
    async def test_unreadable_field_defaults(self, extractor, mock_genai_client, pdf_bytes):
        respond_with(mock_genai_client, json.dumps({
            "tds_deducted_form16": 60000,
            "gross_salary": 1200000,
            "hra_received": "N/A",
        }))

        with patch("taxsmart.core.extractor.logger") as mock_logger:
            record = await extractor.extract(pdf_bytes, DocumentKind.F16)

        assert record.tds_deducted_form16 == 60000
        assert record.gross_salary == 1200000
        assert record.hra_received == 0
        assert "hra_received" in mock_logger.warning.call_args.args[0]

    @pytest.mark.asyncio
    async def test_bad_tds_entry_dropped(self, extractor, mock_genai_client, pdf_bytes):
        respond_with(mock_genai_client, json.dumps({
            "total_tds_26as": 55000,
            "tds_entries": [
                {"deductor": "Acme Ltd", "amount": 900000, "tds": 55000},
                "not an entry",
            ],
        }))

        record = await extractor.extract(pdf_bytes, DocumentKind.AS26)

        assert record.total_tds_26as == 55000
        assert [entry.deductor for entry in record.tds_entries] == ["Acme Ltd"]

    @pytest.mark.asyncio
    async def test_long_document_sent_whole(self, extractor, mock_genai_client):
        respond_with(mock_genai_client, '{"pan": "X"}')
        original = build_pdf(pages=30)

        await extractor.extract(original, DocumentKind.AIS)

        sent = mock_genai_client.aio.models.generate_content.call_args.kwargs["contents"][0].inline_data.data
        assert sent == original
