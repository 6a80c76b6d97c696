"""HTTP tests for the FastAPI application."""
import tempfile
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from conftest import FakeExtractor, build_pdf
from taxsmart.config import Settings
from taxsmart.core.exceptions import ExtractionFailed
from taxsmart.core.models import DocumentKind
from taxsmart.core.orchestrator import ExtractionOrchestrator
from taxsmart.core.rate_limit import ClientRateLimiter
from taxsmart.server import EXTRACTION_FAILED_MESSAGE, NOT_CONFIGURED_MESSAGE, create_app
from taxsmart.uploads import MALFORMED_UPLOAD_MESSAGE


def pdf_part(data, filename="document.pdf", content_type="application/pdf"):
    return (filename, data, content_type)


@pytest.fixture
def make_client(settings):
    clients = []

    def factory(extractor=None, app_settings=None, rate_limiter=None):
        app = create_app(
            app_settings or settings,
            extractor=extractor if extractor is not None else FakeExtractor(),
            rate_limiter=rate_limiter,
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.__exit__(None, None, None)


class TestHealth:

    def test_health(self, make_client):
        response = make_client().get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["service"] == "TaxSmart API"
        assert datetime.fromisoformat(body["timestamp"])


class TestExtractValidation:
    """Requests rejected before any extraction happens."""

    def test_no_documents(self, make_client):
        extractor = FakeExtractor()
        response = make_client(extractor).post("/extract")

        assert response.status_code == 400
        assert response.json() == {"error": "Please upload at least one document."}
        assert extractor.calls == []

    def test_non_pdf_content_type(self, make_client, pdf_bytes):
        extractor = FakeExtractor()
        response = make_client(extractor).post(
            "/extract",
            files={
                "f16": pdf_part(pdf_bytes),
                "ais": pdf_part(b"hello", "notes.txt", "text/plain"),
            },
        )

        assert response.status_code == 400
        assert response.json() == {"error": "AIS: Only PDF files are allowed"}
        assert extractor.calls == []

    def test_pdf_content_type_with_non_pdf_bytes(self, make_client):
        response = make_client().post("/extract", files={"f16": pdf_part(b"not really a pdf")})

        assert response.status_code == 400
        assert response.json()["error"].startswith("Form 16:")

    def test_oversize_upload(self, make_client, settings):
        small = settings.model_copy(update={"max_upload_size_mb": 0.01})
        oversize = b"%PDF-1.4\n" + b"0" * 20000

        response = make_client(app_settings=small).post("/extract", files={"as26": pdf_part(oversize)})

        assert response.status_code == 413
        assert "exceeds maximum allowed size" in response.json()["error"]

    def test_unconfigured_backend(self, make_client, pdf_bytes, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        unconfigured = Settings(_env_file=None, gemini_api_key="")

        response = make_client(app_settings=unconfigured).post(
            "/extract", files={"f16": pdf_part(pdf_bytes)}
        )

        assert response.status_code == 500
        assert response.json() == {"error": NOT_CONFIGURED_MESSAGE}

    def test_unconfigured_checked_before_missing_files(self, make_client, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        unconfigured = Settings(_env_file=None, gemini_api_key="")

        response = make_client(app_settings=unconfigured).post("/extract")

        assert response.status_code == 500


class TestRateLimit:

    def test_rate_limited_after_allowance(self, make_client, pdf_bytes):
        client = make_client(rate_limiter=ClientRateLimiter(max_requests=2))

        assert client.post("/extract", files={"f16": pdf_part(pdf_bytes)}).status_code == 200
        # rejected requests still count against the allowance
        assert client.post("/extract").status_code == 400

        response = client.post("/extract", files={"f16": pdf_part(pdf_bytes)})

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "Too many requests. Please try again in an hour."
        assert body["retryAfter"] > 0
        assert response.headers["Retry-After"] == str(body["retryAfter"])

    def test_supplied_limiter_is_used(self, settings):
        limiter = ClientRateLimiter(max_requests=2)

        app = create_app(settings, extractor=FakeExtractor(), rate_limiter=limiter)

        assert app.state.rate_limiter is limiter

    def test_health_not_rate_limited(self, make_client):
        client = make_client(rate_limiter=ClientRateLimiter(max_requests=1))

        for _ in range(3):
            assert client.get("/health").status_code == 200


class TestExtractSuccess:
    """200 responses."""

    def test_response_shape(self, make_client, pdf_bytes):
        extractor = FakeExtractor({
            DocumentKind.F16: {"tds_deducted_form16": 60000, "name": "Asha Verma"},
            DocumentKind.AS26: {"total_tds_26as": 55000},
        })

        response = make_client(extractor).post(
            "/extract",
            files={"f16": pdf_part(pdf_bytes), "as26": pdf_part(pdf_bytes)},
        )

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {"f16Data", "as26Data", "aisData", "errors", "warnings"}
        assert body["f16Data"]["name"] == "Asha Verma"
        assert body["aisData"]["salary_ais"] == 0
        assert body["warnings"] == []
        assert len(body["errors"]) == 1
        finding = body["errors"][0]
        assert finding["severityClass"] == "crit"
        assert finding["severityColor"] == "red"
        assert finding["title"] == "TDS Mismatch: Form 16 vs 26AS"
        assert "recommendedAction" in finding
        assert sorted(extractor.calls) == sorted([DocumentKind.F16, DocumentKind.AS26])

    def test_partial_failure_is_200_with_warning(self, make_client, pdf_bytes):
        extractor = FakeExtractor({
            DocumentKind.F16: {"tds_deducted_form16": 50000},
            DocumentKind.AIS: ExtractionFailed("empty or invalid response", "ais"),
        })

        response = make_client(extractor).post(
            "/extract",
            files={"f16": pdf_part(pdf_bytes), "ais": pdf_part(pdf_bytes)},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["f16Data"]["tds_deducted_form16"] == 50000
        assert body["aisData"]["dividend_ais"] == 0
        assert body["warnings"] == [{"documentLabel": "AIS", "message": "empty or invalid response"}]
        assert body["errors"] == []

    def test_unexpected_error_is_500(self, make_client, pdf_bytes):
        with patch.object(
            ExtractionOrchestrator, "orchestrate", AsyncMock(side_effect=RuntimeError("boom"))
        ):
            response = make_client().post("/extract", files={"f16": pdf_part(pdf_bytes)})

        assert response.status_code == 500
        assert response.json() == {"error": EXTRACTION_FAILED_MESSAGE}


class TestUploads:
    """Multipart handling for /extract."""

    def test_large_upload_kept_in_memory(self, make_client):
        large = build_pdf(padding=2 * 1024 * 1024)
        extractor = FakeExtractor({DocumentKind.F16: {"tds_deducted_form16": 50000}})
        client = make_client(extractor)

        with patch.object(tempfile.SpooledTemporaryFile, "rollover", autospec=True) as rollover:
            response = client.post("/extract", files={"f16": pdf_part(large)})

        assert response.status_code == 200
        rollover.assert_not_called()
        assert extractor.received[DocumentKind.F16] == large

    def test_text_field_is_not_a_document(self, make_client):
        response = make_client().post("/extract", data={"f16": "not a file"})

        assert response.status_code == 400
        assert response.json() == {"error": "Please upload at least one document."}

    def test_blank_file_input_ignored(self, make_client, pdf_bytes):
        extractor = FakeExtractor()

        response = make_client(extractor).post(
            "/extract",
            files={"f16": ("", b"", "application/octet-stream"), "ais": pdf_part(pdf_bytes)},
        )

        assert response.status_code == 200
        assert extractor.calls == [DocumentKind.AIS]

    def test_unknown_fields_ignored(self, make_client, pdf_bytes):
        extractor = FakeExtractor()

        response = make_client(extractor).post(
            "/extract",
            files={"form99": pdf_part(b"not a pdf"), "as26": pdf_part(pdf_bytes)},
        )

        assert response.status_code == 200
        assert extractor.calls == [DocumentKind.AS26]

    @pytest.mark.parametrize("content_type", [
        "multipart/form-data; boundary=xyz",
        "multipart/form-data",
    ])
    def test_malformed_body(self, make_client, content_type):
        response = make_client().post(
            "/extract",
            content=b"this is not a multipart body",
            headers={"Content-Type": content_type},
        )

        assert response.status_code == 400
        assert response.json() == {"error": MALFORMED_UPLOAD_MESSAGE}


def test_cors_preflight(make_client):
    response = make_client().options(
        "/extract",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
