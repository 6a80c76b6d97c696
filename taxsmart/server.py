"""TaxSmart API - FastAPI application."""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taxsmart.config import Settings, get_settings
from taxsmart.core.exceptions import (
    ConfigurationError,
    DocumentValidationError,
    InvalidPDFError,
    NoDocumentsError,
    PDFTooLargeError,
    RateLimitExceededError,
    SecurityError,
)
from taxsmart.core.extractor import DocumentExtractor, create_genai_client
from taxsmart.core.models import DocumentKind
from taxsmart.core.orchestrator import DOCUMENT_ORDER, Extractor, ExtractionOrchestrator
from taxsmart.core.pdf_utils import safe_validate_pdf_bytes
from taxsmart.core.rate_limit import ClientRateLimiter, create_gemini_limiter
from taxsmart.core.security import sanitize_filename, validate_api_key
from taxsmart.uploads import UploadedPart, read_multipart_files

logger = logging.getLogger(__name__)

SERVICE_NAME = "TaxSmart API"
NOT_CONFIGURED_MESSAGE = "Server not configured. Contact support."
EXTRACTION_FAILED_MESSAGE = "Extraction failed. Please try again or fill manually."
PDF_CONTENT_TYPES = {"application/pdf"}


async def read_upload(upload: UploadedPart, kind: DocumentKind, settings: Settings) -> bytes:
    """Check one in-memory upload for type, size and readability.

    Raises:
        InvalidPDFError: If the part is not a PDF
        PDFTooLargeError: If the part exceeds ``max_upload_size_mb``
    """
    if upload.content_type not in PDF_CONTENT_TYPES:
        raise InvalidPDFError(kind.label)

    # The reader stops buffering one byte past the limit; report the full size
    if upload.size > settings.max_upload_size_bytes:
        raise PDFTooLargeError(kind.label, upload.size / (1024 * 1024), settings.max_upload_size_mb)

    data = bytes(upload.data)
    await safe_validate_pdf_bytes(data, settings.max_upload_size_mb, kind.label)

    logger.info(f"Received {kind.label}: {sanitize_filename(upload.filename)} ({upload.size} bytes)")
    return data


def create_app(
    settings: Optional[Settings] = None,
    extractor: Optional[Extractor] = None,
    rate_limiter: Optional[ClientRateLimiter] = None
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Settings to use (defaults to the cached environment settings)
        extractor: Document extractor; built from settings at startup when omitted
        rate_limiter: Per-client limiter; built from settings when omitted
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"{SERVICE_NAME} starting on port {settings.port}")
        if not settings.is_backend_configured:
            logger.warning("WARNING: GEMINI_API_KEY not set. Extraction will fail.")
        elif app.state.extractor is None:
            if not settings.use_vertex_ai:
                try:
                    validate_api_key(settings.gemini_api_key)
                except SecurityError as e:
                    logger.warning(str(e))
            client = create_genai_client(settings)
            app.state.extractor = DocumentExtractor.from_settings(
                settings, client, create_gemini_limiter(settings.quota_limit)
            )
        yield
        logger.info(f"Shutting down {SERVICE_NAME}")

    app = FastAPI(
        title=SERVICE_NAME,
        description="Form 16, Form 26AS and AIS extraction with cross-document checks",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.extractor = extractor
    app.state.rate_limiter = rate_limiter if rate_limiter is not None else ClientRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        max_clients=settings.rate_limit_max_clients,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"error": exc.message, "retryAfter": exc.retry_after_seconds},
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )

    @app.exception_handler(DocumentValidationError)
    async def validation_handler(request: Request, exc: DocumentValidationError) -> JSONResponse:
        status_code = (
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
            if isinstance(exc, PDFTooLargeError)
            else status.HTTP_400_BAD_REQUEST
        )
        logger.info(f"Rejected upload: {exc.message}")
        return JSONResponse(status_code=status_code, content={"error": exc.message})

    @app.exception_handler(ConfigurationError)
    async def configuration_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error(str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": NOT_CONFIGURED_MESSAGE},
        )

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        """Liveness check."""
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.post("/extract")
    async def extract_documents(request: Request) -> JSONResponse:
        """Extract up to three tax documents and cross-check them.

        Multipart file fields: ``f16``, ``as26``, ``ais`` (all optional).

        The ``errors`` key of the response holds the reconciliation findings;
        per-document extraction failures are listed under ``warnings``.
        """
        client_id = request.client.host if request.client else "unknown"
        request.app.state.rate_limiter.check(client_id)

        current_extractor = request.app.state.extractor
        if not settings.is_backend_configured or current_extractor is None:
            raise ConfigurationError("GEMINI_API_KEY", "not configured on server")

        parts = await read_multipart_files(
            request,
            [kind.value for kind in DOCUMENT_ORDER],
            settings.max_upload_size_bytes,
        )
        uploads = {
            kind: parts[kind.value]
            for kind in DOCUMENT_ORDER
            if kind.value in parts and not parts[kind.value].is_empty
        }
        if not uploads:
            raise NoDocumentsError()

        documents = {}
        for kind, upload in uploads.items():
            documents[kind] = await read_upload(upload, kind, settings)

        orchestrator = ExtractionOrchestrator.from_settings(settings, current_extractor)
        try:
            result = await orchestrator.orchestrate(documents)
        except Exception:
            logger.exception("Extraction error")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": EXTRACTION_FAILED_MESSAGE},
            )

        # Uploads live only in this request's memory
        documents.clear()
        return JSONResponse(content=result.to_response())

    return app


app = create_app()
