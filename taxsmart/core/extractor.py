"""Gemini-backed field extraction for a single tax document.

``DocumentExtractor.extract`` sends one PDF with the schema prompt for its
document kind, and turns the reply into a Form16Record, Form26ASRecord or
AISRecord. Every failure surfaces as ``ExtractionFailed``; the adapter makes
exactly one attempt and leaves retrying to the caller.
"""
import json
import logging
import re
from typing import Any, Optional

import aiohttp
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import ValidationError

from taxsmart.config import Settings
from taxsmart.prompts import EXTRACTION_PROMPTS

from .exceptions import ExtractionFailed, TransientExtractionError
from .models import DocumentKind, Record, validate_record
from .rate_limit import CapacityLimiter

logger = logging.getLogger(__name__)

INVALID_RESPONSE = "empty or invalid response"

# Upstream HTTP statuses worth retrying
TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences the model sometimes wraps JSON in."""
    return _CODE_FENCE.sub("", text).strip()


def parse_model_json(text: str) -> Any:
    """Parse the JSON payload out of a model reply.

    Fences are stripped first. If the remainder still is not valid JSON (for
    example a sentence before the object), the outermost ``{...}`` span is
    parsed instead.

    Raises:
        json.JSONDecodeError: If no JSON can be recovered
    """
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        json_start = cleaned.find("{")
        json_end = cleaned.rfind("}") + 1
        if json_start == -1 or json_end <= json_start:
            raise
        return json.loads(cleaned[json_start:json_end])


def create_genai_client(settings: Settings) -> genai.Client:
    """Build the Gemini client with an aiohttp transport.

    Must be called with an event loop running, since the connector binds to it.
    """
    http_options = types.HttpOptions(
        timeout=int(settings.extraction_timeout_seconds * 1000),
        async_client_args={
            "connector": aiohttp.TCPConnector(limit=50, limit_per_host=10),
        },
    )

    if settings.use_vertex_ai:
        logger.info("Using Vertex AI with Application Default Credentials + aiohttp transport")
    else:
        logger.info("Using regular Gemini API with API key + aiohttp transport")
    return genai.Client(http_options=http_options, **settings.api_client_kwargs)


class DocumentExtractor:
    """Extracts one document's fields through the Gemini API."""

    def __init__(
        self,
        client: genai.Client,
        model: str = "gemini-2.5-flash",
        capacity_limiter: Optional[CapacityLimiter] = None,
        temperature: float = 0.0,
        max_output_tokens: int = 2000,
        debug_responses: bool = False
    ):
        """Initialize the extractor.

        Args:
            client: Shared genai client
            model: Gemini model name
            capacity_limiter: Limiter shared across requests to cap concurrent API calls
            temperature: Sampling temperature
            max_output_tokens: Response token cap
            debug_responses: Log raw model replies at DEBUG level
        """
        self.client = client
        self.model = model
        self.capacity_limiter = capacity_limiter
        self.debug_responses = debug_responses
        self.generation_config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: genai.Client,
        capacity_limiter: Optional[CapacityLimiter] = None
    ) -> "DocumentExtractor":
        return cls(
            client=client,
            model=settings.extraction_model,
            capacity_limiter=capacity_limiter,
            temperature=settings.temperature,
            max_output_tokens=settings.max_output_tokens,
            debug_responses=settings.debug_responses,
        )

    async def extract(self, document_bytes: bytes, kind: DocumentKind) -> Record:
        """Extract the record for ``kind`` from a PDF.

        Args:
            document_bytes: Raw PDF bytes
            kind: Which document this is; selects the schema prompt

        Returns:
            Validated record for the document kind

        Raises:
            ExtractionFailed: On upstream errors or an unusable reply
        """
        label = kind.label
        resp_txt = await self._generate(document_bytes, EXTRACTION_PROMPTS[kind], kind)

        try:
            data = parse_model_json(resp_txt)
        except json.JSONDecodeError as e:
            logger.error(f"[EXTRACT] {label} - Unparsable response: {resp_txt[:120]!r}")
            raise ExtractionFailed(INVALID_RESPONSE, kind.value, original_error=e)

        if not isinstance(data, dict) or not data:
            logger.error(f"[EXTRACT] {label} - Response is not a JSON object: {resp_txt[:120]!r}")
            raise ExtractionFailed(INVALID_RESPONSE, kind.value)

        try:
            record, dropped = validate_record(kind, data)
        except ValidationError as e:
            logger.error(f"[EXTRACT] {label} - Response failed validation: {e.error_count()} error(s)")
            raise ExtractionFailed(INVALID_RESPONSE, kind.value, original_error=e)

        if dropped:
            fields = ", ".join(".".join(str(part) for part in loc) for loc in dropped)
            logger.warning(f"[EXTRACT] {label} - Ignored unreadable field(s): {fields}")
            # Nothing usable left once every top-level key was dropped
            if not set(data) - {loc[0] for loc in dropped if len(loc) == 1}:
                raise ExtractionFailed(INVALID_RESPONSE, kind.value)

        return record

    async def _generate(self, document_bytes: bytes, prompt: str, kind: DocumentKind) -> str:
        """Single Gemini call; returns the reply text."""
        contents = [
            types.Part.from_bytes(
                data=document_bytes,
                mime_type="application/pdf",
            ),
            prompt,
        ]

        try:
            if self.capacity_limiter is not None:
                async with self.capacity_limiter:
                    response = await self._call_model(contents, kind)
            else:
                response = await self._call_model(contents, kind)
        except genai_errors.APIError as e:
            reason = f"Gemini error: {e.message or e.status or e.code}"
            logger.error(f"[EXTRACT] {kind.label} - Gemini error {e.code}: {str(e)[:200]}")
            if e.code in TRANSIENT_STATUS_CODES:
                raise TransientExtractionError(reason, kind.value, e)
            raise ExtractionFailed(reason, kind.value, original_error=e)
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error(f"[EXTRACT] {kind.label} - Transport error: {e!r}")
            raise TransientExtractionError(f"Gemini error: {e or type(e).__name__}", kind.value, e)

        resp_txt = response.text or ""
        if self.debug_responses:
            logger.debug(f"[EXTRACT] {kind.label} - Raw response: {resp_txt}")
        if not resp_txt.strip():
            logger.error(f"[EXTRACT] {kind.label} - Empty Gemini response")
            raise ExtractionFailed(INVALID_RESPONSE, kind.value)
        return resp_txt

    async def _call_model(self, contents: list, kind: DocumentKind):
        logger.info(f"[EXTRACT] {kind.label} - Making API call ({self.model})")
        return await self.client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=self.generation_config,
        )
