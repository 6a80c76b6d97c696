"""Runs the per-document extractions for a request and reconciles the results.

Each supplied document is extracted as its own task. A task never raises:
it resolves to the extracted record, or to the zero-value record plus a
warning, so one document failing cannot stop or cancel the others.
Cancelling the request as a whole cancels every task still running.
"""
import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Tuple, Union

from taxsmart.config import Settings

from .exceptions import ExtractionFailed, InvalidPDFError, TransientExtractionError
from .models import (
    AISRecord,
    CombinedResult,
    DocumentKind,
    DocumentWarning,
    Finding,
    Form16Record,
    Form26ASRecord,
    Record,
    empty_record,
)
from .pdf_utils import safe_extract_first_n_pages
from .rate_limit import RetryError, retry_with_backoff
from .reconciliation import reconcile

logger = logging.getLogger(__name__)

# Fixed output order for warnings, independent of completion order
DOCUMENT_ORDER = (DocumentKind.F16, DocumentKind.AS26, DocumentKind.AIS)

Reconciler = Callable[[Form16Record, Form26ASRecord, AISRecord], List[Finding]]


class Extractor(Protocol):
    async def extract(self, document_bytes: bytes, kind: DocumentKind) -> Record:
        ...


@dataclass(frozen=True)
class SlotOutcome:
    """How one document slot resolved."""
    kind: DocumentKind
    record: Record
    warnings: Tuple[DocumentWarning, ...] = ()
    failed: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.failed


def _failure_reason(exc: BaseException) -> str:
    if isinstance(exc, RetryError):
        return _failure_reason(exc.last_exception)
    if isinstance(exc, ExtractionFailed):
        return exc.reason
    return str(exc) or type(exc).__name__


def normalize_documents(
    documents: Mapping[Union[DocumentKind, str], Optional[bytes]]
) -> Dict[DocumentKind, bytes]:
    """Key documents by DocumentKind and drop empty slots.

    Raises:
        ValueError: For a key that is not f16, as26 or ais
    """
    normalized = {}
    for key, data in documents.items():
        if data is None:
            continue
        normalized[DocumentKind(key)] = data
    return normalized


class ExtractionOrchestrator:
    """Extracts up to three documents concurrently and reconciles them."""

    def __init__(
        self,
        extractor: Extractor,
        retry_max_attempts: int = 1,
        retry_base_delay: float = 2.0,
        retry_max_delay: float = 10.0,
        retry_jitter_range: float = 3.0,
        max_pages: Optional[int] = None,
        reconciler: Reconciler = reconcile
    ):
        """Initialize the orchestrator.

        Args:
            extractor: Document extractor adapter
            retry_max_attempts: Attempts per document; only transient failures are retried
            retry_base_delay: Base delay for exponential backoff
            retry_max_delay: Maximum delay between retries
            retry_jitter_range: Random jitter range for delays
            max_pages: Send only the first ``max_pages`` pages of each document,
                with a warning when pages are dropped; None sends every page
            reconciler: Rule engine run on the three records
        """
        self.extractor = extractor
        self.retry_max_attempts = retry_max_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.retry_jitter_range = retry_jitter_range
        self.max_pages = max_pages
        self.reconciler = reconciler

    @classmethod
    def from_settings(cls, settings: Settings, extractor: Extractor) -> "ExtractionOrchestrator":
        return cls(
            extractor,
            retry_max_attempts=settings.retry_max_attempts,
            retry_base_delay=settings.retry_base_delay,
            retry_max_delay=settings.retry_max_delay,
            retry_jitter_range=settings.retry_jitter_range,
            max_pages=settings.max_extraction_pages,
        )

    async def orchestrate(
        self,
        documents: Mapping[Union[DocumentKind, str], Optional[bytes]]
    ) -> CombinedResult:
        """Extract every supplied document, then reconcile.

        Args:
            documents: PDF bytes keyed by document kind; missing or None slots are skipped

        Returns:
            CombinedResult with a record for every kind (zero-valued where
            absent or failed), warnings in Form 16, Form 26AS, AIS order, and
            the reconciliation findings
        """
        present = normalize_documents(documents)
        slots = [(kind, present[kind]) for kind in DOCUMENT_ORDER if kind in present]

        # gather keeps argument order, which is DOCUMENT_ORDER
        outcomes = await asyncio.gather(*(self._run_slot(kind, data) for kind, data in slots))

        records: Dict[DocumentKind, Record] = {kind: empty_record(kind) for kind in DOCUMENT_ORDER}
        warnings = []
        for outcome in outcomes:
            records[outcome.kind] = outcome.record
            warnings.extend(outcome.warnings)

        f16 = records[DocumentKind.F16]
        as26 = records[DocumentKind.AS26]
        ais = records[DocumentKind.AIS]
        findings = self.reconciler(f16, as26, ais)

        succeeded = sum(1 for outcome in outcomes if outcome.succeeded)
        logger.info(
            f"[RECON] {succeeded}/{len(slots)} document(s) extracted, "
            f"{len(findings)} finding(s), {len(warnings)} warning(s)"
        )
        return CombinedResult(
            f16_data=f16,
            as26_data=as26,
            ais_data=ais,
            findings=findings,
            warnings=warnings,
        )

    async def _limit_pages(self, kind: DocumentKind, data: bytes) -> Tuple[bytes, Optional[DocumentWarning]]:
        """Apply ``max_pages``; the warning tells the client which pages were not read."""
        if not self.max_pages:
            return data, None
        try:
            limited, page_count = await safe_extract_first_n_pages(data, self.max_pages, kind.label)
        except InvalidPDFError as e:
            raise ExtractionFailed(e.reason, kind.value, original_error=e)
        if page_count <= self.max_pages:
            return limited, None
        return limited, DocumentWarning(
            document_label=kind.label,
            message=f"Only the first {self.max_pages} of {page_count} pages were read; "
                    "figures on later pages are missing.",
        )

    async def _run_slot(self, kind: DocumentKind, data: bytes) -> SlotOutcome:
        """Extract one document, converting any failure into a warning."""
        label = kind.label
        logger.info(f"[EXTRACT] Starting {label} extraction, size: {len(data)} bytes")
        notices: Tuple[DocumentWarning, ...] = ()

        try:
            data, page_notice = await self._limit_pages(kind, data)
            if page_notice is not None:
                notices = (page_notice,)

            async def extract_operation():
                return await self.extractor.extract(data, kind)

            record = await retry_with_backoff(
                operation=extract_operation,
                max_retries=self.retry_max_attempts,
                base_delay=self.retry_base_delay,
                max_delay=self.retry_max_delay,
                jitter_range=self.retry_jitter_range,
                retry_exceptions=(TransientExtractionError,),
                operation_name=f"EXTRACT {label}",
                logger=logger,
            )
        except (RetryError, ExtractionFailed) as e:
            reason = _failure_reason(e)
        except Exception as e:
            logger.exception(f"[EXTRACT] {label} - Unexpected error")
            reason = _failure_reason(e)
        else:
            logger.info(f"[EXTRACT] {label} extracted OK: {record.model_dump_json()[:100]}")
            return SlotOutcome(kind, record, notices)

        logger.error(f"[EXTRACT] {label} FAILED: {reason}")
        failure = DocumentWarning(document_label=label, message=reason)
        return SlotOutcome(kind, empty_record(kind), notices + (failure,), failed=True)


async def orchestrate(
    documents: Mapping[Union[DocumentKind, str], Optional[bytes]],
    extractor: Extractor,
    **kwargs
) -> CombinedResult:
    """Convenience wrapper: ``ExtractionOrchestrator(extractor, **kwargs).orchestrate(documents)``."""
    return await ExtractionOrchestrator(extractor, **kwargs).orchestrate(documents)
