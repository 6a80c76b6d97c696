"""In-memory PDF checks for uploaded tax documents.

Uploads are never written to disk, so everything here works on ``bytes``.
All functions are synchronous and thread-safe; use the ``safe_`` wrappers
from async code to keep PyMuPDF off the event loop.
"""

import asyncio
import logging
from collections.abc import Generator
from typing import Tuple
from contextlib import contextmanager

import fitz  # PyMuPDF

from .exceptions import InvalidPDFError, PDFTooLargeError

PDF_MAGIC = b"%PDF-"


def check_pdf_size_safety(
    data: bytes,
    max_size_mb: float = 15.0,
    document_label: str | None = None
) -> float:
    """Check that an upload fits the size limit.

    Returns:
        Size of the upload in MB

    Raises:
        PDFTooLargeError: If the upload exceeds ``max_size_mb``
    """
    file_size_mb = len(data) / (1024 * 1024)
    logging.debug(f"PDF size check: {document_label or 'upload'} = {file_size_mb:.2f}MB")

    if file_size_mb > max_size_mb:
        raise PDFTooLargeError(document_label, file_size_mb, max_size_mb)
    return file_size_mb


@contextmanager
def open_pdf(data: bytes, document_label: str | None = None) -> Generator[fitz.Document, None, None]:
    """Context manager that opens PDF bytes and always closes the document.

    Raises:
        InvalidPDFError: If the bytes are not a readable PDF with at least one page
    """
    # Readers accept a header anywhere in the first 1024 bytes
    if PDF_MAGIC not in data[:1024]:
        raise InvalidPDFError(document_label)

    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise InvalidPDFError(document_label, f"PDF file is corrupted: {e}")

    try:
        if doc.page_count == 0:
            raise InvalidPDFError(document_label, "PDF has no pages")
        yield doc
    finally:
        doc.close()


def validate_pdf_bytes(
    data: bytes,
    max_size_mb: float = 15.0,
    document_label: str | None = None
) -> int:
    """Validate an upload and return its page count.

    Raises:
        PDFTooLargeError: If the upload exceeds the size limit
        InvalidPDFError: If the upload is not a readable PDF
    """
    check_pdf_size_safety(data, max_size_mb, document_label)
    with open_pdf(data, document_label) as doc:
        return doc.page_count


def extract_first_n_pages(data: bytes, max_pages: int, document_label: str | None = None) -> Tuple[bytes, int]:
    """Return a PDF holding only the first ``max_pages`` pages, and the original page count.

    The original bytes come back untouched when the document is short enough.
    """
    with open_pdf(data, document_label) as source_doc:
        page_count = source_doc.page_count
        if page_count <= max_pages:
            return data, page_count

        logging.info(
            f"{document_label or 'PDF'}: using first {max_pages} of {page_count} pages"
        )
        new_doc = fitz.open()
        try:
            new_doc.insert_pdf(source_doc, from_page=0, to_page=max_pages - 1)
            return new_doc.tobytes(), page_count
        finally:
            new_doc.close()


async def safe_validate_pdf_bytes(
    data: bytes,
    max_size_mb: float = 15.0,
    document_label: str | None = None
) -> int:
    """Run ``validate_pdf_bytes`` in a worker thread."""
    return await asyncio.to_thread(validate_pdf_bytes, data, max_size_mb, document_label)


async def safe_extract_first_n_pages(
    data: bytes,
    max_pages: int,
    document_label: str | None = None
) -> Tuple[bytes, int]:
    """Run ``extract_first_n_pages`` in a worker thread."""
    return await asyncio.to_thread(extract_first_n_pages, data, max_pages, document_label)
