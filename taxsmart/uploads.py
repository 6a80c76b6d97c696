"""In-memory multipart parsing for document uploads.

Starlette's form parser spools file parts larger than 1MB to a temporary
file. Tax documents must never touch the disk, so ``/extract`` reads its
body through python-multipart directly and keeps every part in a
``bytearray``. Each part is capped at one byte past the upload limit; the
size check later reports it as too large without the whole body being held.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

import python_multipart
from python_multipart.exceptions import FormParserError
from python_multipart.multipart import parse_options_header
from starlette.requests import Request

from taxsmart.core.exceptions import DocumentValidationError

logger = logging.getLogger(__name__)

MALFORMED_UPLOAD_MESSAGE = "Could not read the uploaded files."


@dataclass
class UploadedPart:
    """One file part of a multipart body, held in memory."""
    field_name: str
    filename: str = ""
    content_type: str = ""
    data: bytearray = field(default_factory=bytearray)
    size: int = 0

    @property
    def is_empty(self) -> bool:
        # Browsers submit an unnamed, empty part for a file input left blank
        return not self.filename and not self.size


def _decode(value: bytes) -> str:
    return value.decode("utf-8", errors="replace")


class InMemoryMultipartReader:
    """Collects the file parts named in ``field_names``; other parts are discarded."""

    def __init__(self, field_names: Iterable[str], max_part_size: int):
        self.field_names = set(field_names)
        self.max_part_size = max_part_size
        self.parts: Dict[str, UploadedPart] = {}
        self._current: Optional[UploadedPart] = None
        self._headers: Dict[bytes, bytes] = {}
        self._header_name = b""
        self._header_value = b""

    def on_part_begin(self) -> None:
        self._current = None
        self._headers = {}

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_name += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def on_header_end(self) -> None:
        self._headers[self._header_name.lower()] = self._header_value
        self._header_name = b""
        self._header_value = b""

    def on_headers_finished(self) -> None:
        _, options = parse_options_header(self._headers.get(b"content-disposition", b""))
        name = _decode(options.get(b"name", b""))
        # Only the first part per field counts; non-file fields are ignored
        if name not in self.field_names or name in self.parts or b"filename" not in options:
            return
        content_type, _ = parse_options_header(self._headers.get(b"content-type", b""))
        self._current = UploadedPart(
            field_name=name,
            filename=_decode(options[b"filename"]),
            content_type=_decode(content_type).lower(),
        )

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self._current is None:
            return
        chunk = data[start:end]
        self._current.size += len(chunk)
        room = self.max_part_size + 1 - len(self._current.data)
        if room > 0:
            self._current.data.extend(chunk[:room])

    def on_part_end(self) -> None:
        if self._current is not None:
            self.parts[self._current.field_name] = self._current
        self._current = None

    def callbacks(self) -> dict:
        return {
            "on_part_begin": self.on_part_begin,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
        }


async def read_multipart_files(
    request: Request,
    field_names: Iterable[str],
    max_part_size: int
) -> Dict[str, UploadedPart]:
    """Read the named file parts of a multipart request body into memory.

    A request that is not multipart carries no files and yields an empty dict.

    Raises:
        DocumentValidationError: If the multipart body cannot be parsed
    """
    content_type, params = parse_options_header(request.headers.get("content-type"))
    if content_type.lower() != b"multipart/form-data":
        return {}

    boundary = params.get(b"boundary")
    if not boundary:
        raise DocumentValidationError(MALFORMED_UPLOAD_MESSAGE)

    reader = InMemoryMultipartReader(field_names, max_part_size)
    parser = python_multipart.MultipartParser(boundary, reader.callbacks())
    try:
        async for chunk in request.stream():
            parser.write(chunk)
        parser.finalize()
    except FormParserError as e:
        logger.info(f"Malformed multipart body: {e}")
        raise DocumentValidationError(MALFORMED_UPLOAD_MESSAGE)

    return reader.parts
