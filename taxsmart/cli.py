"""Command-line entry point: run the API server or check local PDFs."""
import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import Dict, Optional

from taxsmart.config import Settings, get_settings
from taxsmart.core.exceptions import DocumentValidationError
from taxsmart.core.extractor import DocumentExtractor, create_genai_client
from taxsmart.core.models import CombinedResult, DocumentKind
from taxsmart.core.orchestrator import ExtractionOrchestrator
from taxsmart.core.pdf_utils import validate_pdf_bytes
from taxsmart.core.rate_limit import create_gemini_limiter
from taxsmart.logging_config import setup_logging


def load_documents(paths: Dict[DocumentKind, Optional[Path]], settings: Settings) -> Dict[DocumentKind, bytes]:
    """Read and validate the PDFs given on the command line.

    Raises:
        DocumentValidationError: If a file is not a PDF or is too large
    """
    documents = {}
    for kind, path in paths.items():
        if path is None:
            continue
        data = path.read_bytes()
        validate_pdf_bytes(data, settings.max_upload_size_mb, kind.label)
        documents[kind] = data
    return documents


async def check_documents(documents: Dict[DocumentKind, bytes], settings: Settings) -> CombinedResult:
    """Extract and reconcile local documents with the configured backend."""
    client = create_genai_client(settings)
    extractor = DocumentExtractor.from_settings(settings, client, create_gemini_limiter(settings.quota_limit))
    orchestrator = ExtractionOrchestrator.from_settings(settings, extractor)
    return await orchestrator.orchestrate(documents)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taxsmart",
        description="Extract Form 16, Form 26AS and AIS data and cross-check them",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", help="Bind address (default from HOST)")
    serve.add_argument("--port", type=int, help="Bind port (default from PORT)")

    check = subparsers.add_parser("check", help="Extract and reconcile local PDFs")
    check.add_argument("--f16", type=Path, help="Form 16 PDF")
    check.add_argument("--as26", type=Path, help="Form 26AS PDF")
    check.add_argument("--ais", type=Path, help="Annual Information Statement PDF")
    check.add_argument("--output", "-o", type=Path, help="Write the JSON result here instead of stdout")

    return parser


def run_check(args: argparse.Namespace, settings: Settings) -> int:
    paths = {
        DocumentKind.F16: args.f16,
        DocumentKind.AS26: args.as26,
        DocumentKind.AIS: args.ais,
    }
    if not any(paths.values()):
        logging.error("Please supply at least one of --f16, --as26 or --ais")
        return 2
    if not settings.is_backend_configured:
        logging.error("GEMINI_API_KEY not set. Extraction will fail.")
        return 1

    try:
        documents = load_documents(paths, settings)
    except (OSError, DocumentValidationError) as e:
        logging.error(str(e))
        return 2

    start_time = time.time()
    result = asyncio.run(check_documents(documents, settings))
    logging.info(f"Total execution time: {time.time() - start_time:.2f} seconds")

    output = json.dumps(result.to_response(), indent=2, ensure_ascii=False)
    if args.output:
        args.output.write_text(output + "\n", encoding="utf-8")
        logging.info(f"Result written to {args.output}")
    else:
        print(output)
    return 0


def run_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    from taxsmart.server import create_app

    uvicorn.run(
        create_app(settings),
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_config=None,
    )
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings.logs_directory)

    if args.command == "serve":
        return run_serve(args, settings)
    return run_check(args, settings)


if __name__ == "__main__":
    sys.exit(main())
