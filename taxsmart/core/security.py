"""Security helpers for handling uploads and credentials."""

import re
from pathlib import Path

from .exceptions import SecurityError


def sanitize_filename(filename: str | None, max_length: int = 120) -> str:
    """Sanitize a client-supplied filename before it is logged.

    Uploads are kept in memory only; the name is used for log lines and
    nothing else, so unusable names collapse to ``"upload.pdf"``.

    Args:
        filename: Original filename from the multipart part
        max_length: Maximum allowed filename length

    Returns:
        Sanitized filename
    """
    if not filename or not filename.strip():
        return "upload.pdf"

    # Drop any client-side directory components
    name = re.split(r"[\\/]", filename)[-1]

    # Keep alphanumeric, dots, hyphens, underscores, and spaces
    sanitized = re.sub(r"[^a-zA-Z0-9._\-\s]", "_", name)
    sanitized = re.sub(r"\.{2,}", ".", sanitized)
    sanitized = sanitized.strip(". ")

    if len(sanitized) > max_length:
        # Preserve extension if present
        path = Path(sanitized)
        stem = path.stem[:max_length - len(path.suffix)]
        sanitized = f"{stem}{path.suffix}"

    return sanitized or "upload.pdf"


def validate_api_key(api_key: str, min_length: int = 20) -> None:
    """Validate API key format for basic security checks.

    Args:
        api_key: API key to validate
        min_length: Minimum required key length

    Raises:
        SecurityError: If API key appears invalid or insecure
    """
    if not api_key or not api_key.strip():
        raise SecurityError("Empty API key provided", "empty_api_key")

    api_key = api_key.strip()

    if len(api_key) < min_length:
        raise SecurityError(
            f"API key too short (minimum {min_length} characters)",
            "short_api_key"
        )

    # Check for obviously fake/test keys
    test_patterns = [
        r"^test",
        r"^fake",
        r"^dummy",
        r"^example",
        r"^your[-_]",
        r"^[0]+$",  # All zeros
        r"^(abc|123)+$",  # Repeated simple patterns
    ]

    for pattern in test_patterns:
        if re.match(pattern, api_key.lower()):
            raise SecurityError(
                f"API key appears to be a test/dummy key: {api_key[:6]}...",
                "test_api_key"
            )


__all__ = [
    "sanitize_filename",
    "validate_api_key",
]
