"""Exception hierarchy for TaxSmart document processing."""

from typing import Any, Optional


class TaxSmartError(Exception):
    """Base exception for all TaxSmart errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DocumentValidationError(TaxSmartError):
    """Base class for upload validation errors (rejected before extraction)."""

    def __init__(
        self,
        message: str,
        document_label: Optional[str] = None,
        details: Optional[dict[str, Any]] = None
    ) -> None:
        self.document_label = document_label
        details = dict(details or {})
        if document_label:
            details["document_label"] = document_label
        super().__init__(message, details)


class NoDocumentsError(DocumentValidationError):
    """Raised when a request carries none of the three documents."""

    def __init__(self) -> None:
        super().__init__("Please upload at least one document.")


class InvalidPDFError(DocumentValidationError):
    """Raised when an upload is not a readable PDF."""

    def __init__(
        self,
        document_label: Optional[str] = None,
        reason: str = "Only PDF files are allowed"
    ) -> None:
        self.reason = reason
        message = f"{document_label}: {reason}" if document_label else reason
        super().__init__(message, document_label)


class PDFTooLargeError(DocumentValidationError):
    """Raised when an upload exceeds the maximum allowed size."""

    def __init__(
        self,
        document_label: Optional[str],
        file_size_mb: float,
        max_size_mb: float
    ) -> None:
        message = f"PDF size ({file_size_mb:.1f}MB) exceeds maximum allowed size ({max_size_mb}MB)"
        if document_label:
            message = f"{document_label}: {message}"
        super().__init__(
            message,
            document_label,
            details={"file_size_mb": file_size_mb, "max_size_mb": max_size_mb}
        )
        self.file_size_mb = file_size_mb
        self.max_size_mb = max_size_mb


class ExtractionFailed(TaxSmartError):
    """Raised when a single document could not be turned into a record.

    ``reason`` is the user-facing text that ends up in the response warnings.
    ``transient`` marks upstream failures worth retrying (timeouts, 429, 5xx).
    """

    def __init__(
        self,
        reason: str,
        document_kind: Optional[str] = None,
        transient: bool = False,
        original_error: Optional[Exception] = None
    ) -> None:
        self.reason = reason
        self.document_kind = document_kind
        self.transient = transient
        self.original_error = original_error

        details: dict[str, Any] = {"transient": transient}
        if document_kind:
            details["document_kind"] = document_kind
        if original_error:
            details["original_error"] = str(original_error)

        super().__init__(reason, details)


class TransientExtractionError(ExtractionFailed):
    """Upstream failure that a caller may retry."""

    def __init__(
        self,
        reason: str,
        document_kind: Optional[str] = None,
        original_error: Optional[Exception] = None
    ) -> None:
        super().__init__(reason, document_kind, True, original_error)


class RateLimitExceededError(TaxSmartError):
    """Raised when a client exceeds its request allowance for the window."""

    def __init__(self, client_id: str, retry_after_seconds: int, limit: int) -> None:
        message = "Too many requests. Please try again in an hour."
        super().__init__(
            message,
            {"client_id": client_id, "retry_after": retry_after_seconds, "limit": limit}
        )
        self.client_id = client_id
        self.retry_after_seconds = retry_after_seconds
        self.limit = limit


class SecurityError(TaxSmartError):
    """Base class for security-related errors."""

    def __init__(self, message: str, security_check: str) -> None:
        self.security_check = security_check
        full_message = f"Security check failed ({security_check}): {message}"
        super().__init__(full_message, {"security_check": security_check})


class ConfigurationError(TaxSmartError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, setting_name: str, issue: str) -> None:
        message = f"Configuration error for '{setting_name}': {issue}"
        super().__init__(message, {"setting_name": setting_name, "issue": issue})
        self.setting_name = setting_name
        self.issue = issue


__all__ = [
    "TaxSmartError",
    "DocumentValidationError",
    "NoDocumentsError",
    "InvalidPDFError",
    "PDFTooLargeError",
    "ExtractionFailed",
    "TransientExtractionError",
    "RateLimitExceededError",
    "SecurityError",
    "ConfigurationError",
]
