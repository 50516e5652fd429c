"""
Error taxonomy for the invoice processing pipeline.

    InvoiceServiceError (base)
    ├── ConfigurationError   unsupported provider name, missing credentials
    ├── UploadError          oversized or malformed multipart upload (HTTP 400)
    ├── PreprocessingError   image could not be decoded or a filter stage failed
    ├── RecognitionError     OCR engine failure
    ├── ProviderError        AI backend call failed
    └── ExtractionError      AI call failed or its answer was not valid JSON

Everything except UploadError is reported inside a normal HTTP 200 envelope
with ``success: false``.
"""


class InvoiceServiceError(Exception):
    """Base exception carrying a human-readable message and optional details."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class ConfigurationError(InvoiceServiceError):
    pass


class UploadError(InvoiceServiceError):
    pass


class PreprocessingError(InvoiceServiceError):
    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message, {"stage": stage} if stage else None)
        self.stage = stage


class RecognitionError(InvoiceServiceError):
    pass


class ProviderError(InvoiceServiceError):
    """Raised when an AI backend call fails; keeps the backend status code when there is one."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, {"status_code": status_code} if status_code is not None else None)
        self.status_code = status_code


class ExtractionError(InvoiceServiceError):
    """
    Raised when extraction fails.

    ``raw_text`` holds the provider answer that could not be parsed, so the
    caller can see exactly what the model returned.
    """

    def __init__(self, message: str, raw_text: str | None = None):
        super().__init__(message)
        self.raw_text = raw_text
