"""Custom exceptions for the variant pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class VariantPipelineError(Exception):
    """Base exception for all variant pipeline errors."""


class ConfigurationError(VariantPipelineError):
    """Error raised for invalid configuration options."""


class ImageValidationError(VariantPipelineError):
    """Rejected input: disallowed type, oversized upload or bad dimensions."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class TranscodeFailure(str, Enum):
    DECODE_FAILED = "decode-failed"
    ENCODE_FAILED = "encode-failed"
    UNSUPPORTED_FORMAT = "unsupported-format"


class TranscodeError(VariantPipelineError):
    """Codec failure. Deterministic, so never retried."""

    def __init__(self, reason: TranscodeFailure, message: str):
        super().__init__(f"{reason.value}: {message}")
        self.reason = reason


class NetworkError(VariantPipelineError):
    """Transient failure talking to a remote service."""

    retryable = True


class FetchError(NetworkError):
    """Error raised when a remote source cannot be downloaded."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        # Client errors other than timeout/throttling will not change on retry.
        if status_code is not None and 400 <= status_code < 500 and status_code not in (408, 429):
            self.retryable = False


class UploadFailure(str, Enum):
    NETWORK = "network"
    PERMISSION = "permission"
    QUOTA = "quota"


class UploadError(NetworkError):
    """Error raised by existence checks and uploads against the object store."""

    def __init__(self, reason: UploadFailure, message: str):
        super().__init__(f"{reason.value}: {message}")
        self.reason = reason
