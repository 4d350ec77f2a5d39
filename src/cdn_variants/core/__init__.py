"""Core components of the variant pipeline."""

from .logging_config import get_logger, setup_logger
from .exceptions import (
    ConfigurationError,
    FetchError,
    ImageValidationError,
    NetworkError,
    TranscodeError,
    TranscodeFailure,
    UploadError,
    UploadFailure,
    VariantPipelineError,
)
from .models import (
    DEFAULT_VARIANTS,
    ContentKey,
    ImageFormat,
    ImageUrls,
    PipelineResult,
    SourceImage,
    StoredObject,
    TranscodeResult,
    VariantConfig,
    VariantError,
    VariantResult,
)
from .settings import PipelineSettings

__all__ = [
    "setup_logger",
    "get_logger",
    "VariantPipelineError",
    "ConfigurationError",
    "ImageValidationError",
    "TranscodeError",
    "TranscodeFailure",
    "NetworkError",
    "FetchError",
    "UploadError",
    "UploadFailure",
    "DEFAULT_VARIANTS",
    "ContentKey",
    "ImageFormat",
    "ImageUrls",
    "PipelineResult",
    "SourceImage",
    "StoredObject",
    "TranscodeResult",
    "VariantConfig",
    "VariantError",
    "VariantResult",
    "PipelineSettings",
]
