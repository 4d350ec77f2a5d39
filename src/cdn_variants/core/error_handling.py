# src/cdn_variants/core/error_handling.py

import functools
import logging
import time

import requests
from botocore.exceptions import BotoCoreError, ClientError as BotocoreClientError
from PIL import UnidentifiedImageError as PILUnidentifiedImageError

from .exceptions import (
    FetchError,
    NetworkError,
    TranscodeError,
    TranscodeFailure,
    UploadError,
    UploadFailure,
    VariantPipelineError,
)

PERMISSION_ERROR_CODES = (
    'AccessDenied', '403', 'Forbidden', 'InvalidAccessKeyId', 'SignatureDoesNotMatch',
)
QUOTA_ERROR_CODES = (
    'QuotaExceeded', 'SlowDown', 'TooManyRequests', '429', 'RequestLimitExceeded',
    'ThrottlingException',
)


def classify_client_error(error: BotocoreClientError) -> UploadFailure:
    """Map a botocore ClientError onto the upload failure reasons."""
    code = str(error.response.get('Error', {}).get('Code', ''))
    if code in PERMISSION_ERROR_CODES:
        return UploadFailure.PERMISSION
    if code in QUOTA_ERROR_CODES:
        return UploadFailure.QUOTA
    return UploadFailure.NETWORK


def with_error_handling(func):
    """
    A decorator that translates library exceptions into the pipeline taxonomy.

    Pipeline errors pass through untouched. botocore failures become UploadError,
    requests failures become FetchError and unidentified images become
    TranscodeError. Anything else is logged and re-raised as is.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(func.__module__ + '.' + func.__name__)
        try:
            return func(*args, **kwargs)
        except VariantPipelineError:
            raise
        except Exception as e:
            logger.error(
                f"Error in '{func.__name__}': {e}",
                exc_info=True
            )
            if isinstance(e, BotocoreClientError):
                raise UploadError(
                    classify_client_error(e), f"Storage operation failed in {func.__name__}: {e}"
                ) from e
            if isinstance(e, BotoCoreError):
                raise UploadError(
                    UploadFailure.NETWORK, f"Storage operation failed in {func.__name__}: {e}"
                ) from e
            if isinstance(e, requests.RequestException):
                status = getattr(e.response, 'status_code', None)
                raise FetchError(f"Fetch failed in {func.__name__}: {e}", status_code=status) from e
            if isinstance(e, PILUnidentifiedImageError):
                raise TranscodeError(
                    TranscodeFailure.DECODE_FAILED, f"Failed to identify image in {func.__name__}: {e}"
                ) from e
            raise
    return wrapper


def retry_network_operation(max_attempts=3, initial_delay=1, backoff_factor=2):
    """
    Decorator to retry network operations with exponential backoff.

    Only NetworkError (fetch, existence check, upload) is retried. Once the
    ceiling is reached the last error is re-raised so the caller can record it.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__ + '.' + func.__name__)
            attempts = 0
            delay = initial_delay
            while True:
                try:
                    return func(*args, **kwargs)
                except NetworkError as e:
                    attempts += 1
                    if not e.retryable:
                        logger.error(f"Network operation '{func.__name__}' failed with non-retryable error: {e}")
                        raise
                    if attempts >= max_attempts:
                        logger.error(
                            f"Network operation '{func.__name__}' failed after {attempts} attempts. Error: {e}"
                        )
                        raise
                    logger.warning(
                        f"Network operation '{func.__name__}' failed. Attempt {attempts}/{max_attempts}. "
                        f"Retrying in {delay:.2f}s. Error: {e}"
                    )
                    time.sleep(delay)
                    delay *= backoff_factor
        return wrapper
    return decorator


class BatchOperationContextManager:
    """
    Context manager for batch operations to collect and summarize errors.
    """
    def __init__(self, operation_name="Batch Operation"):
        self.operation_name = operation_name
        self.errors = []
        self.logger = logging.getLogger(self.__class__.__module__ + '.' + self.__class__.__name__)

    def __enter__(self):
        self.logger.info(f"Starting {self.operation_name}.")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.errors:
            self.logger.warning(
                f"{self.operation_name} completed with {len(self.errors)} error(s)."
            )
            for i, error_detail in enumerate(self.errors):
                item_identifier = error_detail.get('item', 'Unknown item')
                error_message = error_detail.get('error', 'Unknown error')
                self.logger.error(
                    f"  Error {i+1}/{len(self.errors)} for item '{item_identifier}': {error_message}"
                )
        elif exc_type:
            self.logger.error(
                f"{self.operation_name} failed due to an unhandled exception: {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb)
            )
        else:
            self.logger.info(f"{self.operation_name} completed successfully.")

        # Unreported exceptions keep propagating.
        return False

    def add_error(self, error_message: str, item_identifier: str = "Unknown item"):
        """
        Call this method within the 'with' block to report an error for a specific item.

        Args:
            error_message (str): The error message or exception string.
            item_identifier (str): A string identifying the item that failed (e.g., URL, path).
        """
        self.errors.append({"item": item_identifier, "error": str(error_message)})
        self.logger.debug(f"Error added for item '{item_identifier}' in {self.operation_name}: {error_message}")
