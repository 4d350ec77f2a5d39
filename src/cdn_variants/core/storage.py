"""
S3ObjectStore - existence checks and writes against an S3-compatible bucket.
"""

from typing import Dict, Optional

from botocore.exceptions import ClientError

from .error_handling import retry_network_operation, with_error_handling
from .logging_config import get_logger
from .protocols import LoggerProtocol, S3ClientProtocol
from .settings import PipelineSettings

NOT_FOUND_CODES = ('404', 'NoSuchKey', 'NotFound')


class S3ObjectStore:
    """
    Thin wrapper over a boto3 S3 client bound to one bucket.

    Every call is retried with exponential backoff on network errors, up to
    the configured ceiling. Errors that survive the retries are raised as
    UploadError.
    """

    def __init__(
        self,
        client: S3ClientProtocol,
        settings: PipelineSettings,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._client = client
        self.bucket = settings.bucket_name
        self.logger = logger or get_logger("storage")

        retry = retry_network_operation(
            max_attempts=settings.max_retries,
            initial_delay=settings.retry_initial_delay,
            backoff_factor=settings.retry_backoff_factor,
        )
        self._head_with_retry = retry(self._head_once)
        self._put_with_retry = retry(self._put_once)

    @property
    def client(self) -> S3ClientProtocol:
        return self._client

    @with_error_handling
    def _head_once(self, key: str) -> Optional[Dict]:
        try:
            return self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if str(e.response.get('Error', {}).get('Code')) in NOT_FOUND_CODES:
                return None
            raise

    @with_error_handling
    def _put_once(
        self,
        key: str,
        data: bytes,
        content_type: str,
        cache_control: str,
        metadata: Dict[str, str],
    ) -> Dict:
        return self._client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            CacheControl=cache_control,
            Metadata=metadata,
        )

    def head(self, key: str) -> Optional[Dict]:
        """Return the object's HEAD response, or None when it does not exist."""
        return self._head_with_retry(key)

    def exists(self, key: str) -> bool:
        return self.head(key) is not None

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str = 'application/octet-stream',
        cache_control: str = 'no-cache',
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        """Upload bytes with content type, cache headers and user metadata."""
        self.logger.debug(f"Uploading {len(data)} bytes to {self.bucket}/{key}")
        self._put_with_retry(key, data, content_type, cache_control, metadata or {})
