"""Protocol definitions for dependency injection and testability."""

from typing import Any, Dict, Optional, Protocol

from .models import SourceImage, TranscodeResult, VariantConfig


class S3ClientProtocol(Protocol):
    """Subset of the boto3 S3 client used by the object store."""

    def head_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        ...

    def put_object(self, **kwargs: Any) -> Dict[str, Any]:
        ...


class HttpSessionProtocol(Protocol):
    """Subset of requests.Session used by the remote fetcher."""

    def get(self, url: str, **kwargs: Any) -> Any:
        ...


class TranscoderProtocol(Protocol):
    """Anything that can turn source bytes into one encoded variant."""

    def transcode(
        self,
        data: bytes,
        source_format_hint: Optional[str],
        config: VariantConfig,
        scratch_dir: Optional[str] = None,
    ) -> TranscodeResult:
        ...


class FetcherProtocol(Protocol):
    """Downloads remote sources."""

    def fetch(self, url: str) -> SourceImage:
        ...


class LoggerProtocol(Protocol):
    """Protocol for logging operations."""

    def debug(self, message: str, *args: Any, **kwargs: Any) -> None:
        ...

    def info(self, message: str, *args: Any, **kwargs: Any) -> None:
        ...

    def warning(self, message: str, *args: Any, **kwargs: Any) -> None:
        ...

    def error(self, message: str, *args: Any, **kwargs: Any) -> None:
        ...
