"""
RemoteFetcher - downloads remote sources and sniffs their real type.
"""

import os
from typing import Optional
from urllib.parse import urlparse

import requests

from .error_handling import retry_network_operation, with_error_handling
from .logging_config import get_logger
from .models import SourceImage
from .protocols import HttpSessionProtocol, LoggerProtocol
from .image_utils import read_dimensions, resolve_source_format
from .settings import PipelineSettings

ACCEPT_HEADER = "image/avif,image/webp,image/*,*/*;q=0.8"


def is_remote(source: str) -> bool:
    return urlparse(source).scheme in ("http", "https")


class RemoteFetcher:
    """Fetches image URLs with a timeout and retries with backoff."""

    def __init__(
        self,
        settings: PipelineSettings,
        session: Optional[HttpSessionProtocol] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self.timeout = settings.network_timeout_seconds
        self.session = session or requests.Session()
        self.logger = logger or get_logger("fetcher")
        self._fetch_with_retry = retry_network_operation(
            max_attempts=settings.max_retries,
            initial_delay=settings.retry_initial_delay,
            backoff_factor=settings.retry_backoff_factor,
        )(self._fetch_once)

    @with_error_handling
    def _fetch_once(self, url: str) -> requests.Response:
        response = self.session.get(
            url,
            headers={"Accept": ACCEPT_HEADER},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response

    def fetch(self, url: str) -> SourceImage:
        """
        Download a remote image.

        The format comes from the bytes first, then the Content-Type header,
        and only then from the URL's extension.

        Raises:
            FetchError: when the download fails after all retries
        """
        self.logger.debug(f"Fetching {url}")
        response = self._fetch_with_retry(url)
        data = response.content
        content_type = response.headers.get("Content-Type")
        detected = resolve_source_format(data, content_type, urlparse(url).path)
        width, height = read_dimensions(data)

        self.logger.info(
            f"Fetched {len(data)} bytes from {url} (content-type={content_type}, detected={detected})"
        )
        return SourceImage(
            identifier=url,
            data=data,
            mime_type=f"image/{detected}" if detected else content_type,
            format=detected,
            is_remote=True,
            width=width,
            height=height,
        )


def read_local(path: str) -> SourceImage:
    """Load a local file as a SourceImage."""
    with open(path, "rb") as f:
        data = f.read()
    detected = resolve_source_format(data, None, os.path.basename(path))
    width, height = read_dimensions(data)
    return SourceImage(
        identifier=path,
        data=data,
        mime_type=f"image/{detected}" if detected else None,
        format=detected,
        local_path=path,
        width=width,
        height=height,
    )
