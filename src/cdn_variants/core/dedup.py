"""Check-then-write publishing of content-addressed objects."""

import os
from datetime import datetime, timezone
from typing import Mapping, Optional

from .addressing import ContentAddresser
from .logging_config import get_logger
from .models import ContentKey, StoredObject
from .protocols import LoggerProtocol
from .storage import S3ObjectStore


class DedupStore:
    """
    Publishes bytes under a content key at most once per key.

    The existence check and the write are two separate requests, so two
    concurrent writers of the same new key can both see it as absent and both
    upload. Both write identical bytes, so the last write wins harmlessly;
    this is not a lock.
    """

    def __init__(
        self,
        store: S3ObjectStore,
        addresser: ContentAddresser,
        cache_control: str,
        logger: Optional[LoggerProtocol] = None,
    ):
        self.store = store
        self.addresser = addresser
        self.cache_control = cache_control
        self.logger = logger or get_logger("dedup")

    @staticmethod
    def _key_from_path(storage_key: str) -> ContentKey:
        digest, extension = os.path.splitext(os.path.basename(storage_key))
        return ContentKey(digest=digest, extension=extension)

    def put_if_absent(
        self,
        storage_key: str,
        data: bytes,
        content_type: str,
        cache_control: Optional[str] = None,
        metadata: Optional[Mapping[str, object]] = None,
    ) -> StoredObject:
        """
        Upload unless an object already lives at storage_key.

        Args:
            storage_key: Full object path, '{folder}/{digest}{ext}'
            data: Encoded bytes
            content_type: MIME type stored with the object
            cache_control: Cache-Control header, defaults to the long-lived
                immutable directive from settings
            metadata: Caller tags attached to the object

        Returns:
            StoredObject with existed=True when no bytes were transferred

        Raises:
            UploadError: after the retry ceiling is exhausted
        """
        key = self._key_from_path(storage_key)
        urls = self.addresser.urls_for(storage_key)

        if self.store.exists(storage_key):
            self.logger.info(f"Object already exists, skipping upload: {storage_key}")
            return StoredObject(key=key, path=storage_key, existed=True, urls=urls)

        record = {str(k).lower(): str(v) for k, v in (metadata or {}).items()}
        record["full-hash"] = key.digest
        record["uploaded-at"] = datetime.now(timezone.utc).isoformat()

        self.store.put(
            storage_key,
            data,
            content_type=content_type,
            cache_control=cache_control or self.cache_control,
            metadata=record,
        )
        self.logger.info(f"Uploaded {len(data)} bytes to {storage_key}")
        return StoredObject(key=key, path=storage_key, existed=False, urls=urls)
