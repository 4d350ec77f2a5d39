"""Content hashing and URL derivation for stored variants."""

import hashlib
import json
import os
from typing import Mapping, Optional
from urllib.parse import quote

from .models import ContentKey, ImageFormat, ImageUrls
from .settings import PipelineSettings


class ContentAddresser:
    """
    Derives content keys, storage paths and public URLs.

    Nothing here touches the network: every URL is a pure function of the
    storage key and the configured CDN base, provider and bucket.
    """

    def __init__(self, settings: PipelineSettings):
        self.bucket_name = settings.bucket_name
        self.cdn_base_url = settings.cdn_base_url
        self.storage_provider = settings.storage_provider
        self.raw_url_scheme = settings.raw_url_scheme
        self.use_cdn = settings.use_cdn
        self.hash_metadata = settings.hash_metadata

    @staticmethod
    def hash(data: bytes, metadata: Optional[Mapping[str, object]] = None) -> str:
        """
        SHA-256 hex digest of the content.

        When metadata is given its keys are sorted and the serialized pairs are
        folded into the same digest, so identical pixels with different
        metadata get different keys.
        """
        digest = hashlib.sha256()
        digest.update(data)
        if metadata:
            serialized = json.dumps(
                {str(k): str(v) for k, v in metadata.items()},
                sort_keys=True,
                separators=(",", ":"),
            )
            digest.update(b"\x00")
            digest.update(serialized.encode("utf-8"))
        return digest.hexdigest()

    @staticmethod
    def file_name(original_name_or_ext: str, digest: str) -> str:
        """Digest plus the extension of the original name ('.webp' or 'a.webp')."""
        name = os.path.basename(original_name_or_ext or "")
        if name.startswith(".") and name.count(".") == 1:
            extension = name
        else:
            extension = os.path.splitext(name)[1]
        return f"{digest}{extension.lower()}"

    def content_key(
        self,
        data: bytes,
        fmt: ImageFormat,
        metadata: Optional[Mapping[str, object]] = None,
    ) -> ContentKey:
        """Content key for encoded output, honoring the metadata-in-hash flag."""
        digest = self.hash(data, metadata if self.hash_metadata else None)
        return ContentKey(digest=digest, extension=fmt.extension)

    @staticmethod
    def storage_key(folder: str, key: ContentKey) -> str:
        folder = folder.strip("/")
        return f"{folder}/{key.file_name}" if folder else key.file_name

    def direct_url(self, storage_key: str) -> str:
        return f"https://storage.{self.storage_provider}.com/{self.bucket_name}/{quote(storage_key)}"

    def cdn_url(self, storage_key: str) -> str:
        if self.use_cdn and self.cdn_base_url:
            return f"{self.cdn_base_url}/{quote(storage_key)}"
        return self.direct_url(storage_key)

    def raw_url(self, storage_key: str) -> str:
        return f"{self.raw_url_scheme}://{self.bucket_name}/{storage_key}"

    def urls_for(self, storage_key: str) -> ImageUrls:
        return ImageUrls(
            cdn_url=self.cdn_url(storage_key),
            direct_url=self.direct_url(storage_key),
            raw_url=self.raw_url(storage_key),
        )
