"""Unit tests for DedupStore."""

from datetime import datetime
from unittest.mock import patch

import pytest

from cdn_variants.core.addressing import ContentAddresser
from cdn_variants.core.dedup import DedupStore
from cdn_variants.core.exceptions import UploadError
from cdn_variants.core.storage import S3ObjectStore
from cdn_variants.testing.fakes import FakeLogger

DIGEST = "f" * 64
KEY = f"images/full/{DIGEST}.webp"


@pytest.fixture
def dedup(settings, fake_s3):
    addresser = ContentAddresser(settings)
    store = S3ObjectStore(fake_s3, settings, logger=FakeLogger())
    return DedupStore(store, addresser, settings.cache_control, logger=FakeLogger())


class TestPutIfAbsent:
    def test_first_upload_writes_object(self, dedup, fake_s3):
        stored = dedup.put_if_absent(KEY, b"bytes", "image/webp", metadata={"Owner": "me"})

        assert not stored.existed
        assert stored.path == KEY
        assert stored.key.digest == DIGEST
        assert stored.key.extension == ".webp"
        assert fake_s3.put_count == 1

        blob = fake_s3.get_blob("test-bucket", KEY)
        assert blob.cache_control == "public, max-age=31536000, immutable"
        assert blob.metadata["owner"] == "me"
        assert blob.metadata["full-hash"] == DIGEST
        datetime.fromisoformat(blob.metadata["uploaded-at"])

    def test_second_upload_is_a_no_op(self, dedup, fake_s3):
        first = dedup.put_if_absent(KEY, b"bytes", "image/webp")
        second = dedup.put_if_absent(KEY, b"bytes", "image/webp")

        assert second.existed
        assert fake_s3.put_count == 1
        assert first.urls == second.urls
        assert first.path == second.path

    def test_metadata_values_stringified(self, dedup, fake_s3):
        dedup.put_if_absent(KEY, b"bytes", "image/webp", metadata={"width": 200, "ratio": 12.5})
        blob = fake_s3.get_blob("test-bucket", KEY)
        assert blob.metadata["width"] == "200"
        assert blob.metadata["ratio"] == "12.5"

    def test_cache_control_override(self, dedup, fake_s3):
        dedup.put_if_absent(KEY, b"bytes", "image/webp", cache_control="no-store")
        assert fake_s3.get_blob("test-bucket", KEY).cache_control == "no-store"

    def test_urls(self, dedup):
        stored = dedup.put_if_absent(KEY, b"bytes", "image/webp")
        assert stored.urls.cdn_url == f"https://cdn.example.com/{KEY}"
        assert stored.urls.direct_url == f"https://storage.googleapis.com/test-bucket/{KEY}"
        assert stored.urls.raw_url == f"gs://test-bucket/{KEY}"

    @patch("time.sleep", return_value=None)
    def test_upload_failure_propagates(self, mock_sleep, dedup, fake_s3):
        fake_s3.set_failure_mode(True, code="AccessDenied")
        with pytest.raises(UploadError):
            dedup.put_if_absent(KEY, b"bytes", "image/webp")
        assert fake_s3.keys("test-bucket") == []

    def test_concurrent_writers_both_write_identical_bytes(self, dedup, fake_s3):
        # Both writers observe "absent" before either writes.
        with patch.object(dedup.store, "exists", return_value=False):
            dedup.put_if_absent(KEY, b"bytes", "image/webp")
            dedup.put_if_absent(KEY, b"bytes", "image/webp")

        assert fake_s3.put_count == 2
        assert fake_s3.keys("test-bucket") == [KEY]
        assert fake_s3.get_blob("test-bucket", KEY).body == b"bytes"
