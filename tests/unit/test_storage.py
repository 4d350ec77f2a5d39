"""Unit tests for S3ObjectStore."""

from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError

from cdn_variants.core.exceptions import UploadError, UploadFailure
from cdn_variants.core.storage import S3ObjectStore
from cdn_variants.testing.fakes import FakeLogger, FakeS3Client


@pytest.fixture
def store(settings, fake_s3):
    return S3ObjectStore(fake_s3, settings, logger=FakeLogger())


class TestExists:
    def test_missing_object(self, store):
        assert not store.exists("images/a.webp")
        assert store.head("images/a.webp") is None

    def test_existing_object(self, store, fake_s3):
        store.put("images/a.webp", b"data", content_type="image/webp")
        assert store.exists("images/a.webp")
        assert store.head("images/a.webp")["ContentLength"] == 4

    @pytest.mark.parametrize("code", ["NoSuchKey", "NotFound"])
    def test_other_not_found_codes(self, settings, code):
        client = Mock()
        client.head_object.side_effect = ClientError({"Error": {"Code": code}}, "HeadObject")
        assert not S3ObjectStore(client, settings).exists("x")

    def test_permission_error_not_treated_as_missing(self, store, fake_s3):
        fake_s3.set_failure_mode(True, code="AccessDenied")
        with pytest.raises(UploadError) as exc_info:
            store.exists("images/a.webp")
        assert exc_info.value.reason is UploadFailure.PERMISSION


class TestPut:
    def test_put_sends_headers_and_metadata(self, store, fake_s3):
        store.put(
            "images/a.webp",
            b"data",
            content_type="image/webp",
            cache_control="public, max-age=31536000, immutable",
            metadata={"full-hash": "abc"},
        )

        blob = fake_s3.get_blob("test-bucket", "images/a.webp")
        assert blob.body == b"data"
        assert blob.content_type == "image/webp"
        assert blob.cache_control == "public, max-age=31536000, immutable"
        assert blob.metadata == {"full-hash": "abc"}

    @patch("time.sleep", return_value=None)
    def test_put_retries_transient_failures(self, mock_sleep, store, fake_s3):
        fake_s3.set_failure_mode(True, code="ServiceUnavailable", times=2)
        store.put("images/a.webp", b"data")

        assert fake_s3.put_count == 3
        assert fake_s3.get_blob("test-bucket", "images/a.webp") is not None

    @patch("time.sleep", return_value=None)
    def test_put_gives_up_after_ceiling(self, mock_sleep, store, fake_s3):
        fake_s3.set_failure_mode(True, code="SlowDown")
        with pytest.raises(UploadError) as exc_info:
            store.put("images/a.webp", b"data")

        assert exc_info.value.reason is UploadFailure.QUOTA
        assert fake_s3.put_count == 3

    def test_retry_ceiling_from_settings(self, settings):
        client = FakeS3Client()
        client.set_failure_mode(True)
        store = S3ObjectStore(client, settings.model_copy(update={"max_retries": 1}))
        with pytest.raises(UploadError):
            store.put("k", b"data")
        assert client.put_count == 1
