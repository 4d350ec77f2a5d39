"""Unit tests for RemoteFetcher and local source loading."""

from unittest.mock import patch

import pytest
import requests

from cdn_variants.core.exceptions import FetchError
from cdn_variants.core.fetcher import ACCEPT_HEADER, RemoteFetcher, is_remote, read_local
from cdn_variants.testing.fakes import FakeLogger, create_test_image

URL = "https://images.example.com/photos/cover.jpg?size=large"


@pytest.fixture
def fetcher(settings, fake_session):
    return RemoteFetcher(settings, session=fake_session, logger=FakeLogger())


class TestIsRemote:
    @pytest.mark.parametrize(
        "source,expected",
        [
            ("https://x.test/a.jpg", True),
            ("http://x.test/a.jpg", True),
            ("/tmp/a.jpg", False),
            ("a.jpg", False),
            ("ftp://x.test/a.jpg", False),
            ("gs://bucket/a.jpg", False),
        ],
    )
    def test_is_remote(self, source, expected):
        assert is_remote(source) is expected


class TestFetch:
    def test_fetch_success(self, fetcher, fake_session, settings):
        data = create_test_image(10, 10)
        fake_session.add_response(URL, data, content_type="image/jpeg")

        image = fetcher.fetch(URL)

        assert image.data == data
        assert image.identifier == URL
        assert image.format == "jpeg"
        assert image.mime_type == "image/jpeg"
        assert image.is_remote
        assert (image.width, image.height) == (10, 10)
        call = fake_session.calls[0]
        assert call["timeout"] == settings.network_timeout_seconds
        assert call["headers"]["Accept"] == ACCEPT_HEADER

    def test_sniffed_type_beats_content_type(self, fetcher, fake_session):
        png = create_test_image(10, 10, format="PNG")
        fake_session.add_response(URL, png, content_type="application/octet-stream")
        assert fetcher.fetch(URL).format == "png"

    def test_content_type_used_when_bytes_unknown(self, fetcher, fake_session):
        fake_session.add_response(URL, b"??????", content_type="image/webp")
        image = fetcher.fetch(URL)
        assert image.format == "webp"
        assert (image.width, image.height) == (None, None)

    def test_url_extension_is_last_resort(self, fetcher, fake_session):
        fake_session.add_response(URL, b"??????", content_type=None)
        assert fetcher.fetch(URL).format == "jpeg"

    def test_transient_failures_retried(self, fetcher, fake_session):
        fake_session.add_response(URL, create_test_image(10, 10))
        fake_session.fail_next(2, requests.ConnectionError)

        image = fetcher.fetch(URL)

        assert image.format == "jpeg"
        assert len(fake_session.calls) == 3

    def test_timeouts_exhaust_retries(self, fetcher, fake_session):
        fake_session.fail_next(5, requests.Timeout)
        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch(URL)
        assert exc_info.value.retryable
        assert len(fake_session.calls) == 3

    def test_not_found_is_not_retried(self, fetcher, fake_session):
        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch("https://images.example.com/missing.jpg")
        assert exc_info.value.status_code == 404
        assert len(fake_session.calls) == 1

    @patch("time.sleep", return_value=None)
    def test_backoff_between_attempts(self, mock_sleep, settings, fake_session):
        settings = settings.model_copy(update={"retry_initial_delay": 1.0, "retry_backoff_factor": 2.0})
        fetcher = RemoteFetcher(settings, session=fake_session)
        fake_session.fail_next(5, requests.ConnectionError)

        with pytest.raises(FetchError):
            fetcher.fetch(URL)
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]


class TestReadLocal:
    def test_read_local(self, tmp_path):
        path = tmp_path / "photo.bin"
        data = create_test_image(12, 12, format="PNG")
        path.write_bytes(data)

        image = read_local(str(path))

        assert image.data == data
        assert image.format == "png"
        assert image.local_path == str(path)
        assert (image.width, image.height) == (12, 12)
        assert not image.is_remote

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_local(str(tmp_path / "nope.jpg"))
