"""Shared fixtures: in-memory storage, canned HTTP responses and fast retries."""

import pytest

from cdn_variants.core.factories import ProcessingPipelineFactory
from cdn_variants.core.settings import PipelineSettings
from cdn_variants.testing.fakes import FakeHttpSession, FakeLogger, FakeS3Client


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a private scratch dir, with no retry delay."""
    return PipelineSettings(
        _env_file=None,
        cdn_base_url="https://cdn.example.com/",
        bucket_name="test-bucket",
        namespace="images",
        scratch_dir=str(tmp_path / "scratch"),
        upload_dir=str(tmp_path / "uploads"),
        retry_initial_delay=0,
    )


@pytest.fixture
def fake_s3():
    return FakeS3Client()


@pytest.fixture
def fake_session():
    return FakeHttpSession()


@pytest.fixture
def fake_logger():
    return FakeLogger()


@pytest.fixture
def pipeline(settings, fake_s3, fake_session, fake_logger):
    return ProcessingPipelineFactory.create_pipeline(
        settings, s3_client=fake_s3, session=fake_session, logger=fake_logger
    )
