"""Testing utilities and fakes for the variant pipeline."""

from .fakes import (
    FakeS3Client,
    FakeLogger,
    FakeHttpSession,
    FakeResponse,
    StoredBlob,
    create_test_image,
)

__all__ = [
    "FakeS3Client",
    "FakeLogger",
    "FakeHttpSession",
    "FakeResponse",
    "StoredBlob",
    "create_test_image",
]
