"""Factory classes for creating configured service instances."""

from typing import TYPE_CHECKING, Any, Optional

import boto3
import botocore.session
from botocore.config import Config

from .addressing import ContentAddresser
from .dedup import DedupStore
from .fetcher import RemoteFetcher
from .observability import MetricsCollector, StructuredLogger
from .pipeline import VariantPipeline
from .protocols import HttpSessionProtocol, LoggerProtocol, S3ClientProtocol, TranscoderProtocol
from .settings import PipelineSettings
from .storage import S3ObjectStore
from .transcoder import PillowTranscoder

if TYPE_CHECKING:
    from mypy_boto3_s3.client import S3Client
else:
    S3Client = Any


class S3ClientFactory:
    """Factory for creating S3 client instances."""

    @staticmethod
    def create_s3_client(settings: PipelineSettings) -> S3Client:
        """
        Create an S3 client for the configured S3-compatible endpoint.

        botocore's own retries are disabled; the object store retries with
        the configured backoff instead.
        """
        config = Config(
            connect_timeout=settings.network_timeout_seconds,
            read_timeout=settings.network_timeout_seconds,
            retries={"max_attempts": 1, "mode": "standard"},
        )
        botocore_session = botocore.session.get_session()
        if settings.credentials_file:
            botocore_session.set_config_variable("credentials_file", settings.credentials_file)
        session = boto3.Session(
            botocore_session=botocore_session,
            aws_access_key_id=settings.access_key_id,
            aws_secret_access_key=settings.secret_access_key,
            region_name=settings.region,
        )
        return session.client("s3", endpoint_url=settings.endpoint_url, config=config)


class ProcessingPipelineFactory:
    """Factory for creating the complete variant pipeline."""

    @staticmethod
    def create_pipeline(
        settings: Optional[PipelineSettings] = None,
        s3_client: Optional[S3ClientProtocol] = None,
        session: Optional[HttpSessionProtocol] = None,
        transcoder: Optional[TranscoderProtocol] = None,
        logger: Optional[LoggerProtocol] = None,
        metrics_collector: Optional[MetricsCollector] = None,
    ) -> VariantPipeline:
        """Create a fully wired pipeline, building default dependencies when not provided."""
        if settings is None:
            settings = PipelineSettings()

        if s3_client is None:
            s3_client = S3ClientFactory.create_s3_client(settings)

        if logger is None:
            logger = StructuredLogger("cdn-variants")

        addresser = ContentAddresser(settings)
        store = S3ObjectStore(s3_client, settings)
        dedup_store = DedupStore(store, addresser, settings.cache_control)
        fetcher = RemoteFetcher(settings, session=session)

        return VariantPipeline(
            settings=settings,
            transcoder=transcoder or PillowTranscoder(scratch_dir=settings.scratch_dir),
            addresser=addresser,
            dedup_store=dedup_store,
            fetcher=fetcher,
            logger=logger,
            metrics_collector=metrics_collector,
        )
