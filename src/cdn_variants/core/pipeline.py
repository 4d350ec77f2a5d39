"""Orchestrates fetch, transcode, address and publish for each variant."""

import os
import shutil
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .addressing import ContentAddresser
from .dedup import DedupStore
from .exceptions import VariantPipelineError
from .fetcher import is_remote, read_local
from .models import (
    DEFAULT_VARIANTS,
    PipelineResult,
    SourceImage,
    VariantConfig,
    VariantError,
    VariantResult,
)
from .observability import LogContext, MetricsCollector, PerformanceMetrics, StructuredLogger
from .protocols import FetcherProtocol, LoggerProtocol, TranscoderProtocol
from .settings import PipelineSettings

STEP_FETCH = "fetch_source"
STEP_TRANSCODE = "transcode"
STEP_ADDRESS = "address"
STEP_UPLOAD = "dedup_or_upload"
STEP_CLEANUP = "cleanup"


def _error_from(name: str, source: str, step: str, error: Exception) -> VariantError:
    reason = getattr(error, "reason", None)
    return VariantError(
        name=name,
        source=source,
        step=step,
        error_type=type(error).__name__,
        message=str(error),
        reason=getattr(reason, "value", reason),
    )


class VariantPipeline:
    """
    Produces and publishes every requested variant of one source image.

    Variants are independent: a failing variant is recorded and the others
    carry on. Within one variant the steps run strictly in order. The run's
    scratch directory, holding the downloaded source and any intermediate
    files, is removed when the run ends, whatever happened.
    """

    def __init__(
        self,
        settings: PipelineSettings,
        transcoder: TranscoderProtocol,
        addresser: ContentAddresser,
        dedup_store: DedupStore,
        fetcher: FetcherProtocol,
        logger: Optional[LoggerProtocol] = None,
        metrics_collector: Optional[MetricsCollector] = None,
    ):
        self.settings = settings
        self._transcoder = transcoder
        self._addresser = addresser
        self._dedup_store = dedup_store
        self._fetcher = fetcher
        self._logger = logger or StructuredLogger("cdn-variants.pipeline")
        self._metrics_collector = metrics_collector

    def run(
        self,
        source: str,
        variants: Optional[Mapping[str, VariantConfig]] = None,
        tags: Optional[Mapping[str, str]] = None,
    ) -> PipelineResult:
        """
        Run the pipeline for one local path or remote URL.

        Args:
            source: Local file path or http(s) URL
            variants: Variant name -> config, defaults to DEFAULT_VARIANTS
            tags: Caller metadata attached to every uploaded object

        Returns:
            PipelineResult holding successful variants and itemized errors
        """
        variants = dict(variants or DEFAULT_VARIANTS)
        tags = dict(tags or {})
        start_time = time.time()
        log_context = LogContext(
            operation="run", component="variant_pipeline"
        ).with_metadata(source=source, variants=",".join(variants))
        result = PipelineResult(source=source)

        if self.settings.scratch_dir:
            os.makedirs(self.settings.scratch_dir, exist_ok=True)
        run_dir = tempfile.mkdtemp(prefix="cdn-variants-", dir=self.settings.scratch_dir)

        try:
            try:
                image = self._timed(STEP_FETCH, lambda: self._load_source(source, run_dir))
            except (VariantPipelineError, OSError) as e:
                self._logger.error(
                    "Source could not be loaded",
                    log_context.with_operation(STEP_FETCH).with_metadata(
                        step=STEP_FETCH, error=str(e)
                    ),
                )
                result.errors.extend(
                    _error_from(name, source, STEP_FETCH, e) for name in variants
                )
                return result

            self._logger.info(
                "Source loaded", log_context, size=image.size, format=image.format
            )

            for outcome in self._process_variants(image, variants, run_dir, tags, log_context):
                if isinstance(outcome, VariantResult):
                    result.results[outcome.name] = outcome
                else:
                    result.errors.append(outcome)
        finally:
            self._cleanup(run_dir, log_context)
            result.processing_time = time.time() - start_time

        if result.errors:
            self._logger.warning(
                "Pipeline finished with failures",
                log_context,
                status=result.status,
                succeeded=len(result.results),
                failed=len(result.errors),
            )
        else:
            self._logger.info(
                "Pipeline finished",
                log_context,
                processing_time_ms=result.processing_time * 1000,
            )
        return result

    def _load_source(self, source: str, run_dir: str) -> SourceImage:
        if not is_remote(source):
            return read_local(source)

        image = self._fetcher.fetch(source)
        extension = f".{image.format}" if image.format else ""
        scratch_path = os.path.join(run_dir, f"source{extension}")
        with open(scratch_path, "wb") as f:
            f.write(image.data)
        return image.model_copy(update={"local_path": scratch_path})

    def _process_variants(
        self,
        image: SourceImage,
        variants: Dict[str, VariantConfig],
        run_dir: str,
        tags: Dict[str, str],
        log_context: LogContext,
    ):
        workers = min(self.settings.variant_concurrency, len(variants))
        if workers <= 1:
            for name, config in variants.items():
                yield self._process_variant(name, config, image, run_dir, tags, log_context)
            return

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(
                    self._process_variant, name, config, image, run_dir, tags, log_context
                )
                for name, config in variants.items()
            ]
            for future in as_completed(futures):
                yield future.result()

    def _process_variant(
        self,
        name: str,
        config: VariantConfig,
        image: SourceImage,
        run_dir: str,
        tags: Dict[str, str],
        log_context: LogContext,
    ) -> Union[VariantResult, VariantError]:
        """TRANSCODE -> ADDRESS -> DEDUP_OR_UPLOAD for one variant."""
        variant_context = log_context.with_metadata(variant=name)
        step = STEP_TRANSCODE
        try:
            transcoded = self._timed(
                STEP_TRANSCODE,
                lambda: self._transcoder.transcode(
                    image.data, image.format or image.mime_type, config, scratch_dir=run_dir
                ),
            )

            step = STEP_ADDRESS
            content_key = self._addresser.content_key(transcoded.data, transcoded.format, tags)
            folder = f"{self.settings.namespace}/{name}"
            storage_key = self._addresser.storage_key(folder, content_key)

            step = STEP_UPLOAD
            metadata = {
                **tags,
                "variant": name,
                "original-size": transcoded.original_size or "unknown",
                "optimized-size": transcoded.size,
                "compression-ratio": (
                    f"{transcoded.compression_ratio:.2f}"
                    if transcoded.compression_ratio is not None
                    else "unknown"
                ),
                "width": transcoded.width,
                "height": transcoded.height,
                "format": transcoded.format.value,
                "quality": transcoded.quality,
                "max-width": config.max_width or "none",
            }
            stored = self._timed(
                STEP_UPLOAD,
                lambda: self._dedup_store.put_if_absent(
                    storage_key,
                    transcoded.data,
                    content_type=transcoded.format.content_type,
                    cache_control=self.settings.cache_control,
                    metadata=metadata,
                ),
            )

            self._logger.info(
                "Variant published",
                variant_context,
                path=stored.path,
                existed=stored.existed,
                width=transcoded.width,
                height=transcoded.height,
                size=transcoded.size,
            )
            return VariantResult(
                name=name, source=image.identifier, stored=stored, transcode=transcoded
            )
        except Exception as e:
            self._logger.error(
                "Variant failed",
                variant_context.with_operation(step).with_metadata(
                    step=step, error_type=type(e).__name__, error=str(e)
                ),
            )
            return _error_from(name, image.identifier, step, e)

    def _cleanup(self, run_dir: str, log_context: LogContext) -> None:
        try:
            shutil.rmtree(run_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            self._logger.warning(
                "Failed to remove scratch directory",
                log_context.with_operation(STEP_CLEANUP).with_metadata(
                    step=STEP_CLEANUP, path=run_dir, error=str(e)
                ),
            )

    def _timed(self, operation: str, func: Callable[[], Any]) -> Any:
        if self._metrics_collector is None:
            return func()

        start_time = time.time()
        success = False
        error_message = None
        try:
            value = func()
            success = True
            return value
        except Exception as e:
            error_message = str(e)
            raise
        finally:
            self._metrics_collector.record_metric(
                PerformanceMetrics(
                    operation=operation,
                    start_time=start_time,
                    end_time=time.time(),
                    success=success,
                    error_message=error_message,
                )
            )
