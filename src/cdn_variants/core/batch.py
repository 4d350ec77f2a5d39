"""Resumable bulk processing of many sources in fixed-width sub-batches."""

import json
import os
import tempfile
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from .error_handling import BatchOperationContextManager
from .exceptions import ConfigurationError
from .fetcher import is_remote
from .image_utils import format_from_name
from .logging_config import get_logger
from .models import PipelineResult, VariantConfig
from .pipeline import VariantPipeline

ProcessBatchFn = Callable[
    [List[str], VariantPipeline, Optional[Mapping[str, VariantConfig]]],
    List[PipelineResult],
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def atomic_write_json(path: str, data: Any) -> None:
    """Write JSON to a temp file beside path, then rename it over path."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(
        prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=directory
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


class BatchFailure(BaseModel):
    """A source that failed, with the error detail of every failed variant."""

    source: str
    error: str
    timestamp: str = Field(default_factory=_now)
    variants: Dict[str, str] = Field(default_factory=dict)


class BatchProgress(BaseModel):
    """Checkpoint persisted after every sub-batch."""

    processed: List[str] = Field(default_factory=list)
    failed: List[BatchFailure] = Field(default_factory=list)
    last_processed_index: int = -1
    start_time: str = Field(default_factory=_now)
    url_replacements: Dict[str, Dict[str, str]] = Field(default_factory=dict)

    @classmethod
    def load(cls, path: str) -> "BatchProgress":
        """Load a checkpoint, starting fresh when it is missing or unreadable."""
        logger = get_logger("batch")
        if not os.path.exists(path):
            return cls()
        try:
            with open(path, "r", encoding="utf-8") as f:
                return cls.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Failed to load progress from {path}, starting fresh: {e}")
            return cls()

    def save(self, path: str) -> None:
        atomic_write_json(path, self.model_dump(mode="json"))

    def record(self, index: int, result: PipelineResult) -> None:
        """Fold one source's outcome into the checkpoint."""
        self.failed = [f for f in self.failed if f.source != result.source]
        if result.results:
            self.url_replacements[result.source] = {
                name: variant.stored.urls.cdn_url for name, variant in result.results.items()
            }
        if result.errors:
            self.failed.append(
                BatchFailure(
                    source=result.source,
                    error=f"{result.status}: {len(result.errors)} variant(s) failed",
                    variants={e.name: f"{e.step}: {e.message}" for e in result.errors},
                )
            )
        # Sources with no published variant stay eligible for the next run.
        if result.status != "failed" and result.source not in self.processed:
            self.processed.append(result.source)
        self.last_processed_index = max(self.last_processed_index, index)


class BatchReport(BaseModel):
    """Outcome of one BatchRunner.run call."""

    total: int = 0
    skipped: int = 0
    results: List[PipelineResult] = Field(default_factory=list)
    url_replacements: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    failed: List[BatchFailure] = Field(default_factory=list)
    remaining: List[str] = Field(default_factory=list)
    incomplete: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.status == "success")

    def summary(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "skipped": self.skipped,
            "processed": len(self.results),
            "succeeded": self.succeeded,
            "failed": [f.model_dump() for f in self.failed],
            "url_replacements": self.url_replacements,
            "incomplete": self.incomplete,
            "remaining": self.remaining,
        }


class BatchRunner:
    """
    Drives a list of sources through the pipeline, batch_size at a time.

    After each sub-batch the checkpoint is written atomically, so a crashed
    run can resume without reprocessing sources that already published. An
    optional deadline stops scheduling new sub-batches; the report is then
    marked incomplete and lists what was left.
    """

    def __init__(
        self,
        pipeline: VariantPipeline,
        process_batch_fn: ProcessBatchFn,
        batch_size: int = 5,
        progress_path: Optional[str] = None,
        deadline_seconds: Optional[float] = None,
        resume: bool = True,
    ):
        if batch_size < 1:
            raise ConfigurationError(f"batch_size must be at least 1, got {batch_size}")
        self.pipeline = pipeline
        self.process_batch_fn = process_batch_fn
        self.batch_size = batch_size
        self.progress_path = progress_path
        self.deadline_seconds = deadline_seconds
        self.resume = resume
        self.logger = get_logger("batch")

    def _load_progress(self) -> BatchProgress:
        if self.progress_path and self.resume:
            return BatchProgress.load(self.progress_path)
        if self.progress_path:
            self.logger.info("Force flag set, ignoring previous progress")
        return BatchProgress()

    def run(
        self,
        sources: List[str],
        variants: Optional[Mapping[str, VariantConfig]] = None,
    ) -> BatchReport:
        progress = self._load_progress()
        done = set(progress.processed)
        pending: List[Tuple[int, str]] = [
            (index, source) for index, source in enumerate(sources) if source not in done
        ]
        report = BatchReport(total=len(sources), skipped=len(sources) - len(pending))
        if report.skipped:
            self.logger.info(f"Resuming: skipping {report.skipped} already processed source(s)")

        deadline = (
            time.monotonic() + self.deadline_seconds
            if self.deadline_seconds is not None
            else None
        )
        num_batches = (len(pending) + self.batch_size - 1) // self.batch_size

        with BatchOperationContextManager(
            operation_name=f"Variant batch of {len(pending)} source(s)"
        ) as batch_manager:
            for start in range(0, len(pending), self.batch_size):
                if deadline is not None and time.monotonic() >= deadline:
                    report.incomplete = True
                    report.remaining = [source for _, source in pending[start:]]
                    self.logger.warning(
                        f"Deadline of {self.deadline_seconds}s reached, "
                        f"{len(report.remaining)} source(s) left unprocessed"
                    )
                    break

                chunk = pending[start : start + self.batch_size]
                batch_number = start // self.batch_size + 1
                batch_start_time = time.time()
                results = self.process_batch_fn(
                    [source for _, source in chunk], self.pipeline, variants
                )

                for (index, _), result in zip(chunk, results):
                    progress.record(index, result)
                    report.results.append(result)
                    for error in result.errors:
                        batch_manager.add_error(
                            f"[{error.name}/{error.step}] {error.message}",
                            item_identifier=result.source,
                        )

                if self.progress_path:
                    progress.save(self.progress_path)

                self.logger.info(
                    f"Batch {batch_number}/{num_batches} done in {time.time() - batch_start_time:.1f}s - "
                    f"Progress: {len(progress.processed)}/{len(sources)}, Failed: {len(progress.failed)}"
                )

        report.url_replacements = dict(progress.url_replacements)
        report.failed = list(progress.failed)
        return report


def _walk(node: Any, key: Optional[str] = None) -> Iterator[Tuple[Optional[str], str]]:
    if isinstance(node, dict):
        for k, v in node.items():
            yield from _walk(v, k)
    elif isinstance(node, list):
        for item in node:
            yield from _walk(item, key)
    elif isinstance(node, str):
        yield key, node


def extract_image_urls(document: Any) -> List[str]:
    """
    Collect remote image URLs from an arbitrary JSON catalog.

    A string counts when it is an http(s) URL and either its path carries an
    image extension or the key it sits under mentions 'image'.
    """
    urls: List[str] = []
    seen = set()
    for key, value in _walk(document):
        if not is_remote(value) or value in seen:
            continue
        if format_from_name(value) or (key and "image" in key.lower()):
            seen.add(value)
            urls.append(value)
    return urls


def rewrite_urls(document: Any, replacements: Mapping[str, Mapping[str, str]], variant: str) -> Any:
    """Return a copy of document with every replaced source URL swapped for its variant URL."""
    if isinstance(document, dict):
        return {k: rewrite_urls(v, replacements, variant) for k, v in document.items()}
    if isinstance(document, list):
        return [rewrite_urls(item, replacements, variant) for item in document]
    if isinstance(document, str) and document in replacements:
        return replacements[document].get(variant, document)
    return document


def load_sources(path: str) -> Tuple[List[str], Any]:
    """
    Read batch input.

    JSON files are treated as catalogs and scanned with extract_image_urls;
    anything else is a plain list with one source per line.

    Returns:
        (sources, parsed catalog or None)
    """
    with open(path, "r", encoding="utf-8") as f:
        content = f.read()
    if path.lower().endswith(".json"):
        document = json.loads(content)
        return extract_image_urls(document), document
    lines = [line.strip() for line in content.splitlines()]
    return [line for line in lines if line and not line.startswith("#")], None
