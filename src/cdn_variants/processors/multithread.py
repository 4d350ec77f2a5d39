"""Multithreaded processor implementation - uses a thread pool for parallelism."""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Mapping, Optional

from ..core import PipelineResult, VariantConfig
from ..core.pipeline import VariantPipeline
from .common import failed_result, run_source


def process_batch(
    batch: List[str],
    pipeline: VariantPipeline,
    variants: Optional[Mapping[str, VariantConfig]] = None,
) -> List[PipelineResult]:
    """
    Process a batch of sources with one thread per source.

    The batch width is the concurrency bound, so callers control fan-out
    through their batch size.

    Args:
        batch: Local paths or URLs to process
        pipeline: Configured pipeline (boto3 clients are thread-safe)
        variants: Variant configs, pipeline defaults when None

    Returns:
        List of pipeline results in the same order as `batch`
    """
    if not batch:
        return []

    results: List[Optional[PipelineResult]] = [None] * len(batch)

    with ThreadPoolExecutor(max_workers=len(batch)) as executor:
        future_to_index = {
            executor.submit(run_source, pipeline, source, variants): index
            for index, source in enumerate(batch)
        }

        for future in as_completed(future_to_index):
            index = future_to_index[future]
            try:
                results[index] = future.result()
            except Exception as e:
                results[index] = failed_result(batch[index], variants, e)

    return results  # type: ignore[return-value]
