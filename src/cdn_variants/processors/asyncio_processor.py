"""AsyncIO processor implementation - offloads blocking runs to worker threads."""

import asyncio
from typing import List, Mapping, Optional

from ..core import PipelineResult, VariantConfig, get_logger
from ..core.pipeline import VariantPipeline
from .common import failed_result, run_source


async def process_source_async(
    pipeline: VariantPipeline,
    source: str,
    variants: Optional[Mapping[str, VariantConfig]],
    semaphore: asyncio.Semaphore,
) -> PipelineResult:
    """Run one source without blocking the event loop."""
    logger = get_logger("asyncio-processor")
    async with semaphore:
        logger.debug(f"[{source}] Starting pipeline run")
        # Fetch, transcode and upload are blocking; keep them off the loop thread.
        return await asyncio.to_thread(run_source, pipeline, source, variants)


async def process_batch_async(
    batch: List[str],
    pipeline: VariantPipeline,
    variants: Optional[Mapping[str, VariantConfig]] = None,
    max_concurrency: Optional[int] = None,
) -> List[PipelineResult]:
    """Process sources concurrently, at most max_concurrency at a time."""
    semaphore = asyncio.Semaphore(max_concurrency or max(1, len(batch)))
    tasks = [process_source_async(pipeline, source, variants, semaphore) for source in batch]

    results = await asyncio.gather(*tasks, return_exceptions=True)

    processed_results: List[PipelineResult] = []
    for source, result in zip(batch, results):
        if isinstance(result, BaseException):
            processed_results.append(failed_result(source, variants, result))
        else:
            processed_results.append(result)

    return processed_results


def process_batch(
    batch: List[str],
    pipeline: VariantPipeline,
    variants: Optional[Mapping[str, VariantConfig]] = None,
) -> List[PipelineResult]:
    """
    Process a batch of sources using asyncio.

    This is the synchronous wrapper that runs the async function.

    Args:
        batch: Local paths or URLs to process
        pipeline: Configured pipeline
        variants: Variant configs, pipeline defaults when None

    Returns:
        List of pipeline results in the same order as `batch`
    """
    return asyncio.run(process_batch_async(batch, pipeline, variants))
