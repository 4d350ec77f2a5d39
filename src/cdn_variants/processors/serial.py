"""Serial processor implementation - runs sources one by one."""

from typing import List, Mapping, Optional

from ..core import PipelineResult, VariantConfig
from ..core.pipeline import VariantPipeline
from .common import run_source


def process_batch(
    batch: List[str],
    pipeline: VariantPipeline,
    variants: Optional[Mapping[str, VariantConfig]] = None,
) -> List[PipelineResult]:
    """
    Processes a batch of sources serially, in the current thread.

    Args:
        batch: Local paths or URLs to process.
        pipeline: The configured `VariantPipeline`.
        variants: Variant configs, pipeline defaults when None.

    Returns:
        A list of `PipelineResult` objects in the same order as `batch`.
    """
    results = []

    for source in batch:
        results.append(run_source(pipeline, source, variants))

    return results
