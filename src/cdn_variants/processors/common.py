"""Helpers shared by the batch strategies."""

from typing import Mapping, Optional

from ..core import PipelineResult, VariantConfig, VariantError, get_logger
from ..core.models import DEFAULT_VARIANTS
from ..core.pipeline import VariantPipeline


def run_source(
    pipeline: VariantPipeline,
    source: str,
    variants: Optional[Mapping[str, VariantConfig]],
) -> PipelineResult:
    """Run one source, turning an escaped exception into a failed result."""
    try:
        return pipeline.run(source, variants)
    except Exception as e:
        return failed_result(source, variants, e)


def failed_result(
    source: str,
    variants: Optional[Mapping[str, VariantConfig]],
    error: BaseException,
) -> PipelineResult:
    logger = get_logger("processor")
    logger.error(f"[{source}] Pipeline run failed: {error}", exc_info=error)
    return PipelineResult(
        source=source,
        errors=[
            VariantError(
                name=name,
                source=source,
                step="run",
                error_type=type(error).__name__,
                message=str(error),
            )
            for name in (variants or DEFAULT_VARIANTS)
        ],
    )
