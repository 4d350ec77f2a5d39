"""Main module for the cdn-variants CLI."""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .core import DEFAULT_VARIANTS, ConfigurationError, PipelineSettings, VariantConfig, get_logger
from .core.batch import BatchRunner, atomic_write_json, load_sources, rewrite_urls
from .core.factories import ProcessingPipelineFactory
from .core.observability import MetricsCollector
from .processors import PROCESSORS

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PARTIAL = 2


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cdn-variants",
        description="cdn-variants - content-addressed image variants behind a CDN",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Publish the default variants (thumbnail, full, preview) of one image
  cdn-variants process ./photo.jpg

  # Only a 400px AVIF thumbnail of a remote image
  cdn-variants process https://example.com/a.png --variant thumbnail \\
                       --format avif --max-width 400

  # Every image referenced by a catalog, five at a time, resumable
  cdn-variants batch properties.json --processor multithread --output optimized.json

  # Show version
  cdn-variants version
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    process_parser = subparsers.add_parser(
        "process", help="Produce and publish variants of one image"
    )
    process_parser.add_argument("source", help="Local path or http(s) URL")
    process_parser.add_argument(
        "--variant",
        action="append",
        choices=sorted(DEFAULT_VARIANTS),
        help="Variant to produce, repeatable (default: all)",
    )
    process_parser.add_argument(
        "--format", choices=["webp", "avif", "jpeg", "png"], help="Override output format"
    )
    process_parser.add_argument("--quality", type=int, help="Override quality (1-100)")
    process_parser.add_argument("--max-width", type=int, help="Override maximum width")
    process_parser.add_argument("--max-height", type=int, help="Override maximum height")
    process_parser.add_argument(
        "--tag", action="append", default=[], metavar="KEY=VALUE", help="Metadata tag, repeatable"
    )
    process_parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    batch_parser = subparsers.add_parser(
        "batch", help="Process every source listed in a file or JSON catalog"
    )
    batch_parser.add_argument("file", help="JSON catalog or text file with one source per line")
    batch_parser.add_argument(
        "--processor",
        default="serial",
        choices=sorted(PROCESSORS),
        help="Processing strategy to use (default: serial)",
    )
    batch_parser.add_argument(
        "--progress",
        default="processing_state.json",
        help="Progress checkpoint path (default: processing_state.json)",
    )
    batch_parser.add_argument(
        "--force", action="store_true", help="Ignore saved progress and start fresh"
    )
    batch_parser.add_argument("--deadline", type=float, help="Overall deadline in seconds")
    batch_parser.add_argument("--batch-size", type=positive_int, help="Sources per sub-batch")
    batch_parser.add_argument(
        "--variant",
        action="append",
        choices=sorted(DEFAULT_VARIANTS),
        help="Variant to produce, repeatable (default: all)",
    )
    batch_parser.add_argument(
        "--output", help="Write the catalog with source URLs replaced by CDN URLs"
    )
    batch_parser.add_argument(
        "--replace-with",
        default="full",
        choices=sorted(DEFAULT_VARIANTS),
        help="Variant whose URL replaces the source URL in --output (default: full)",
    )
    batch_parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers.add_parser("version", help="Show version information")
    return parser


def select_variants(
    names: Optional[List[str]],
    format: Optional[str] = None,
    quality: Optional[int] = None,
    max_width: Optional[int] = None,
    max_height: Optional[int] = None,
) -> Dict[str, VariantConfig]:
    """Pick named default variants and apply any command-line overrides."""
    overrides = {
        key: value
        for key, value in {
            "format": format,
            "quality": quality,
            "max_width": max_width,
            "max_height": max_height,
        }.items()
        if value is not None
    }
    variants = {}
    for name in names or DEFAULT_VARIANTS:
        base = DEFAULT_VARIANTS[name]
        variants[name] = (
            VariantConfig.model_validate({**base.model_dump(), **overrides})
            if overrides
            else base
        )
    return variants


def parse_tags(pairs: List[str]) -> Dict[str, str]:
    tags = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ConfigurationError(f"Invalid tag '{pair}', expected KEY=VALUE")
        tags[key.strip()] = value.strip()
    return tags


def step_metrics(metrics: MetricsCollector) -> Dict[str, Dict[str, Any]]:
    """Per-step timing summary keyed by pipeline step."""
    operations = sorted({m.operation for m in metrics.get_metrics()})
    return {operation: metrics.get_summary(operation) for operation in operations}


def log_step_metrics(metrics: MetricsCollector) -> None:
    get_logger("cdn-variants").debug(f"Step metrics: {json.dumps(step_metrics(metrics))}")


def run_process(args: argparse.Namespace, settings: PipelineSettings) -> int:
    variants = select_variants(
        args.variant, args.format, args.quality, args.max_width, args.max_height
    )
    metrics = MetricsCollector()
    pipeline = ProcessingPipelineFactory.create_pipeline(settings, metrics_collector=metrics)
    result = pipeline.run(args.source, variants, tags=parse_tags(args.tag))
    print(json.dumps(result.summary(), indent=2))
    log_step_metrics(metrics)

    if result.status == "success":
        return EXIT_OK
    return EXIT_PARTIAL if result.is_partial_failure else EXIT_FAILED


def run_batch(args: argparse.Namespace, settings: PipelineSettings) -> int:
    logger = get_logger("cdn-variants")
    sources, catalog = load_sources(args.file)
    logger.info(f"Loaded {len(sources)} source(s) from {args.file}")

    metrics = MetricsCollector()
    pipeline = ProcessingPipelineFactory.create_pipeline(settings, metrics_collector=metrics)
    runner = BatchRunner(
        pipeline,
        PROCESSORS[args.processor],
        batch_size=args.batch_size if args.batch_size is not None else settings.batch_size,
        progress_path=args.progress,
        deadline_seconds=args.deadline if args.deadline is not None else settings.batch_deadline_seconds,
        resume=not args.force,
    )
    report = runner.run(sources, select_variants(args.variant))

    if args.output:
        if catalog is None:
            logger.warning("--output needs a JSON catalog input, skipping")
        else:
            atomic_write_json(
                args.output, rewrite_urls(catalog, report.url_replacements, args.replace_with)
            )
            logger.info(f"Results saved to {args.output}")

    print(json.dumps(report.summary(), indent=2))
    log_step_metrics(metrics)
    if report.incomplete:
        logger.warning("Batch interrupted. Run the command again to resume.")
        return EXIT_PARTIAL
    return EXIT_PARTIAL if report.failed else EXIT_OK


def main() -> None:
    """
    Entry point for the cdn-variants command-line interface.

    Settings are loaded once from the environment (CDN_VARIANTS_*) and handed
    to every component through the pipeline factory.
    """
    parser = build_parser()
    args = parser.parse_args()

    if args.command == "version":
        print("cdn-variants CLI")
        print("Version 0.1.0")
        print("Content-addressed image variants behind a CDN")
        sys.exit(EXIT_OK)
        return

    if args.command not in ("process", "batch"):
        parser.print_help()
        sys.exit(EXIT_FAILED)
        return

    logger = get_logger("cdn-variants")
    if args.debug:
        logger.setLevel(logging.DEBUG)
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        settings = PipelineSettings()
        if args.command == "process":
            exit_code = run_process(args, settings)
        else:
            exit_code = run_batch(args, settings)
    except KeyboardInterrupt:
        logger.warning("Processing interrupted by user.")
        exit_code = EXIT_FAILED
    except (ValidationError, ConfigurationError) as e:
        logger.error(f"Invalid configuration: {e}")
        exit_code = EXIT_FAILED
    except Exception as e:
        logger.error(f"Processing failed: {e}", exc_info=True)
        exit_code = EXIT_FAILED

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
