"""Main module for the images-transform CLI."""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .core import (
    ImagesTransformError,
    OptionsValidationError,
    ProcessingPlan,
    create_batch_items,
    get_logger,
    validate_options,
)
from .core.config import Settings, get_settings
from .core.factories import ProcessingPipelineFactory


def _load_plan(raw: Optional[str]) -> ProcessingPlan:
    """Options are inline JSON, or ``@path`` to read them from a file."""
    if raw and raw.startswith("@"):
        raw = Path(raw[1:]).read_text(encoding="utf-8")
    return validate_options(raw)


def _settings_from_args(args: argparse.Namespace) -> Settings:
    settings = get_settings()
    overrides = {}
    if getattr(args, "work_dir", None):
        overrides.update(
            work_dir=args.work_dir,
            upload_dir=args.work_dir / "uploads",
            output_dir=args.work_dir / "outputs",
        )
    if getattr(args, "strategy", None):
        overrides["batch_strategy"] = args.strategy
    if getattr(args, "concurrency", None):
        overrides["batch_concurrency"] = args.concurrency
    return settings.model_copy(update=overrides) if overrides else settings


def cmd_process(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    plan = _load_plan(args.options)
    service = ProcessingPipelineFactory.create_service(settings)

    data = args.input.read_bytes()
    result = service.process_bytes(plan, data, args.input.name)

    output = args.output or args.input.with_name(f"{args.input.stem}-processed.{result.extension}")
    output.write_bytes(result.data)
    print(f"{args.input} -> {output} ({result.width}x{result.height}, {result.format})")
    return 0


def cmd_batch(args: argparse.Namespace) -> int:
    logger = get_logger("cli")
    settings = _settings_from_args(args)
    plan = _load_plan(args.options)
    coordinator = ProcessingPipelineFactory.create_coordinator(settings)

    items = create_batch_items((path.name, path.read_bytes()) for path in args.inputs)
    outcome = coordinator.run_batch(plan, items)

    args.output_dir.mkdir(parents=True, exist_ok=True)
    for item in items:
        if item.result is None:
            print(f"FAILED {item.metadata.filename}: {item.error_reason}")
            continue
        target = args.output_dir / f"{Path(item.metadata.filename).stem}.{item.result.extension}"
        target.write_bytes(item.result.data)
        logger.debug(f"Wrote {target}")

    print(f"Batch complete: {outcome.completed_count} succeeded, {outcome.failed_count} failed")
    return 0 if outcome.failed_count == 0 else 1


def cmd_sweep(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    store = ProcessingPipelineFactory.create_store(settings)
    max_age = args.max_age if args.max_age is not None else settings.retention_seconds
    deleted = store.sweep_expired(max_age)
    print(f"Removed {deleted} expired file(s)")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "images_transform.api.app:create_application",
        factory=True,
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="images-transform",
        description="Images Transform - resize, crop, rotate, filter and convert images",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Resize one image to fit inside 400x400 and convert it to WebP
  images-transform process photo.jpg \\
      --options '{"format": "webp", "resize": {"width": 400, "height": 400, "maintainAspectRatio": true}}'

  # Apply the same options to several images
  images-transform batch *.png --options @options.json --output-dir processed/

  # Run the HTTP API
  images-transform serve --port 8000
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    process_parser = subparsers.add_parser("process", help="Transform a single image")
    process_parser.add_argument("input", type=Path, help="Input image file")
    process_parser.add_argument(
        "--options", default=None, help="Options JSON, or @file to read it from a file"
    )
    process_parser.add_argument("--output", type=Path, default=None, help="Output file path")
    process_parser.add_argument("--work-dir", type=Path, default=None, help="Directory for temporary files")
    process_parser.set_defaults(handler=cmd_process)

    batch_parser = subparsers.add_parser("batch", help="Apply one set of options to many images")
    batch_parser.add_argument("inputs", type=Path, nargs="+", help="Input image files")
    batch_parser.add_argument(
        "--options", default=None, help="Options JSON, or @file to read it from a file"
    )
    batch_parser.add_argument("--output-dir", type=Path, required=True, help="Directory for results")
    batch_parser.add_argument(
        "--strategy",
        choices=["asyncio", "multithread"],
        default=None,
        help="Fan-out strategy (default: from settings)",
    )
    batch_parser.add_argument("--concurrency", type=int, default=None, help="Maximum parallel items")
    batch_parser.add_argument("--work-dir", type=Path, default=None, help="Directory for temporary files")
    batch_parser.set_defaults(handler=cmd_batch)

    sweep_parser = subparsers.add_parser("sweep", help="Delete expired temporary files once")
    sweep_parser.add_argument(
        "--max-age", type=float, default=None, help="Age in seconds (default: retention setting)"
    )
    sweep_parser.add_argument("--work-dir", type=Path, default=None, help="Directory holding uploads/ and outputs/")
    sweep_parser.set_defaults(handler=cmd_sweep)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.set_defaults(handler=cmd_serve)

    subparsers.add_parser("version", help="Show version information")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the images-transform command line interface."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "version":
        print("Images Transform CLI")
        print(f"Version {__version__}")
        sys.exit(0)
    elif not args.command:
        parser.print_help()
        sys.exit(1)
    else:
        logger = get_logger("cli")
        try:
            exit_code = args.handler(args)
        except OptionsValidationError as e:
            print(f"Invalid options: {e}", file=sys.stderr)
            exit_code = 2
        except ImagesTransformError as e:
            logger.debug(f"{args.command} failed", exc_info=True)
            print(f"{e.kind}: {e}", file=sys.stderr)
            exit_code = 1
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
