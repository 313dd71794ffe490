"""Upload queue CLI interface."""

import argparse
import asyncio
import mimetypes
import sys
from pathlib import Path

from repobatch.core.config import settings
from repobatch.core.exceptions import RepoBatchError
from repobatch.core.logging import configure_logging, get_logger
from repobatch.service import UploadService

logger = get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repobatch",
        description="Batch file uploads into GitHub commits",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show queue status
  python -m repobatch status

  # Commit whatever is queued right now
  python -m repobatch process --force

  # Upload files (queued when Redis is configured)
  python -m repobatch upload a.png b.png

  # Run the processor every 5 seconds
  python -m repobatch poll --interval 5
""",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("status", help="Show queue status")

    process_parser = subparsers.add_parser("process", help="Run the queue processor once")
    process_parser.add_argument(
        "--force", action="store_true", help="Ignore the age and size triggers"
    )

    upload_parser = subparsers.add_parser("upload", help="Upload image files")
    upload_parser.add_argument("files", nargs="+", type=Path, help="Files to upload")
    upload_parser.add_argument(
        "--wait",
        action="store_true",
        help="Batch in this process and wait for the commit",
    )

    poll_parser = subparsers.add_parser("poll", help="Run the queue processor on a timer")
    poll_parser.add_argument(
        "--interval",
        type=float,
        default=settings.POLL_INTERVAL_SECONDS,
        help="Seconds between processor runs",
    )

    return parser


async def run_status(service: UploadService) -> None:
    status = await service.status()
    print(status.model_dump_json(indent=2))


async def run_process(service: UploadService, force: bool) -> None:
    if force:
        count = await service.process_now()
        print(f"Processed {count} items")
        return
    result = await service.processor.process()
    print(result.model_dump_json(indent=2, exclude_none=True))


async def run_upload(service: UploadService, files: list[Path], wait: bool) -> None:
    items = []
    for path in files:
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        items.append(service.build_item(path.read_bytes(), path.name, content_type))

    if wait:
        results = await asyncio.gather(*(service.submit(item) for item in items))
    else:
        results = [await service.enqueue(item) for item in items]

    for result in results:
        print(result.model_dump_json(indent=2, exclude_none=True))


async def run_poll(service: UploadService, interval: float) -> None:
    logger.info("polling_queue", interval=interval)
    while True:
        result = await service.processor.process()
        if result.processed or result.error:
            logger.info("processor_result", message=result.message, error=result.error)
        if result.disabled:
            logger.error("queueing_disabled_stopping_poller")
            return
        await asyncio.sleep(interval)


async def run(args: argparse.Namespace) -> None:
    async with UploadService.from_settings(settings) as service:
        if args.command == "status":
            await run_status(service)
        elif args.command == "process":
            await run_process(service, args.force)
        elif args.command == "upload":
            await run_upload(service, args.files, args.wait)
        elif args.command == "poll":
            await run_poll(service, args.interval)


def main() -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(level=settings.LOG_LEVEL, json_logs=settings.JSON_LOGS)

    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("interrupted")
    except RepoBatchError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
