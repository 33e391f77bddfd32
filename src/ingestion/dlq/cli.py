"""
CLI tool for inspecting dead-letter records.

Usage:
    # List the newest 20 failures for a topic
    python -m ingestion.dlq.cli list --topic events --start 0 --stop 19

    # Same, as JSON lines for tooling
    python -m ingestion.dlq.cli list --topic events --json

    # Show one record in full, by position (0 = newest)
    python -m ingestion.dlq.cli view --topic events --index 0

    # Count failures for a topic
    python -m ingestion.dlq.cli count --topic events
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from config.config import load_config
from core.errors.exceptions import SinkError
from ingestion.dlq.sink import DeadLetterRecord, RedisDeadLetterSink

# Project root directory (where .env file is located)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent

logger = logging.getLogger(__name__)


def _error_display(error: str, width: int = 60) -> str:
    return error[: width - 3] + "..." if len(error) > width else error


def print_records(records: list[DeadLetterRecord], as_json: bool = False) -> None:
    """Print records newest-first, as a table or as JSON lines."""
    if as_json:
        for record in records:
            print(record.to_json())
        return

    if not records:
        print("No dead-letter records found.")
        return

    print(f"\n{'=' * 110}")
    print(f"Dead-letter records ({len(records)} shown)")
    print(f"{'=' * 110}\n")
    print(f"{'Partition':<10} {'Offset':<10} {'Event ID':<24} {'Failed At':<28} {'Error':<60}")
    print(f"{'-' * 110}")
    for record in records:
        print(
            f"{record.partition:<10} {record.offset:<10} {record.event_id[:23]:<24} "
            f"{record.failed_at.isoformat():<28} {_error_display(record.error):<60}"
        )
    print(f"{'-' * 110}\n")


def print_record_detail(record: DeadLetterRecord) -> None:
    print(f"\n{'=' * 80}")
    print(f"Dead-letter record: {record.event_id}")
    print(f"{'=' * 80}\n")

    print("Kafka Metadata:")
    print(f"  Topic:     {record.topic}")
    print(f"  Partition: {record.partition}")
    print(f"  Offset:    {record.offset}")
    print()

    print(f"Failed At: {record.failed_at.isoformat()}")
    print()

    print("Error:")
    print(f"  {record.error}")
    print()

    print("Payload:")
    if isinstance(record.payload, str):
        print(f"  {record.payload}")
    else:
        print(json.dumps(record.payload, indent=2))
    print(f"\n{'=' * 80}\n")


async def main_list(sink: RedisDeadLetterSink, args: argparse.Namespace) -> int:
    records = await sink.get_records(args.topic, args.start, args.stop)
    print_records(records, as_json=args.json)
    return 0


async def main_view(sink: RedisDeadLetterSink, args: argparse.Namespace) -> int:
    records = await sink.get_records(args.topic, args.index, args.index)
    if not records:
        print(f"Error: No dead-letter record at index {args.index} for topic '{args.topic}'")
        return 1
    print_record_detail(records[0])
    return 0


async def main_count(sink: RedisDeadLetterSink, args: argparse.Namespace) -> int:
    count = await sink.count(args.topic)
    if args.json:
        print(json.dumps({"topic": args.topic, "count": count}))
    else:
        print(f"{sink.key_for(args.topic)}: {count} record(s)")
    return 0


COMMANDS = {
    "list": main_list,
    "view": main_view,
    "count": main_count,
}


async def run(args: argparse.Namespace, sink: RedisDeadLetterSink | None = None) -> int:
    """Execute one command against the sink, closing it afterwards."""
    if sink is None:
        config = load_config(config_path=args.config)
        sink = RedisDeadLetterSink.from_config(config)

    try:
        return await COMMANDS[args.command](sink, args)
    except SinkError as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        logger.error(f"{args.command} command failed", exc_info=True)
        return 1
    finally:
        await sink.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Dead-letter inspection tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m ingestion.dlq.cli list --topic events --start 0 --stop 19
  python -m ingestion.dlq.cli view --topic events --index 0
  python -m ingestion.dlq.cli count --topic events --json
        """,
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.yaml file (default: src/config/config.yaml)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    list_parser = subparsers.add_parser("list", help="List dead-letter records, newest first")
    list_parser.add_argument("--topic", required=True, help="Source topic")
    list_parser.add_argument("--start", type=int, default=0, help="Index to start from (default: 0)")
    list_parser.add_argument("--stop", type=int, default=19, help="Last index, inclusive; -1 for all (default: 19)")
    list_parser.add_argument("--json", action="store_true", help="Print one JSON record per line")

    view_parser = subparsers.add_parser("view", help="View one record in full")
    view_parser.add_argument("--topic", required=True, help="Source topic")
    view_parser.add_argument("--index", type=int, default=0, help="Position in the list (0 = newest)")

    count_parser = subparsers.add_parser("count", help="Count records for a topic")
    count_parser.add_argument("--topic", required=True, help="Source topic")
    count_parser.add_argument("--json", action="store_true", help="Output in JSON format")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")

    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        return asyncio.run(run(args))
    except (FileNotFoundError, ValueError) as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
