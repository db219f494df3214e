import argparse
import asyncio
import json
import logging
import sys

from snippetstore.config import ServiceSettings
from snippetstore.log import setup_logging
from snippetstore.reconcile.queue import QueueConfig, create_queue
from snippetstore.reconcile.worker import (
    enqueue_reconciliation,
    report_to_dict,
    run_reconciliation_loop,
    run_reconciliation_pass,
)


logger = logging.getLogger("snippetstore")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Maintenance commands for the snippet store"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Finish pending deletes and sweep orphaned blobs",
    )
    reconcile_parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep running passes every SNIPPETS_RECONCILE_INTERVAL seconds",
    )

    subparsers.add_parser(
        "enqueue",
        help="Schedule a reconciliation pass on the RQ queue",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Override LOG_LEVEL (default: from environment, INFO)",
    )

    args = parser.parse_args()

    settings = ServiceSettings.from_env()
    setup_logging(args.log_level or settings.log_level)

    if args.command == "enqueue":
        queue = create_queue(QueueConfig.from_settings(settings))
        job = enqueue_reconciliation(queue, result_ttl=settings.queue_result_ttl)
        print(f"Enqueued reconciliation job {job.id} on {queue.name}")
        return

    try:
        if args.loop:
            asyncio.run(run_reconciliation_loop(settings))
            return
        report = asyncio.run(run_reconciliation_pass(settings))
    except KeyboardInterrupt:
        print("\n⚠️ Reconciliation interrupted", file=sys.stderr)
        sys.exit(1)
    except Exception:
        logger.exception("Fatal error during reconciliation")
        print("\n❌ Fatal error occurred. See log for details.", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(report_to_dict(report), indent=2))

    if report.failures:
        print(f"\n⚠️  {len(report.failures)} item(s) left for the next pass:", file=sys.stderr)
        for failure in report.failures[:5]:
            context = failure["context"]
            print(f"  • {context['stage']} {context['target']}: {failure['message']}", file=sys.stderr)
        if len(report.failures) > 5:
            print(f"  ... and {len(report.failures) - 5} more", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
