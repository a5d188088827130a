"""
Command-line interface for the Redmine issue transfer tool.
"""

from __future__ import annotations

import argparse
import logging
import sys

from . import redmine_utils as rmu
from .models import ErrorPolicy, TargetSettings, TransferConfig, TransferOptions, TransferResult
from .orchestrator import TransferOrchestrator
from .utils import setup_logging


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        number = 0
    if number <= 0:
        msg = f"expected a positive integer, got {value!r}"
        raise argparse.ArgumentTypeError(msg)
    return number


def parse_arguments() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Transfer issues of a version from one Redmine to another")

    # Positional arguments
    _ = parser.add_argument("source_url", help="Base URL of the source Redmine (e.g. https://old.example.com)")

    # Source selection and target placement
    _ = parser.add_argument(
        "--source-version-id", type=_positive_int, required=True, help="Source version whose issues are transferred"
    )
    _ = parser.add_argument("--target-project-id", type=_positive_int, required=True, help="Target project ID")
    _ = parser.add_argument("--target-version-id", type=_positive_int, required=True, help="Target version ID")
    _ = parser.add_argument(
        "--fallback-assignee-id", type=_positive_int, required=True, help="Target user assigned to every issue"
    )

    # Target instance
    _ = parser.add_argument("--target-host", required=True, help="Target host name (host, host:port or URL)")
    _ = parser.add_argument("--target-protocol", choices=["http", "https"], default="https")

    # Credentials
    _ = parser.add_argument(
        "--source-pass-key", help="Path for the source API key in pass utility (default: redmine/source/api_key)"
    )
    _ = parser.add_argument(
        "--target-pass-key", help="Path for the target API key in pass utility (default: redmine/target/api_key)"
    )

    # Behaviour
    _ = parser.add_argument(
        "--abort-on-error", action="store_true", help="Stop at the first issue, link, attachment or note failure"
    )
    _ = parser.add_argument(
        "--map-users", action="store_true", help="Map assignees by login instead of always using the fallback"
    )
    _ = parser.add_argument("--max-retries", type=int, default=2, help="Retries for failed GET requests")
    _ = parser.add_argument(
        "--verbose", "-v", action="count", default=0, help="Increase console verbosity (-v info, -vv debug)"
    )

    return parser.parse_args()


def _print_result(result: TransferResult) -> None:
    if result.success:
        print(f"Successfully transferred {result.count} issues")
    else:
        print(f"Transfer failed: {result.error}")

    stats = result.stats
    print(f"  Parent links:  {stats.parents_linked}")
    print(f"  Attachments:   {stats.attachments_transferred}")
    print(f"  Notes:         {stats.notes_added}")
    if stats.item_failures:
        print(f"  Item failures: {len(stats.item_failures)} (see transfer.log)")


def main() -> None:
    """Main entry point."""
    args = parse_arguments()

    verbosity: int = getattr(args, "verbose", 0)
    setup_logging(verbosity=verbosity)
    logger = logging.getLogger(__name__)

    try:
        source_key = rmu.get_source_api_key(args.source_pass_key)
        target_key = rmu.get_target_api_key(args.target_pass_key)
        if not source_key or not target_key:
            logger.error("Both a source and a target API key are required")
            sys.exit(1)

        config = TransferConfig(
            source_url=args.source_url,
            source_api_key=source_key,
            source_version_id=args.source_version_id,
            target_project_id=args.target_project_id,
            target_version_id=args.target_version_id,
            fallback_assignee_id=args.fallback_assignee_id,
        )
        target = TargetSettings(host_name=args.target_host, protocol=args.target_protocol, api_key=target_key)
        options = TransferOptions(
            error_policy=ErrorPolicy.ABORT if args.abort_on_error else ErrorPolicy.CONTINUE,
            map_users=args.map_users,
            max_retries=max(0, args.max_retries),
        )

        result = TransferOrchestrator.from_settings(config, target, options).run()
    except Exception:
        logger.exception("Transfer failed")
        sys.exit(1)

    _print_result(result)
    sys.exit(0 if result.success else 1)
