"""Command-line entry point for the archive size estimator."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from .config import Credentials, RunConfig, Settings
from .errors import ClientLibraryError, EstimatorError
from .logs import configure_logging
from .report import ResultWriter

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Estimate how many MB of each mailbox an archiving policy would move."
    )
    parser.add_argument("mailboxes", nargs="+", help="Mailbox addresses to inspect, in order")
    parser.add_argument("--report", type=Path, help="Append a text line per mailbox to this file")
    parser.add_argument(
        "--age-limit",
        type=non_negative_int,
        help="Only count items created at least N days ago (0 counts everything)",
    )
    parser.add_argument("--server", help="Graph host to use instead of discovering it per mailbox")
    parser.add_argument(
        "--credentials",
        help="Application credential as CLIENT_ID:SECRET (or SECRET for GRAPH_CLIENT_ID); "
        "defaults to the signed-in operator",
    )
    parser.add_argument("--tenant", help="Tenant id or domain to authenticate against")
    parser.add_argument(
        "--skip-tls-verify",
        action="store_true",
        default=None,
        help="Do not validate TLS certificates for this run",
    )
    parser.add_argument(
        "--single-page-items",
        action="store_true",
        help="Count only the first page of items per folder",
    )
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="Stop the whole run at the first mailbox that fails",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show progress on stderr")
    parser.add_argument("--debug", action="store_true", help="Show request-level detail on stderr")
    return parser


def non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid number of days: {value}") from exc
    if number < 0:
        raise argparse.ArgumentTypeError("Age limit cannot be negative")
    return number


def build_run_config(settings: Settings, args: argparse.Namespace) -> RunConfig:
    """Raises ValueError when settings and flags do not describe a usable run."""
    credentials = None
    if args.credentials:
        credentials = Credentials.parse(args.credentials, settings.graph_client_id)
    return RunConfig.from_settings(
        settings,
        args.mailboxes,
        credentials=credentials,
        tenant=args.tenant,
        server=args.server,
        age_limit_days=args.age_limit,
        report_path=args.report,
        skip_tls_verify=args.skip_tls_verify,
        paginate_items=not args.single_page_items,
        fail_fast=args.fail_fast,
    )


def _describe_validation_error(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())) or "settings"
        problems.append(f"{field}: {error.get('msg')}")
    return "; ".join(problems)


def load_estimator():
    """Import the Graph-backed pipeline, translating a missing client stack into a fatal error."""
    try:
        from .estimator import MailboxSizeEstimator
    except ImportError as exc:
        raise ClientLibraryError(f"Graph client library could not be loaded: {exc}") from exc
    return MailboxSizeEstimator


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = build_run_config(Settings(), args)
    except ValidationError as exc:
        parser.error(f"invalid configuration: {_describe_validation_error(exc)}")
    except ValueError as exc:
        parser.error(str(exc))

    log_file = configure_logging(
        config.log_dir,
        config.log_prefix,
        verbose=args.verbose,
        debug=args.debug,
        level=config.log_level,
    )
    logger.info("Logging to %s", log_file)

    try:
        estimator = load_estimator()(config)
    except ClientLibraryError as exc:
        logger.error("%s", exc)
        return int(exc.exit_code)

    with ResultWriter(sys.stdout, config.report_path) as writer:
        try:
            summary = estimator.run(config.mailboxes, writer)
        except EstimatorError as exc:
            logger.warning("Run aborted at the first failure; remaining mailboxes were skipped")
            return int(exc.exit_code)

    logger.info(
        "Run complete: mailboxes=%s failed=%s errors=%s unreadable_items=%s",
        len(summary.results),
        len(summary.failures),
        summary.errors,
        summary.unreadable_items,
    )
    return summary.exit_code


def run() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    run()
