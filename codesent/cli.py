"""Command-line entry point for the CodeSent scan client.

Usage:
    codesent scan [PATH]          # zip PATH (default: cwd), scan it, show the report
    codesent set-key              # prompt for the API key and store it
    codesent delete-key           # remove the stored API key
    python -m codesent ...        # same thing

Exit codes:
    0    success
    1    scan / store failure (message on stderr)
    2    no API key configured, or bad arguments
    130  interrupted

Config is read from .codesent/config.yaml (see codesent/config.py); command
line flags override config values for a single run.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from typing import Optional

from codesent import __version__
from codesent.config import (
    VALID_ARCHIVE_MODES,
    VALID_LOG_LEVELS,
    VALID_REPORT_SINKS,
    Config,
    load_config,
)
from codesent.credentials import CredentialProvider, create_credential_provider
from codesent.errors import CodeSentError, MissingCredentialError
from codesent.models import ProgressEvent
from codesent.sinks import create_report_sink
from codesent.utils.logger import configure_logging, get_logger
from codesent.workflow import Scanner

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        number = -1.0
    if not number > 0:
        raise argparse.ArgumentTypeError(f"must be a positive number: '{value}'")
    return number


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        number = 0
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer: '{value}'")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codesent",
        description="Scan an Apigee API proxy bundle with CodeSent SAST.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to config.yaml (overrides the search order)")
    parser.add_argument("--log-level", type=str.upper, choices=sorted(VALID_LOG_LEVELS))
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")
    sub = parser.add_subparsers(dest="cmd")

    scan = sub.add_parser("scan", help="Zip a proxy directory, scan it and show the report")
    scan.add_argument("path", nargs="?", default=".", help="Proxy directory (default: cwd)")
    scan.add_argument("--base-url", help="CodeSent API base URL")
    scan.add_argument("--sink", choices=sorted(VALID_REPORT_SINKS), help="Where to send the report")
    scan.add_argument("--archive-mode", choices=sorted(VALID_ARCHIVE_MODES))
    scan.add_argument("--interval", type=_positive_float, help="Seconds between status checks")
    scan.add_argument("--max-attempts", type=_positive_int, help="Give up after this many status checks")
    scan.add_argument("--max-duration", type=_positive_float, help="Give up after this many seconds of polling")

    set_key = sub.add_parser("set-key", help="Store the CodeSent API key")
    set_key.add_argument(
        "--stdin",
        action="store_true",
        help="Read the key from stdin instead of prompting",
    )

    sub.add_parser("delete-key", help="Remove the stored CodeSent API key")
    return parser


def _apply_scan_overrides(config: Config, args: argparse.Namespace) -> None:
    if args.base_url:
        config.api.base_url = args.base_url.rstrip("/")
    if args.sink:
        config.report.sink = args.sink
    if args.archive_mode:
        config.archive.mode = args.archive_mode
    if args.interval is not None:
        config.polling.interval_s = args.interval
    if args.max_attempts is not None:
        config.polling.max_attempts = args.max_attempts
    if args.max_duration is not None:
        config.polling.max_duration_s = args.max_duration


def _print_progress(event: ProgressEvent) -> None:
    print(event.message, file=sys.stderr)


def _run_scan(config: Config, provider: CredentialProvider, path: str) -> int:
    api_key = provider.get()
    if not api_key:
        raise MissingCredentialError()

    scanner = Scanner(
        api_key,
        config.api.base_url,
        timeout_s=config.api.timeout_s,
        interval_s=config.polling.interval_s,
        max_attempts=config.polling.max_attempts,
        max_duration_s=config.polling.max_duration_s,
        archive_mode=config.archive.mode,
        sink=create_report_sink(config.report.sink),
        on_progress=_print_progress,
    )
    print("Scanning Apigee Proxy with CodeSent SAST...", file=sys.stderr)
    asyncio.run(scanner.run(path))
    return EXIT_OK


def _set_key(provider: CredentialProvider, from_stdin: bool) -> int:
    if from_stdin:
        api_key = sys.stdin.readline()
    else:
        api_key = getpass.getpass("Enter your CodeSent API key: ")
    provider.set(api_key)
    print("API key saved successfully.", file=sys.stderr)
    return EXIT_OK


def _delete_key(provider: CredentialProvider) -> int:
    provider.delete()
    print("API key deleted successfully.", file=sys.stderr)
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.cmd is None:
        parser.print_help()
        return EXIT_USAGE

    config = load_config(args.config)
    if args.log_level:
        config.logging.level = args.log_level
    if args.json_logs:
        config.logging.json = True
    configure_logging(config.logging.level, json_output=config.logging.json)

    provider = create_credential_provider(config)
    logger.debug("command_started", cmd=args.cmd, config_path=config.path)

    try:
        if args.cmd == "scan":
            _apply_scan_overrides(config, args)
            return _run_scan(config, provider, args.path)
        if args.cmd == "set-key":
            return _set_key(provider, args.stdin)
        if args.cmd == "delete-key":
            return _delete_key(provider)
    except MissingCredentialError as exc:
        print(exc.message, file=sys.stderr)
        return EXIT_USAGE
    except CodeSentError as exc:
        print(f"An error occurred: {exc.message}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED

    parser.print_help()
    return EXIT_USAGE


if __name__ == "__main__":
    raise SystemExit(main())
