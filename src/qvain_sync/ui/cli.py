from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, datetime, timedelta
from signal import SIGINT, signal
from typing import TYPE_CHECKING
from uuid import UUID

from dotenv import load_dotenv

from qvain_sync.app import (
    fetch_all_datasets,
    fetch_datasets,
    fetch_datasets_since,
    publish_dataset,
)
from qvain_sync.config import ConfigurationError, configure_logging
from qvain_sync.domain.errors import RegistryAPIError, SyncError, TooSoonError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from types import FrameType

log = logging.getLogger(__name__)


def _add_user_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("uid", type=str, help="Local user id owning the datasets")
    parser.add_argument(
        "--identity",
        type=str,
        help="External identity to query by instead of the owner id",
    )


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synchronise datasets with Metax")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log per-record decisions",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch = subparsers.add_parser(
        "fetch",
        help="Sync datasets changed since the last sync (throttled)",
    )
    _add_user_arguments(fetch)

    fetch_all = subparsers.add_parser("fetch-all", help="Resync all datasets of a user")
    _add_user_arguments(fetch_all)

    fetch_since = subparsers.add_parser(
        "fetch-since",
        help="Sync datasets changed since a point in time",
    )
    _add_user_arguments(fetch_since)
    fetch_since.add_argument(
        "--since",
        type=str,
        help="ISO-8601 timestamp (UTC) of the earliest modification to fetch",
    )
    fetch_since.add_argument(
        "--ago-hours",
        type=float,
        help="Relative lookback window in hours (overrides --since if more recent)",
    )

    publish = subparsers.add_parser("publish", help="Publish a dataset to Metax")
    publish.add_argument("dataset_id", type=str, help="Local id of the dataset")
    publish.add_argument("owner", type=str, help="Local user id owning the dataset")

    return parser.parse_args(list(argv))


def _parse_iso_datetime(value: str) -> datetime:
    try:
        normalized = value.strip()
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        dt = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Invalid ISO timestamp: {value}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise ValueError(f"Invalid UUID: {value}") from exc


def _compute_since(
    args: argparse.Namespace,
    *,
    now_provider: Callable[[], datetime] = _utcnow,
) -> datetime:
    since = _parse_iso_datetime(args.since) if args.since else None

    if args.ago_hours is not None:
        if args.ago_hours < 0:
            raise ValueError("Lookback hours must be non-negative")
        from_lookback = now_provider() - timedelta(hours=args.ago_hours)
        since = from_lookback if since is None else max(since, from_lookback)

    if since is None:
        raise ValueError("fetch-since needs --since or --ago-hours")
    return since


def _run(args: argparse.Namespace, since: datetime | None) -> None:
    if args.command == "publish":
        result = publish_dataset(_parse_uuid(args.dataset_id), _parse_uuid(args.owner))
        print(result.registry_id)  # noqa: T201
        if result.new_version_local_id is not None:
            print(f"{result.new_version_registry_id} {result.new_version_local_id}")  # noqa: T201
        return

    uid = _parse_uuid(args.uid)
    if args.command == "fetch":
        fetch_datasets(uid, identity=args.identity)
    elif args.command == "fetch-all":
        fetch_all_datasets(uid, identity=args.identity)
    elif args.command == "fetch-since" and since is not None:
        fetch_datasets_since(uid, since, identity=args.identity)
    else:
        raise ValueError(f"Unsupported command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        since = _compute_since(parsed_args) if parsed_args.command == "fetch-since" else None
    except ValueError:
        configure_logging()
        log.exception("CLI validation error")
        sys.exit(2)

    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)
    try:
        _run(parsed_args, since)
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)
    except TooSoonError as exc:
        log.warning("Skipped sync: %s", exc)
        sys.exit(1)
    except RegistryAPIError as exc:
        log.error("Registry error: %s", exc)  # noqa: TRY400
        if exc.original_error:
            body = exc.original_error.decode(errors="replace")
            log.error("Registry response: %s", body)  # noqa: TRY400
        sys.exit(1)
    except ConfigurationError:
        log.exception("Invalid configuration")
        sys.exit(1)
    except SyncError:
        log.exception("Fatal error during sync")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    print("\nClosed by user (Ctrl+C)")  # noqa: T201
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
