"""
Operator CLI for the library-sync correlation subsystem.

Usage:
    library-sync scan
    library-sync repair --dry-run
    library-sync repair
    library-sync ingest-book --title Dune --isbn 9780441172719
    library-sync register-member --first-name Ada --last-name Lovelace --email ada@example.org --password 'S3cret!pass'
    library-sync catalog --book-id 42
    library-sync search --keyword dune --type title --status available
    library-sync borrow --book-id 42
    library-sync return --book-id 42 --days-kept 7
    library-sync analytics
    library-sync stats
    library-sync alerts --output alerts.yml
"""

import argparse
import json
import logging
import sys
from typing import Any, List, Optional

from library_sync.aggregation.catalog import SEARCH_TYPES, STATUS_FILTERS
from library_sync.config import Settings
from library_sync.errors import StoreError, error_response
from library_sync.monitoring import AlertRuleGenerator
from library_sync.runtime import Services, open_services
from library_sync.utils.request_context import RequestContext
from library_sync.utils.structured_logging import configure_logging

logger = logging.getLogger(__name__)


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="library-sync",
        description="Cross-store identity correlation and reconciliation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("scan", help="Report drift between the stores")

    repair_parser = subparsers.add_parser("repair", help="Repair drift between the stores")
    repair_parser.add_argument("--dry-run", action="store_true", help="Show the plan without writing")

    ingest_parser = subparsers.add_parser("ingest-book", help="Create a book in both stores")
    ingest_parser.add_argument("--title", required=True)
    ingest_parser.add_argument("--isbn")
    ingest_parser.add_argument("--author-id", type=int)
    ingest_parser.add_argument("--category-id", type=int)
    ingest_parser.add_argument("--synopsis")
    ingest_parser.add_argument("--cover-image-url")
    ingest_parser.add_argument("--tag", action="append", dest="tags", help="Repeatable")
    ingest_parser.add_argument("--copies", type=int, help="Total copies")

    member_parser = subparsers.add_parser("register-member", help="Register a member in both stores")
    member_parser.add_argument("--first-name", required=True)
    member_parser.add_argument("--last-name", required=True)
    member_parser.add_argument("--email", required=True)
    member_parser.add_argument("--password", required=True)
    member_parser.add_argument("--phone")

    catalog_parser = subparsers.add_parser("catalog", help="Show the enriched catalog")
    catalog_parser.add_argument("--book-id", type=int, help="Show one book only")

    search_parser = subparsers.add_parser("search", help="Search the enriched catalog")
    search_parser.add_argument("--keyword", default="")
    search_parser.add_argument("--type", dest="search_type", choices=SEARCH_TYPES, default="all")
    search_parser.add_argument("--status", choices=STATUS_FILTERS, default="all")
    search_parser.add_argument("--session-id", help="Telemetry session")

    borrow_parser = subparsers.add_parser("borrow", help="Check out one copy of a book")
    borrow_parser.add_argument("--book-id", type=int, required=True)

    return_parser = subparsers.add_parser("return", help="Return one copy of a book")
    return_parser.add_argument("--book-id", type=int, required=True)
    return_parser.add_argument("--days-kept", type=int, required=True)

    subparsers.add_parser("analytics", help="Show merged per-book analytics")
    subparsers.add_parser("stats", help="Show the library dashboard")

    alerts_parser = subparsers.add_parser("alerts", help="Export Prometheus alert rules")
    alerts_parser.add_argument("--output", required=True, help="Output YAML file")

    return parser


def run_command(args: argparse.Namespace, services: Services) -> int:
    """Dispatch one store-backed command. Returns the exit code."""
    if args.command == "scan":
        _print(services.scanner.scan().to_dict())
        return 0

    if args.command == "repair":
        result = services.repairer.repair(dry_run=args.dry_run)
        _print(result.to_dict())
        return 0 if result.succeeded else 1

    if args.command == "ingest-book":
        result = services.coordinator.ingest_book(
            title=args.title,
            isbn=args.isbn,
            author_id=args.author_id,
            category_id=args.category_id,
            synopsis=args.synopsis,
            cover_image_url=args.cover_image_url,
            tags=args.tags,
            total_copies=args.copies,
        )
        _print(result.to_dict())
        return 0

    if args.command == "register-member":
        result = services.coordinator.register_member(
            password=args.password,
            first_name=args.first_name,
            last_name=args.last_name,
            email=args.email,
            phone=args.phone,
        )
        _print(result.to_dict())
        return 0

    if args.command == "catalog":
        if args.book_id is None:
            _print(services.catalog.list_books())
            return 0
        book = services.catalog.get_book(args.book_id)
        if book is None:
            _print({"status": "error", "message": "Book not found"})
            return 1
        _print(book)
        return 0

    if args.command == "search":
        _print(services.catalog.search_books(
            keyword=args.keyword,
            search_type=args.search_type,
            status=args.status,
            session_id=args.session_id,
        ))
        return 0

    if args.command in ("borrow", "return"):
        if args.command == "borrow":
            found = services.activity.record_borrow(args.book_id)
        else:
            found = services.activity.record_return(args.book_id, days_kept=args.days_kept)
        if not found:
            _print({"status": "error", "message": "Book not found"})
            return 1
        _print(services.catalog.get_book(args.book_id))
        return 0

    if args.command == "analytics":
        _print(services.analytics.report())
        return 0

    if args.command == "stats":
        _print(services.analytics.library_stats())
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = Settings.load(args.config)
    except (OSError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    level = logging.DEBUG if args.verbose else getattr(logging, settings.log_level)
    configure_logging(level=level, json_output=settings.json_logging)

    if args.command == "alerts":
        AlertRuleGenerator().export_to_yaml(args.output)
        return 0

    with RequestContext():
        try:
            with open_services(settings) as services:
                metrics_port = args.metrics_port or settings.metrics_port
                if metrics_port:
                    services.metrics.start_server(metrics_port)
                return run_command(args, services)
        except StoreError as e:
            status, body = error_response(e)
            logger.error(f"{args.command} failed with status {status}: {e}", exc_info=args.verbose)
            _print(body)
            return 1


if __name__ == "__main__":
    sys.exit(main())
