"""
Command-line interface for the audit ledger.

Provides commands for operators and compliance tooling:
- init-db: Create the ledger table, indexes and immutability triggers
- verify: Verify the hash chain (whole ledger, a range, or from a checkpoint)
- list: Print entries with filters and paging
- export: Write entries as JSON lines for compliance export
- stats: Print per-action and per-actor counts
- replay-fallback: Re-submit undelivered submissions from the fallback file
- run: Start the read-only HTTP API
- show-config: Print the active settings and where they came from

Usage:
    audit-ledger init-db
    audit-ledger verify [--from SEQ] [--to SEQ] [--checkpoint HASH]
    audit-ledger list [--actor A] [--action X] [--since TS] [--until TS] [--page N] [--size N]
    audit-ledger export [--output FILE] [--from SEQ] [--to SEQ]
    audit-ledger stats [--top N]
    audit-ledger replay-fallback [--path FILE]
    audit-ledger run [--host HOST] [--port PORT]
    audit-ledger show-config

Exit codes:
    0 success, 1 error, 2 tampering detected by ``verify``.
"""

import argparse
import logging
import sys
from pathlib import Path

from audit_ledger.config import config, configure_logging, print_config_summary
from audit_ledger.db.errors import DatabaseError
from audit_ledger.ledger.errors import LedgerError, TamperedEntryError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_TAMPERED = 2


def cmd_init_db(args: argparse.Namespace) -> int:
    """Initialize the ledger schema."""
    from audit_ledger.db.schema import init_database

    try:
        init_database()
    except Exception as e:
        print(f"Error initializing database: {e}", file=sys.stderr)
        return EXIT_ERROR
    print(f"Ledger database initialized at {config.database.absolute_path}")
    return EXIT_OK


def cmd_verify(args: argparse.Namespace) -> int:
    """
    Verify the hash chain.

    Prints the final hash on success so it can be stored as a checkpoint and
    passed back with ``--from LAST+1 --checkpoint HASH`` next time.
    """
    from audit_ledger.ledger.verifier import verify

    try:
        result = verify(from_seq=args.from_seq, to_seq=args.to_seq, checkpoint_hash=args.checkpoint)
    except TamperedEntryError as e:
        logger.critical("audit ledger tampering detected: %s", e)
        print("LEDGER TAMPERED", file=sys.stderr)
        print(f"  sequence:      {e.sequence}", file=sys.stderr)
        print(f"  reason:        {e.reason}", file=sys.stderr)
        print(f"  expected hash: {e.expected_hash}", file=sys.stderr)
        print(f"  actual hash:   {e.actual_hash or '(no entry)'}", file=sys.stderr)
        return EXIT_TAMPERED
    except (LedgerError, DatabaseError) as e:
        print(f"Error verifying ledger: {e}", file=sys.stderr)
        return EXIT_ERROR

    print(f"OK: {result.entries_checked} entries verified")
    print(f"last sequence: {result.last_sequence}")
    print(f"final hash:    {result.final_hash}")
    return EXIT_OK


def cmd_list(args: argparse.Namespace) -> int:
    """Print one page of entries, one per line."""
    from audit_ledger.ledger import query

    try:
        page = query.list_entries(
            actor=args.actor,
            action=args.action,
            since=args.since,
            until=args.until,
            page=args.page,
            size=args.size,
            newest_first=not args.oldest_first,
        )
    except (LedgerError, DatabaseError) as e:
        print(f"Error listing entries: {e}", file=sys.stderr)
        return EXIT_ERROR

    for entry in page.items:
        print(f"{entry.sequence:>8}  {entry.timestamp}  {entry.actor:<20} {entry.action:<24} {entry.details}")
    print(f"-- page {page.page} ({len(page.items)} of {page.total} entries)")
    return EXIT_OK


def cmd_export(args: argparse.Namespace) -> int:
    """Write entries as JSON lines to a file or stdout."""
    from audit_ledger.ledger import query

    try:
        if args.output:
            with open(args.output, "w", encoding="utf-8") as fh:
                written = query.export_entries(fh, from_seq=args.from_seq, to_seq=args.to_seq)
            print(f"Exported {written} entries to {args.output}", file=sys.stderr)
        else:
            query.export_entries(sys.stdout, from_seq=args.from_seq, to_seq=args.to_seq)
    except (LedgerError, DatabaseError, OSError) as e:
        print(f"Error exporting entries: {e}", file=sys.stderr)
        return EXIT_ERROR
    return EXIT_OK


def cmd_stats(args: argparse.Namespace) -> int:
    """Print per-action and per-actor counts."""
    from audit_ledger.ledger import query

    try:
        total = query.count_entries()
        by_action = query.count_by_action()
        actors = query.top_actors(args.top)
    except (LedgerError, DatabaseError) as e:
        print(f"Error reading stats: {e}", file=sys.stderr)
        return EXIT_ERROR

    print(f"Total entries: {total}")
    print("\nBy action:")
    for action, count in by_action.items():
        print(f"  {action:<28} {count}")
    print(f"\nTop {args.top} actors:")
    for actor, count in actors:
        print(f"  {actor:<28} {count}")
    return EXIT_OK


def cmd_replay_fallback(args: argparse.Namespace) -> int:
    """Re-submit undelivered submissions recorded in the fallback file."""
    from audit_ledger.db.schema import init_database
    from audit_ledger.ledger.appender import LedgerAppender
    from audit_ledger.ledger.fallback import replay_fallback

    path = Path(args.path) if args.path else config.submission.absolute_fallback_path
    try:
        init_database()
        result = replay_fallback(LedgerAppender(), path)
    except (DatabaseError, OSError) as e:
        print(f"Error replaying fallback file: {e}", file=sys.stderr)
        return EXIT_ERROR

    print(f"Replayed: {len(result.replayed)}")
    print(f"Failed:   {len(result.failed)}")
    print(f"Corrupt:  {len(result.corrupt)}")
    return EXIT_OK if not result.failed else EXIT_ERROR


def cmd_run(args: argparse.Namespace) -> int:
    """Run the read-only HTTP API until interrupted."""
    from audit_ledger.api.server import start_server

    try:
        start_server(host=args.host, port=args.port)
    except KeyboardInterrupt:
        print("\nShutting down.")
    return EXIT_OK


def cmd_show_config(args: argparse.Namespace) -> int:
    print_config_summary()
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="audit-ledger",
        description="Tamper-evident audit ledger administration",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Initialize the ledger database schema")

    verify_parser = subparsers.add_parser("verify", help="Verify the hash chain")
    verify_parser.add_argument("--from", dest="from_seq", type=int, default=None)
    verify_parser.add_argument("--to", dest="to_seq", type=int, default=None)
    verify_parser.add_argument(
        "--checkpoint", default=None, help="Verified hash of the entry before --from"
    )

    list_parser = subparsers.add_parser("list", help="List ledger entries")
    list_parser.add_argument("--actor", default=None)
    list_parser.add_argument("--action", default=None)
    list_parser.add_argument("--since", default=None, help="Inclusive ISO-8601 lower bound")
    list_parser.add_argument("--until", default=None, help="Inclusive ISO-8601 upper bound")
    list_parser.add_argument("--page", type=int, default=0)
    list_parser.add_argument("--size", type=int, default=50)
    list_parser.add_argument("--oldest-first", action="store_true")

    export_parser = subparsers.add_parser("export", help="Export entries as JSON lines")
    export_parser.add_argument("--output", "-o", default=None)
    export_parser.add_argument("--from", dest="from_seq", type=int, default=None)
    export_parser.add_argument("--to", dest="to_seq", type=int, default=None)

    stats_parser = subparsers.add_parser("stats", help="Show entry counts")
    stats_parser.add_argument("--top", type=int, default=10)

    replay_parser = subparsers.add_parser(
        "replay-fallback", help="Re-submit undelivered submissions"
    )
    replay_parser.add_argument("--path", default=None)

    run_parser = subparsers.add_parser("run", help="Start the read-only HTTP API")
    run_parser.add_argument("--host", default=None)
    run_parser.add_argument("--port", type=int, default=None)

    subparsers.add_parser("show-config", help="Print the active configuration")

    return parser


COMMANDS = {
    "init-db": cmd_init_db,
    "verify": cmd_verify,
    "list": cmd_list,
    "export": cmd_export,
    "stats": cmd_stats,
    "replay-fallback": cmd_replay_fallback,
    "run": cmd_run,
    "show-config": cmd_show_config,
}


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_ERROR

    configure_logging()
    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
