"""
Command-line shell for the library engine.

Usage:
    library-engine [--data-dir DIR] [--log-level LEVEL] demo
    library-engine report [--output FILE]
    library-engine export-books [--output FILE]
    library-engine import-books [--input FILE]
    library-engine plans
"""

import argparse
import logging
import sys
from pathlib import Path

from .config import LibrarySettings, get_settings
from .errors import LibraryError
from .library import Library
from .models.membership import plan_comparison_table
from .persistence.binary_store import LibraryStore
from .persistence.report import export_report
from .persistence.text_codec import load_books_text, save_books_text
from .seed import SAMPLE_MEMBERS, seed_library

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="library-engine",
        description="Manage a library's books, members and loans",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        help="Override the configured data directory",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("demo", help="Seed sample data and save it")

    report = subparsers.add_parser("report", help="Export a text report of the saved library")
    report.add_argument("--output", type=Path, help="Report file (default from settings)")

    export_books = subparsers.add_parser("export-books", help="Write saved books as text")
    export_books.add_argument("--output", type=Path, help="Text file (default from settings)")

    import_books = subparsers.add_parser("import-books", help="Add books from a text file")
    import_books.add_argument("--input", type=Path, help="Text file (default from settings)")

    subparsers.add_parser("plans", help="Show the membership plan comparison")
    return parser


def _settings_for(args: argparse.Namespace) -> LibrarySettings:
    overrides = {}
    if args.data_dir is not None:
        overrides["data_directory"] = args.data_dir
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    if overrides:
        return LibrarySettings(**overrides)
    return get_settings()


def _load(settings: LibrarySettings) -> tuple[Library, LibraryStore]:
    library = Library.from_settings(settings)
    store = LibraryStore(settings.data_directory)
    if not store.load(library):
        logger.warning("Starting with an empty library")
    return library, store


def run_demo(settings: LibrarySettings) -> int:
    library = seed_library(Library.from_settings(settings))

    _, _, _, email, password, _ = SAMPLE_MEMBERS[0]
    member, notices = library.login_member(email, password)
    print(f"Logged in as {member.full_name} ({member.membership_plan.name})")
    for notice in notices:
        print(f"  {notice}")
    library.logout()

    LibraryStore(settings.data_directory).save(library)
    save_books_text(library.books(), settings.books_text_path)
    export_report(library, settings.report_path)

    summary = library.inventory_summary()
    print(
        f"Saved {summary.titles} titles ({summary.borrowed_copies}/{summary.total_copies} "
        f"copies on loan), {library.member_count} members, {library.staff_count} staff "
        f"to {settings.data_directory}"
    )
    return 0


def run_report(settings: LibrarySettings, output: Path | None) -> int:
    library, _ = _load(settings)
    path = output or settings.report_path
    if not export_report(library, path):
        return 1
    print(f"Report exported to {path}")
    return 0


def run_export_books(settings: LibrarySettings, output: Path | None) -> int:
    library, _ = _load(settings)
    path = output or settings.books_text_path
    count = save_books_text(library.books(), path)
    print(f"Exported {count} books to {path}")
    return 0


def run_import_books(settings: LibrarySettings, source: Path | None) -> int:
    library, store = _load(settings)
    path = source or settings.books_text_path
    known = {book.isbn for book in library.books()}
    added = 0
    for book in load_books_text(path):
        if book.isbn in known:
            logger.warning("Skipping %s: already in the library", book.isbn)
            continue
        library.add_book(book)
        known.add(book.isbn)
        added += 1
    store.save(library)
    print(f"Imported {added} books from {path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the library-engine command."""
    args = build_parser().parse_args(argv)

    try:
        settings = _settings_for(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.debug("Using data directory %s", settings.data_directory)

    try:
        if args.command == "demo":
            return run_demo(settings)
        if args.command == "report":
            return run_report(settings, args.output)
        if args.command == "export-books":
            return run_export_books(settings, args.output)
        if args.command == "import-books":
            return run_import_books(settings, args.input)
        print(plan_comparison_table())
        return 0
    except LibraryError as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
