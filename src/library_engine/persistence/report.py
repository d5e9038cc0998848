"""Plain-text library report. Write-only; nothing ever reads it back."""

import logging
from datetime import datetime
from pathlib import Path

from ..library import Library

logger = logging.getLogger(__name__)

RULE = "=" * 43


def render_report(library: Library, generated_at: datetime | None = None) -> str:
    """Render the header, summary, listings and footer as one string."""
    generated_at = generated_at or datetime.now()
    today = library.today()

    lines = [
        RULE,
        "       LIBRARY MANAGEMENT SYSTEM REPORT",
        RULE,
        f"Library: {library.name}",
        f"Generated: {generated_at.isoformat(sep=' ', timespec='seconds')}",
        "",
        "--- INVENTORY SUMMARY ---",
        f"Total Books: {library.book_count}",
        f"Total Members: {library.member_count}",
        f"Active Loans: {library.active_loan_count}",
        "",
        "--- ALL BOOKS ---",
    ]
    lines.extend(str(book) for book in library.books())
    lines.append("")
    lines.append("--- ALL MEMBERS ---")
    lines.extend(str(member) for member in library.members())
    lines.append("")
    lines.append("--- ACTIVE LOANS ---")
    lines.extend(loan.describe(today) for loan in library.active_loans())
    lines.extend(["", RULE, "              END OF REPORT", RULE])
    return "\n".join(lines) + "\n"


def export_report(library: Library, path: Path, generated_at: datetime | None = None) -> bool:
    """
    Write the report to ``path``.

    Returns:
        False if the file could not be written; the failure is logged, not raised
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_report(library, generated_at), encoding="utf-8")
    except OSError as e:
        logger.warning("Could not export report to %s: %s", path, e)
        return False
    logger.info("Report exported to %s", path)
    return True
