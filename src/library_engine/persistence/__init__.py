"""
Persistence for the library engine.

- text_codec: pipe-delimited book inventory
- binary_store: per-collection snapshot of a whole Library
- report: human-readable, write-only report
"""

from .binary_store import LibraryStore
from .report import export_report, render_report
from .text_codec import load_books_text, loads_books, save_books_text, dumps_books

__all__ = [
    "LibraryStore",
    "dumps_books",
    "export_report",
    "load_books_text",
    "loads_books",
    "render_report",
    "save_books_text",
]
