"""Tests for the text report."""

from datetime import datetime

from conftest import ALGORITHMS, PRIDE

from library_engine.persistence.report import export_report, render_report

GENERATED_AT = datetime(2024, 3, 20, 10, 0, 0)


class TestReport:
    """Test suite for report rendering and export."""

    def test_sections_in_order(self, populated_library, alice):
        populated_library.issue_loan(alice.id, PRIDE)

        report = render_report(populated_library, GENERATED_AT)
        lines = report.splitlines()

        assert lines[1].strip() == "LIBRARY MANAGEMENT SYSTEM REPORT"
        assert "Library: Test Library" in lines
        assert "Generated: 2024-03-20 10:00:00" in lines
        assert "Total Books: 6" in lines
        assert "Total Members: 2" in lines
        assert "Active Loans: 1" in lines

        order = [
            "--- INVENTORY SUMMARY ---",
            "--- ALL BOOKS ---",
            "--- ALL MEMBERS ---",
            "--- ACTIVE LOANS ---",
        ]
        positions = [lines.index(header) for header in order]
        assert positions == sorted(positions)
        assert lines[-2].strip() == "END OF REPORT"

    def test_listings(self, populated_library, clock, alice):
        populated_library.issue_loan(alice.id, ALGORITHMS)
        clock.advance(16)

        report = render_report(populated_library, GENERATED_AT)

        assert "title='Introduction to Algorithms'" in report
        assert "Member{id=101, name='Alice Smith'" in report
        assert "status=OVERDUE (2 days)" in report

    def test_export_writes_file(self, populated_library, tmp_path):
        path = tmp_path / "reports" / "library_report.txt"
        assert export_report(populated_library, path, GENERATED_AT) is True
        assert path.read_text(encoding="utf-8") == render_report(populated_library, GENERATED_AT)

    def test_export_failure_is_reported_not_raised(self, populated_library, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        assert export_report(populated_library, blocker / "report.txt") is False
