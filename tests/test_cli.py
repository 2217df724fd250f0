"""
KPI Tracker
Tests — `flask import-report` CLI command.

Covers:
    - Importing a report file from disk
    - Duplicate / forbidden role → non-zero exit with the error message
"""

from kpi_tracker.models.dashboard import Indicator
from kpi_tracker.models.import_history import ImportHistoryEntry


class TestImportReportCommand:
    def test_imports_file(self, app, tmp_path, xlsx_report):
        path = tmp_path / "mayo.xlsx"
        path.write_bytes(xlsx_report())

        result = app.test_cli_runner().invoke(args=["import-report", str(path), "--name", "Ana"])

        assert result.exit_code == 0, result.output
        assert "Imported mayo.xlsx: 2 indicators, 2 activities, 1 risks" in result.output
        assert Indicator.query.count() == 2
        assert ImportHistoryEntry.query.one().imported_by == "Ana"

    def test_duplicate_fails(self, app, tmp_path, xlsx_report):
        path = tmp_path / "mayo.xlsx"
        path.write_bytes(xlsx_report())
        runner = app.test_cli_runner()
        runner.invoke(args=["import-report", str(path)])

        result = runner.invoke(args=["import-report", str(path)])
        assert result.exit_code != 0
        assert "Este archivo ya fue importado" in result.output

    def test_consultant_role_is_rejected(self, app, tmp_path, html_report):
        path = tmp_path / "mayo.html"
        path.write_bytes(html_report())

        result = app.test_cli_runner().invoke(args=["import-report", str(path), "--role", "consultant"])
        assert result.exit_code != 0
        assert Indicator.query.count() == 0
