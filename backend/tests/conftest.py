"""
Pytest fixtures for fabric stock checker tests.

Spreadsheet and browser are replaced with MagicMock objects; nothing here
talks to Google or launches Chromium.
"""
import pytest
import os
import sys
from unittest.mock import MagicMock

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Predictable run mode and timezone regardless of the developer's .env."""
    for name in ("DEV_MODE", "GITHUB_ACTIONS", "CRON_SCHEDULE", "REQUEST_DELAY", "HEADLESS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TZ", "America/New_York")


@pytest.fixture
def fabrics_values():
    """Raw Fabrics!A:J values as returned by gspread (header included)."""
    return [
        ["Supplier", "Type", "Collection", "Pattern", "Color", "Width", "Repeat", "Content", "Notes", "ETA"],
        ["Unique", "Sheer", "Sheer Collective", "Aria", "Ivory", "118", "", "100% Poly", "", ""],
        [" unique ", "Drapery", "Loft", "Loft", "Charcoal", "54", "", "", "", "Not Found"],
        ["Alendel", "Sheer", "", "EMPIRE VOILE 130", "CHAMPAGNE", "130", "", "", "", "03/15/2026"],
        ["Other Mill", "Blackout", "Basics", "Dim", "White"],
        [],
    ]


@pytest.fixture
def fabric_records(fabrics_values):
    from sheets_service import parse_fabric_rows
    return parse_fabric_rows(fabrics_values)


@pytest.fixture
def make_fabric():
    """Factory for FabricRecords with sensible defaults."""
    from sheets_service import FabricRecord

    def _make(row_index=2, supplier="Unique", collection="Sheer Collective",
              pattern="Aria", color="Ivory", current_eta="", raw_row=None):
        if raw_row is None:
            raw_row = [supplier, "Sheer", collection, pattern, color, "118", "", "100% Poly", "", current_eta]
        return FabricRecord(
            row_index=row_index,
            supplier=supplier,
            type="Sheer",
            collection=collection,
            pattern=pattern,
            color=color,
            current_eta=current_eta,
            raw_row=raw_row,
        )

    return _make


@pytest.fixture
def mock_sheets():
    """GoogleSheetsService stand-in with an empty Backorder sheet."""
    sheets = MagicMock()
    sheets.get_fabric_data.return_value = []
    sheets.get_backorder_entries.return_value = []
    return sheets


@pytest.fixture
def mock_scraper():
    """FabricScraper stand-in; configure search_fabric per test."""
    return MagicMock()


@pytest.fixture
def checker(mock_sheets, mock_scraper):
    from fabric_checker import FabricStockChecker
    return FabricStockChecker(
        sheets=mock_sheets,
        scraper_factory=lambda: mock_scraper,
        request_delay=0,
    )


def _worksheet(title, values=None):
    ws = MagicMock()
    ws.title = title
    ws.get_values.return_value = values or []
    ws.get_all_values.return_value = values or []
    return ws


@pytest.fixture
def spreadsheet_factory():
    """Build a GoogleSheetsService over mocked worksheets."""
    from sheets_service import GoogleSheetsService

    def _build(worksheets):
        spreadsheet = MagicMock()
        spreadsheet.worksheets.return_value = worksheets
        spreadsheet.add_worksheet.side_effect = lambda title, rows, cols: _worksheet(title)
        client = MagicMock()
        client.open_by_key.return_value = spreadsheet
        service = GoogleSheetsService(spreadsheet_id="sheet-123", client=client)
        return service, spreadsheet

    return _build


@pytest.fixture
def make_worksheet():
    """gspread Worksheet stand-in factory."""
    return _worksheet
