"""
Google Sheets service for the fabric inventory tracker.

Reads fabric rows from the "Fabrics" tab, writes ETA values back to
column J, maintains the "Backorder" snapshot tab and the "Status"
run-summary tab.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import gspread
from google.oauth2.service_account import Credentials

import config


SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

FABRICS_SHEET = "Fabrics"
BACKORDER_SHEET = "Backorder"
STATUS_SHEET = "Status"

FABRICS_RANGE = "A:J"
ETA_COLUMN = "J"
ETA_COLUMN_INDEX = 9
EXTRA_INFO_SLICE = slice(5, 9)  # Columns F-I

BACKORDER_HEADERS = [
    "Timestamp", "Supplier", "Collection", "Pattern", "Color", "ETA",
    "Additional Info 1", "Additional Info 2", "Additional Info 3", "Additional Info 4",
]

STATUS_TEMPLATE = [
    ["Fabric Stock Checker - System Status"],
    [""],
    ["Last Scrape Information", ""],
    ["Last Run Date & Time", ""],
    ["Status", ""],
    ["Duration (minutes)", ""],
    ["Total Items Processed", ""],
    [""],
    ["Results Summary", ""],
    ["Items Available (blank)", ""],
    ["Items with ETA Info", ""],
    ["Items Not Found", ""],
    ["Items with Errors", ""],
    [""],
    ["System Health", ""],
    ["Login Success", ""],
    ["Navigation Errors", ""],
    ["Timeout Errors", ""],
    [""],
    ["Next Scheduled Run", ""],
    ["System Mode", ""],
    [""],
    ["Recent Activity", ""],
    ["Items Moved to Available", ""],
    ["Items Moved to Backorder", ""],
    ["New Not Found Items", ""],
]
STATUS_VALUES_RANGE = "B4:B26"

SYSTEM_MODE_LABELS = {
    config.RUN_MODE_DEVELOPMENT: "Development",
    config.RUN_MODE_GITHUB_ACTIONS: "GitHub Actions",
    config.RUN_MODE_PRODUCTION: "Production",
}


# =============================================================================
# Row Types
# =============================================================================

@dataclass
class FabricRecord:
    """One row of the Fabrics sheet."""
    row_index: int
    supplier: str
    type: str
    collection: str
    pattern: str
    color: str
    current_eta: str = ""
    raw_row: List[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.pattern} - {self.color}" if self.color else self.pattern

    def key(self) -> tuple:
        return snapshot_key(self.supplier, self.collection, self.pattern, self.color)


@dataclass
class BackorderEntry:
    """One row of the Backorder snapshot."""
    timestamp: str
    supplier: str
    collection: str
    pattern: str
    color: str
    eta: str
    extra: List[str] = field(default_factory=list)

    def key(self) -> tuple:
        return snapshot_key(self.supplier, self.collection, self.pattern, self.color)


def snapshot_key(supplier: str, collection: str, pattern: str, color: str) -> tuple:
    """Identity of a fabric across Fabrics and Backorder rows."""
    return tuple((v or "").strip().lower() for v in (supplier, collection, pattern, color))


# =============================================================================
# Row Mapping
# =============================================================================

def _cell(row: List[Any], index: int) -> str:
    if index < len(row) and row[index] is not None:
        return str(row[index])
    return ""


def parse_fabric_rows(rows: List[List[Any]], supplier: Optional[str] = None) -> List[FabricRecord]:
    """
    Convert raw Fabrics values (header included) into FabricRecords.

    Row 1 is the header, so the first data row is sheet row 2.
    When `supplier` is given, only rows whose Supplier column equals it
    (case-insensitive, trimmed) are returned.
    """
    if not rows or len(rows) < 2:
        return []

    records = []
    for position, row in enumerate(rows[1:]):
        record = FabricRecord(
            row_index=position + 2,
            supplier=_cell(row, 0).strip(),
            type=_cell(row, 1).strip(),
            collection=_cell(row, 2).strip(),
            pattern=_cell(row, 3).strip(),
            color=_cell(row, 4).strip(),
            current_eta=_cell(row, ETA_COLUMN_INDEX),
            raw_row=[_cell(row, i) for i in range(len(row))],
        )
        records.append(record)

    if supplier:
        wanted = supplier.strip().lower()
        records = [r for r in records if r.supplier.lower() == wanted]

    return records


def build_backorder_row(fabric: FabricRecord, eta: str, timestamp: str) -> List[str]:
    """Backorder row: identity columns, ETA, then Fabrics columns F-I."""
    extra = fabric.raw_row[EXTRA_INFO_SLICE]
    extra = extra + [""] * (4 - len(extra))
    return [
        timestamp,
        fabric.supplier,
        fabric.collection,
        fabric.pattern,
        fabric.color,
        eta,
        *extra,
    ]


def backorder_entry_for(fabric: FabricRecord, eta: str, timestamp: str) -> BackorderEntry:
    row = build_backorder_row(fabric, eta, timestamp)
    return BackorderEntry(*row[:6], extra=row[6:])


def backorder_entry_to_row(entry: BackorderEntry) -> List[str]:
    return [entry.timestamp, entry.supplier, entry.collection, entry.pattern,
            entry.color, entry.eta, *entry.extra]


def parse_backorder_rows(rows: List[List[Any]]) -> List[BackorderEntry]:
    """Parse Backorder values (header included); blank rows are skipped."""
    entries = []
    for row in rows[1:]:
        if not any(str(v).strip() for v in row):
            continue
        entries.append(BackorderEntry(
            timestamp=_cell(row, 0),
            supplier=_cell(row, 1).strip(),
            collection=_cell(row, 2).strip(),
            pattern=_cell(row, 3).strip(),
            color=_cell(row, 4).strip(),
            eta=_cell(row, 5),
            extra=[_cell(row, i) for i in range(6, len(row))],
        ))
    return entries


def build_status_values(summary: Dict[str, Any], run_mode: str, next_run: str,
                        run_time: Optional[datetime] = None) -> List[List[Any]]:
    """
    Build the B4:B26 column of the Status sheet.

    Blank entries line up with the section header rows of STATUS_TEMPLATE.
    """
    tz = config.get_timezone()
    run_time = run_time or datetime.now(tz)
    timestamp = run_time.astimezone(tz).strftime("%A, %B %d, %Y at %I:%M:%S %p")

    return [
        [timestamp],                                             # B4
        [summary.get("overall_status", "")],                     # B5
        [summary.get("duration_minutes", 0)],                    # B6
        [summary.get("total_processed", 0)],                     # B7
        [""],
        [""],
        [summary.get("available_count", 0)],                     # B10
        [summary.get("eta_count", 0)],                           # B11
        [summary.get("not_found_count", 0)],                     # B12
        [summary.get("error_count", 0)],                         # B13
        [""],
        [""],
        ["SUCCESS" if summary.get("login_success") else "FAILED"],  # B16
        [summary.get("navigation_errors", 0)],                   # B17
        [summary.get("timeout_errors", 0)],                      # B18
        [""],
        [next_run],                                              # B20
        [SYSTEM_MODE_LABELS.get(run_mode, "Production")],        # B21
        [""],
        [""],
        [summary.get("moved_to_available", 0)],                  # B24
        [summary.get("moved_to_backorder", 0)],                  # B25
        [summary.get("new_not_found", 0)],                       # B26
    ]


# =============================================================================
# Service
# =============================================================================

class GoogleSheetsService:
    """
    Thin wrapper around a gspread Spreadsheet.

    Authorizes lazily on first use so the HTTP process can start and report
    health before the first run.
    """

    def __init__(self, spreadsheet_id: Optional[str] = None, client: Optional[gspread.Client] = None):
        self._spreadsheet_id = spreadsheet_id
        self._client = client
        self._spreadsheet: Optional[gspread.Spreadsheet] = None

    @property
    def initialized(self) -> bool:
        return self._spreadsheet is not None

    def initialize(self) -> None:
        """Authorize with the service account and open the spreadsheet."""
        spreadsheet_id = self._spreadsheet_id or config.get_spreadsheet_id()
        if self._client is None:
            creds = Credentials.from_service_account_info(
                config.load_service_account_info(), scopes=SCOPES
            )
            self._client = gspread.authorize(creds)
        self._spreadsheet = self._client.open_by_key(spreadsheet_id)
        self._spreadsheet_id = spreadsheet_id
        print("Google Sheets service initialized", flush=True)

    @property
    def spreadsheet(self) -> gspread.Spreadsheet:
        if self._spreadsheet is None:
            self.initialize()
        return self._spreadsheet

    def _find_worksheet(self, title: str) -> Optional[gspread.Worksheet]:
        for ws in self.spreadsheet.worksheets():
            if ws.title.strip().lower() == title.lower():
                return ws
        return None

    def _worksheet(self, title: str) -> gspread.Worksheet:
        ws = self._find_worksheet(title)
        if ws is None:
            raise gspread.exceptions.WorksheetNotFound(title)
        return ws

    # -------------------------------------------------------------------------
    # Fabrics
    # -------------------------------------------------------------------------

    def get_fabric_data(self, supplier: Optional[str] = None) -> List[FabricRecord]:
        """Read fabric rows, optionally only those for one supplier."""
        rows = self._worksheet(FABRICS_SHEET).get_values(FABRICS_RANGE)
        if not rows:
            print("  No fabric data found in the sheet", flush=True)
            return []

        records = parse_fabric_rows(rows)
        suppliers_found = sorted({r.supplier for r in records if r.supplier})
        print(f"  Found suppliers in sheet: {', '.join(suppliers_found)}", flush=True)

        if supplier:
            filtered = parse_fabric_rows(rows, supplier)
            print(f"  Found {len(filtered)} rows for {supplier} out of {len(records)} total rows", flush=True)
            return filtered
        return records

    def update_fabric_eta(self, row_index: int, value: str) -> None:
        """Write an ETA value (or blank) to column J of a Fabrics row."""
        self._worksheet(FABRICS_SHEET).update(
            range_name=f"{ETA_COLUMN}{row_index}",
            values=[[value]],
            value_input_option="RAW",
        )
        print(f"    Updated ETA for row {row_index}: {value or '(cleared)'}", flush=True)

    # -------------------------------------------------------------------------
    # Backorder
    # -------------------------------------------------------------------------

    def ensure_backorder_sheet(self) -> gspread.Worksheet:
        """Create the Backorder tab with headers if it does not exist."""
        ws = self._find_worksheet(BACKORDER_SHEET)
        if ws is None:
            ws = self.spreadsheet.add_worksheet(title=BACKORDER_SHEET, rows=100, cols=len(BACKORDER_HEADERS))
            ws.update(range_name="A1", values=[BACKORDER_HEADERS], value_input_option="RAW")
            print("  Created Backorder sheet with headers", flush=True)
        return ws

    def get_backorder_entries(self) -> List[BackorderEntry]:
        ws = self._find_worksheet(BACKORDER_SHEET)
        if ws is None:
            return []
        return parse_backorder_rows(ws.get_all_values())

    def write_backorder_snapshot(self, entries: List[BackorderEntry]) -> None:
        """
        Replace the Backorder tab with the given snapshot.

        Rows are overwritten in place before the leftovers below them are
        cleared, so a failed write never leaves the tab empty.
        """
        ws = self.ensure_backorder_sheet()
        rows = [BACKORDER_HEADERS] + [backorder_entry_to_row(e) for e in entries]
        width = max(len(row) for row in rows)
        rows = [row + [""] * (width - len(row)) for row in rows]
        ws.update(range_name="A1", values=rows, value_input_option="RAW")
        ws.batch_clear([f"A{len(rows) + 1}:Z"])
        print(f"  Backorder snapshot written: {len(entries)} items", flush=True)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def ensure_status_sheet(self) -> gspread.Worksheet:
        """Create the Status tab with its key/value layout if it does not exist."""
        ws = self._find_worksheet(STATUS_SHEET)
        if ws is None:
            ws = self.spreadsheet.add_worksheet(title=STATUS_SHEET, rows=len(STATUS_TEMPLATE), cols=2)
            ws.update(range_name="A1:B26", values=STATUS_TEMPLATE, value_input_option="RAW")
            print("  Created Status sheet with structure", flush=True)
        return ws

    def update_status_sheet(self, summary: Dict[str, Any], run_mode: str, next_run: str) -> None:
        ws = self.ensure_status_sheet()
        ws.update(
            range_name=STATUS_VALUES_RANGE,
            values=build_status_values(summary, run_mode, next_run),
            value_input_option="RAW",
        )
        print("  Updated Status sheet with latest run information", flush=True)
