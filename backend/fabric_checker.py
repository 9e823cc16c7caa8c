#!/usr/bin/env python3
"""
Fabric Stock Checker

Reads fabric rows from the inventory spreadsheet, looks each one up on its
supplier portal and writes the ETA back:
- backorder  -> ETA text in column J, row listed on the Backorder sheet
- available  -> column J cleared
- not found  -> "Not Found"
- error      -> "Error" (classified as navigation or timeout)

Runs once (--once, GitHub Actions) or as a long-lived process with a daily
schedule and an HTTP endpoint for manual runs.

Credentials and spreadsheet settings are read from backend/.env.
"""

import argparse
import signal
import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

import config
from fabric_scraper import (
    ERROR_TIMEOUT,
    FabricResult,
    FabricScraper,
    LoginError,
    StockStatus,
    classify_error,
)
from sheets_service import (
    BackorderEntry,
    FabricRecord,
    GoogleSheetsService,
    backorder_entry_for,
)
from suppliers import SUPPLIER_CONFIGS, get_supplier_config, supplier_for_sheet_value


# =============================================================================
# Configuration
# =============================================================================

NOT_FOUND_VALUE = "Not Found"
ERROR_VALUE = "Error"

STATUS_SUCCESS = "SUCCESS"
STATUS_PARTIAL = "PARTIAL"
STATUS_FAILED = "FAILED"

SCHEDULED_JOB_ID = "fabric-stock-check"


class RunInProgressError(Exception):
    """A stock check is already running."""


# =============================================================================
# Statistics & Reporting Types
# =============================================================================

class AlertType(Enum):
    """Events worth listing in the end-of-run report."""
    LOGIN_FAILED = "login_failed"
    NAVIGATION_ERROR = "navigation_error"
    TIMEOUT_ERROR = "timeout_error"
    NEW_NOT_FOUND = "new_not_found"


class AlertSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


ALERT_SEVERITY = {
    AlertType.LOGIN_FAILED: AlertSeverity.CRITICAL,
    AlertType.NAVIGATION_ERROR: AlertSeverity.WARNING,
    AlertType.TIMEOUT_ERROR: AlertSeverity.WARNING,
    AlertType.NEW_NOT_FOUND: AlertSeverity.INFO,
}


@dataclass
class Alert:
    """Individual alert record."""
    alert_type: AlertType
    severity: AlertSeverity
    supplier: Optional[str] = None
    row_index: Optional[int] = None
    fabric: Optional[str] = None
    message: str = ""


class StatsTracker:
    """
    Track run statistics for the Status sheet and the console report.
    """

    def __init__(self):
        self.started_at = datetime.now()
        self.completed_at: Optional[datetime] = None

        # Counters
        self.total_processed = 0
        self.available_count = 0
        self.eta_count = 0
        self.not_found_count = 0
        self.error_count = 0
        self.navigation_errors = 0
        self.timeout_errors = 0
        self.new_not_found = 0
        self.moved_to_available = 0
        self.moved_to_backorder = 0

        # supplier key -> login succeeded
        self.logins: Dict[str, bool] = {}
        self.run_failed = False

        self.alerts: List[Alert] = []

    def record_login(self, supplier: str, success: bool, error_msg: str = "") -> None:
        self.logins[supplier] = success
        if not success:
            self.alerts.append(Alert(
                alert_type=AlertType.LOGIN_FAILED,
                severity=ALERT_SEVERITY[AlertType.LOGIN_FAILED],
                supplier=supplier,
                message=f"Login failed for {supplier}: {error_msg}",
            ))

    def record_result(self, fabric: FabricRecord, result: FabricResult) -> None:
        """Count one successfully looked-up fabric."""
        self.total_processed += 1
        if result.status == StockStatus.AVAILABLE:
            self.available_count += 1
        elif result.status == StockStatus.BACKORDER:
            self.eta_count += 1
        else:
            self.not_found_count += 1
            if fabric.current_eta.strip() != NOT_FOUND_VALUE:
                self.new_not_found += 1
                self.alerts.append(Alert(
                    alert_type=AlertType.NEW_NOT_FOUND,
                    severity=ALERT_SEVERITY[AlertType.NEW_NOT_FOUND],
                    supplier=fabric.supplier,
                    row_index=fabric.row_index,
                    fabric=fabric.label,
                    message=f"Newly not found: {fabric.label}",
                ))

    def record_failure(self, fabric: FabricRecord, error_type: str, error_msg: str) -> None:
        """Count a per-record error in its navigation/timeout bucket."""
        self.total_processed += 1
        self.error_count += 1
        if error_type == ERROR_TIMEOUT:
            self.timeout_errors += 1
            alert_type = AlertType.TIMEOUT_ERROR
        else:
            self.navigation_errors += 1
            alert_type = AlertType.NAVIGATION_ERROR
        self.alerts.append(Alert(
            alert_type=alert_type,
            severity=ALERT_SEVERITY[alert_type],
            supplier=fabric.supplier,
            row_index=fabric.row_index,
            fabric=fabric.label,
            message=f"[{error_type}] row {fabric.row_index} {fabric.label}: {error_msg[:200]}",
        ))

    @property
    def login_success(self) -> bool:
        return bool(self.logins) and all(self.logins.values())

    def overall_status(self) -> str:
        if self.run_failed:
            return STATUS_FAILED
        if self.logins and not any(self.logins.values()):
            return STATUS_FAILED
        if self.error_count or not all(self.logins.values()):
            return STATUS_PARTIAL
        return STATUS_SUCCESS

    def finish(self) -> None:
        self.completed_at = datetime.now()

    @property
    def duration(self) -> timedelta:
        end = self.completed_at or datetime.now()
        return end - self.started_at

    def to_status_summary(self) -> Dict:
        """Values for the Status sheet."""
        return {
            'overall_status': self.overall_status(),
            'duration_minutes': round(self.duration.total_seconds() / 60, 2),
            'total_processed': self.total_processed,
            'available_count': self.available_count,
            'eta_count': self.eta_count,
            'not_found_count': self.not_found_count,
            'error_count': self.error_count,
            'login_success': self.login_success,
            'navigation_errors': self.navigation_errors,
            'timeout_errors': self.timeout_errors,
            'moved_to_available': self.moved_to_available,
            'moved_to_backorder': self.moved_to_backorder,
            'new_not_found': self.new_not_found,
        }

    def get_alerts_by_type(self, alert_type: AlertType) -> List[Alert]:
        return [a for a in self.alerts if a.alert_type == alert_type]

    def print_report(self):
        """Print the final run statistics report to console."""
        duration_str = str(timedelta(seconds=int(self.duration.total_seconds())))

        print("\n" + "=" * 60, flush=True)
        print("FABRIC STOCK CHECK REPORT", flush=True)
        print("=" * 60, flush=True)
        print(f"\nRun Duration: {duration_str}", flush=True)
        print(f"Status:       {self.overall_status()}", flush=True)

        print("\n--- SUPPLIERS ---", flush=True)
        for supplier, ok in self.logins.items():
            print(f"  {supplier:<20} {'logged in' if ok else 'LOGIN FAILED'}", flush=True)

        print("\n--- RESULTS ---", flush=True)
        print(f"  Processed:     {self.total_processed:>6}", flush=True)
        print(f"  Available:     {self.available_count:>6}", flush=True)
        print(f"  With ETA:      {self.eta_count:>6}", flush=True)
        print(f"  Not found:     {self.not_found_count:>6}", flush=True)
        print(f"  Errors:        {self.error_count:>6}  "
              f"(navigation {self.navigation_errors}, timeout {self.timeout_errors})", flush=True)

        print("\n--- BACKORDER CHANGES ---", flush=True)
        print(f"  To backorder:  {self.moved_to_backorder:>6}", flush=True)
        print(f"  To available:  {self.moved_to_available:>6}", flush=True)
        print(f"  New not found: {self.new_not_found:>6}", flush=True)

        problems = [a for a in self.alerts if a.severity != AlertSeverity.INFO]
        if problems:
            print("\n--- PROBLEMS ---", flush=True)
            for alert in problems[:20]:
                print(f"  {alert.message}", flush=True)
            if len(problems) > 20:
                print(f"  ... ({len(problems)} total)", flush=True)

        print("=" * 60, flush=True)


# =============================================================================
# Mapping Rules
# =============================================================================

def eta_cell_value(result: FabricResult) -> str:
    """Value written to the Fabrics ETA column for a lookup result."""
    if result.status == StockStatus.BACKORDER:
        return result.eta or ""
    if result.status == StockStatus.AVAILABLE:
        return ""
    return NOT_FOUND_VALUE


def group_by_supplier(fabrics: Iterable[FabricRecord],
                      suppliers: Optional[Iterable[str]] = None,
                      max_items: Optional[int] = None) -> Dict[str, List[FabricRecord]]:
    """
    Batch fabric rows per configured supplier, in SUPPLIER_CONFIGS order.

    Rows for unconfigured suppliers are ignored. `suppliers` limits the
    batches to the given keys; `max_items` caps each batch.
    """
    wanted = {s.strip().lower() for s in suppliers} if suppliers else None
    batches: Dict[str, List[FabricRecord]] = {key: [] for key in SUPPLIER_CONFIGS}
    for fabric in fabrics:
        key = supplier_for_sheet_value(fabric.supplier)
        if key is None or (wanted is not None and key not in wanted):
            continue
        batches[key].append(fabric)

    if max_items:
        batches = {key: rows[:max_items] for key, rows in batches.items()}
    return {key: rows for key, rows in batches.items() if rows}


def merge_backorder_snapshot(previous: List[BackorderEntry],
                             current: List[BackorderEntry],
                             resolved_keys: Set[tuple],
                             available_keys: Set[tuple],
                             existing_keys: Optional[Set[tuple]] = None) -> Tuple[List[BackorderEntry], int, int]:
    """
    Combine the previous Backorder snapshot with this run's findings.

    - rows looked up this run (`resolved_keys`) take their new state: kept
      with fresh ETA if still on backorder, dropped otherwise
    - rows not looked up (login failure, errors, filtered out) keep their
      previous entry
    - entries whose fabric is no longer in the Fabrics sheet for a
      configured supplier (`existing_keys`) are dropped

    Returns (entries, moved_to_available, moved_to_backorder).
    """
    current_by_key = {entry.key(): entry for entry in current}
    previous_keys = {entry.key() for entry in previous}

    merged: List[BackorderEntry] = []
    seen: Set[tuple] = set()
    for entry in previous:
        key = entry.key()
        if key in seen:
            continue
        if key in current_by_key:
            merged.append(current_by_key[key])
            seen.add(key)
        elif key not in resolved_keys and (existing_keys is None or key in existing_keys):
            merged.append(entry)
            seen.add(key)

    for key, entry in current_by_key.items():
        if key not in seen:
            merged.append(entry)
            seen.add(key)

    moved_to_backorder = len([key for key in current_by_key if key not in previous_keys])
    moved_to_available = len([key for key in previous_keys if key in available_keys])
    return merged, moved_to_available, moved_to_backorder


def describe_next_run(run_mode: str, cron: Optional[str] = None, tz=None,
                      now: Optional[datetime] = None) -> str:
    """Human-readable "Next Scheduled Run" for the Status sheet."""
    if run_mode == config.RUN_MODE_DEVELOPMENT:
        return "Development Mode - Manual runs only"
    if run_mode == config.RUN_MODE_GITHUB_ACTIONS:
        return "GitHub Actions - scheduled workflow"

    tz = tz or config.get_timezone()
    trigger = CronTrigger.from_crontab(cron or config.get_cron_schedule(), timezone=tz)
    next_fire = trigger.get_next_fire_time(None, now or datetime.now(tz))
    if next_fire is None:
        return "Not scheduled"
    return next_fire.strftime("%Y-%m-%d %I:%M %p %Z")


# =============================================================================
# Checker
# =============================================================================

class FabricStockChecker:
    """
    Runs stock checks: spreadsheet -> supplier portals -> spreadsheet.

    Only one check runs at a time; a second caller gets RunInProgressError.
    """

    def __init__(self, sheets: Optional[GoogleSheetsService] = None,
                 scraper_factory: Callable[[], FabricScraper] = FabricScraper,
                 request_delay: Optional[float] = None):
        self.sheets = sheets or GoogleSheetsService()
        self.scraper_factory = scraper_factory
        self.request_delay = request_delay
        self.last_run_time: Optional[str] = None
        self.last_status: Optional[str] = None
        self._run_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def initialize(self) -> None:
        """Connect to the spreadsheet and provision the report tabs."""
        self.sheets.initialize()
        self.sheets.ensure_backorder_sheet()
        self.sheets.ensure_status_sheet()
        print("Fabric Stock Checker initialized", flush=True)

    def check_fabric_stock(self, suppliers: Optional[Iterable[str]] = None,
                           max_items: Optional[int] = None) -> StatsTracker:
        """Run one full stock check. Raises RunInProgressError if one is running."""
        if not self._run_lock.acquire(blocking=False):
            raise RunInProgressError("A fabric stock check is already running")
        try:
            return self._run(suppliers, max_items)
        finally:
            self._run_lock.release()

    def run_scheduled(self) -> None:
        """Scheduler job: failures are logged, never raised into the scheduler."""
        try:
            self.check_fabric_stock()
        except RunInProgressError:
            print("Scheduled run skipped: a run is already in progress", flush=True)
        except Exception as e:
            print(f"Scheduled run failed: {e}", flush=True)

    def _run(self, suppliers: Optional[Iterable[str]], max_items: Optional[int]) -> StatsTracker:
        stats = StatsTracker()
        run_mode = config.get_run_mode()
        delay = self.request_delay if self.request_delay is not None else config.get_request_delay()

        print("=" * 60, flush=True)
        print("Fabric Stock Check", flush=True)
        print(f"Started at: {stats.started_at.strftime('%Y-%m-%d %H:%M:%S')}", flush=True)
        print("=" * 60, flush=True)

        try:
            fabrics = self.sheets.get_fabric_data()
            batches = group_by_supplier(fabrics, suppliers, max_items)
            total = sum(len(rows) for rows in batches.values())
            print(f"Found {total} fabrics to check across {len(batches)} supplier(s)", flush=True)

            existing_keys = {f.key() for f in fabrics if supplier_for_sheet_value(f.supplier)}
            previous_snapshot = self.sheets.get_backorder_entries()
            current_snapshot: List[BackorderEntry] = []
            resolved_keys: Set[tuple] = set()
            available_keys: Set[tuple] = set()

            if total == 0:
                print("No supplier fabrics found to check", flush=True)
            else:
                self._check_batches(batches, stats, delay, current_snapshot, resolved_keys, available_keys)

            print("\nSyncing Backorder sheet...", flush=True)
            entries, moved_to_available, moved_to_backorder = merge_backorder_snapshot(
                previous_snapshot, current_snapshot, resolved_keys, available_keys, existing_keys
            )
            stats.moved_to_available = moved_to_available
            stats.moved_to_backorder = moved_to_backorder
            self.sheets.write_backorder_snapshot(entries)

        except Exception as e:
            print(f"Error during fabric stock check: {e}", flush=True)
            stats.run_failed = True
            stats.finish()
            self._record_last_run(stats)
            self._write_status(stats, run_mode)
            stats.print_report()
            raise

        stats.finish()
        self._record_last_run(stats)
        self._write_status(stats, run_mode)
        stats.print_report()
        return stats

    def _check_batches(self, batches: Dict[str, List[FabricRecord]], stats: StatsTracker, delay: float,
                       current_snapshot: List[BackorderEntry], resolved_keys: Set[tuple],
                       available_keys: Set[tuple]) -> None:
        """Log into each supplier and look up its fabrics; the browser is always closed."""
        timestamp = datetime.now(config.get_timezone()).isoformat(timespec='seconds')

        scraper = self.scraper_factory()
        try:
            scraper.initialize()
            for key, rows in batches.items():
                supplier = get_supplier_config(key)
                print(f"\n--- {supplier.name}: {len(rows)} fabrics ---", flush=True)
                try:
                    scraper.login(supplier)
                    stats.record_login(key, True)
                except LoginError as e:
                    print(f"  [LOGIN-FAILED] {e}", flush=True)
                    stats.record_login(key, False, str(e))
                    continue

                for i, fabric in enumerate(rows, 1):
                    print(f"\n  [{i}/{len(rows)}] Row {fabric.row_index}: {fabric.label}", flush=True)
                    result = self._process_fabric(scraper, supplier, fabric, stats)
                    if result is not None:
                        resolved_keys.add(fabric.key())
                        if result.status == StockStatus.BACKORDER:
                            current_snapshot.append(backorder_entry_for(fabric, result.eta, timestamp))
                        elif result.status == StockStatus.AVAILABLE:
                            available_keys.add(fabric.key())

                    if i < len(rows):
                        time.sleep(delay)
        finally:
            scraper.close()

    def _process_fabric(self, scraper: FabricScraper, supplier, fabric: FabricRecord,
                        stats: StatsTracker) -> Optional[FabricResult]:
        """Look up one fabric and write its ETA cell. Returns None on error."""
        try:
            result = scraper.search_fabric(supplier, fabric)
            self.sheets.update_fabric_eta(fabric.row_index, eta_cell_value(result))
        except Exception as e:
            error_type = classify_error(e)
            tag = "[TIMEOUT]" if error_type == ERROR_TIMEOUT else "[NAV-ERROR]"
            print(f"    {tag} {fabric.label}: {str(e)[:200]}", flush=True)
            stats.record_failure(fabric, error_type, str(e))
            try:
                self.sheets.update_fabric_eta(fabric.row_index, ERROR_VALUE)
            except Exception as write_error:
                print(f"    Could not mark row {fabric.row_index} as {ERROR_VALUE}: {write_error}", flush=True)
            return None

        stats.record_result(fabric, result)
        return result

    def _record_last_run(self, stats: StatsTracker) -> None:
        self.last_run_time = (stats.completed_at or datetime.now()).isoformat(timespec='seconds')
        self.last_status = stats.overall_status()

    def _write_status(self, stats: StatsTracker, run_mode: str) -> None:
        try:
            self.sheets.update_status_sheet(stats.to_status_summary(), run_mode, describe_next_run(run_mode))
        except Exception as e:
            print(f"  Note: Could not update Status sheet: {e}", flush=True)


# =============================================================================
# Scheduler
# =============================================================================

def create_scheduler(checker: FabricStockChecker, cron: Optional[str] = None, tz=None) -> BackgroundScheduler:
    """Background scheduler running the daily stock check."""
    tz = tz or config.get_timezone()
    scheduler = BackgroundScheduler(timezone=tz)
    scheduler.add_job(
        checker.run_scheduled,
        CronTrigger.from_crontab(cron or config.get_cron_schedule(), timezone=tz),
        id=SCHEDULED_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


# =============================================================================
# Main
# =============================================================================

def run_once(checker: FabricStockChecker, suppliers: Optional[List[str]], max_items: Optional[int]) -> int:
    """Single run; exit code 1 if the run failed."""
    try:
        stats = checker.check_fabric_stock(suppliers, max_items)
    except Exception as e:
        print(f"Run failed: {e}", flush=True)
        return 1
    return 1 if stats.overall_status() == STATUS_FAILED else 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Fabric Stock Checker - supplier ETA sync to Google Sheets'
    )
    parser.add_argument('--once', action='store_true',
                        help='Run a single stock check and exit')
    parser.add_argument('--supplier', action='append', choices=sorted(SUPPLIER_CONFIGS.keys()),
                        help='Only check this supplier (repeatable)')
    parser.add_argument('--max-items', type=int, default=None,
                        help='Maximum fabrics per supplier (for testing)')
    parser.add_argument('--no-server', action='store_true',
                        help='Do not start the HTTP server')
    args = parser.parse_args(argv)

    from api.services.checker import checker

    run_mode = config.get_run_mode()
    print("=" * 60, flush=True)
    print("Fabric Stock Checker", flush=True)
    print(f"Mode: {run_mode}", flush=True)
    print("=" * 60, flush=True)

    try:
        tz = config.get_timezone()
        port = config.get_port()
        checker.initialize()
    except Exception as e:
        print(f"Failed to start Fabric Stock Checker: {e}", flush=True)
        return 1

    if args.once or run_mode == config.RUN_MODE_GITHUB_ACTIONS:
        return run_once(checker, args.supplier, args.max_items)

    scheduler = None
    if run_mode == config.RUN_MODE_DEVELOPMENT:
        print("Running in development mode - executing once", flush=True)
        if run_once(checker, args.supplier, args.max_items) != 0:
            return 1
    else:
        try:
            scheduler = create_scheduler(checker, tz=tz)
        except ValueError as e:
            print(f"Invalid CRON_SCHEDULE: {e}", flush=True)
            return 1
        scheduler.start()
        print(f"Scheduled fabric stock check: {describe_next_run(run_mode, tz=tz)} "
              f"({config.get_timezone_name()})", flush=True)

    try:
        if args.no_server:
            if scheduler is None:
                return 0
            stop = threading.Event()
            for sig in (signal.SIGTERM, signal.SIGINT):
                signal.signal(sig, lambda signum, frame: stop.set())
            stop.wait()
            print("Received shutdown signal, shutting down gracefully", flush=True)
        else:
            import uvicorn
            from api.main import app

            print(f"Server running on port {port}", flush=True)
            uvicorn.run(app, host="0.0.0.0", port=port)
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)

    return 0


if __name__ == "__main__":
    sys.exit(main())
