"""
Tests for the stock check orchestration.

Covers ETA mapping, supplier batching, Backorder snapshot merging, run
statistics, and full runs against mocked sheets and scraper.
"""
import pytest
from datetime import datetime
from unittest.mock import MagicMock, call, patch
from zoneinfo import ZoneInfo


class TestEtaCellValue:
    """Lookup result -> Fabrics column J."""

    def test_backorder_writes_eta(self):
        from fabric_checker import eta_cell_value
        from fabric_scraper import FabricResult

        assert eta_cell_value(FabricResult.from_eta("03/15/2026")) == "03/15/2026"

    def test_available_clears_cell(self):
        from fabric_checker import eta_cell_value
        from fabric_scraper import FabricResult

        assert eta_cell_value(FabricResult.from_eta(None)) == ""

    def test_not_found(self):
        from fabric_checker import eta_cell_value
        from fabric_scraper import FabricResult

        assert eta_cell_value(FabricResult.not_found()) == "Not Found"


class TestGroupBySupplier:
    """Batching fabric rows per configured supplier."""

    def test_groups_and_ignores_unknown(self, fabric_records):
        from fabric_checker import group_by_supplier

        batches = group_by_supplier(fabric_records)

        assert list(batches.keys()) == ["unique", "alendel"]
        assert [r.row_index for r in batches["unique"]] == [2, 3]
        assert [r.row_index for r in batches["alendel"]] == [4]

    def test_supplier_filter(self, fabric_records):
        from fabric_checker import group_by_supplier

        batches = group_by_supplier(fabric_records, suppliers=["Alendel"])
        assert list(batches.keys()) == ["alendel"]

    def test_max_items(self, fabric_records):
        from fabric_checker import group_by_supplier

        batches = group_by_supplier(fabric_records, max_items=1)
        assert [r.row_index for r in batches["unique"]] == [2]

    def test_empty(self):
        from fabric_checker import group_by_supplier

        assert group_by_supplier([]) == {}


class TestMergeBackorderSnapshot:
    """Backorder sheet synchronization."""

    def _entry(self, color, eta="Out of Stock", timestamp="old"):
        from sheets_service import BackorderEntry
        return BackorderEntry(timestamp, "Unique", "Loft", "Loft", color, eta, ["54", "", "", ""])

    def test_new_backorder_added(self):
        from fabric_checker import merge_backorder_snapshot

        current = [self._entry("Navy", timestamp="new")]
        entries, to_available, to_backorder = merge_backorder_snapshot(
            [], current, {current[0].key()}, set()
        )

        assert entries == current
        assert (to_available, to_backorder) == (0, 1)

    def test_still_on_backorder_refreshed_in_place(self):
        from fabric_checker import merge_backorder_snapshot

        previous = [self._entry("Navy"), self._entry("Charcoal")]
        current = [self._entry("Navy", eta="04/01/2026", timestamp="new")]
        resolved = {previous[0].key(), previous[1].key()}

        entries, to_available, to_backorder = merge_backorder_snapshot(
            previous, current, resolved, {previous[1].key()}
        )

        assert [e.color for e in entries] == ["Navy"]
        assert entries[0].eta == "04/01/2026"
        assert (to_available, to_backorder) == (1, 0)

    def test_unresolved_entries_kept(self):
        """Rows not looked up this run (login failure, errors) stay listed."""
        from fabric_checker import merge_backorder_snapshot

        previous = [self._entry("Navy"), self._entry("Charcoal")]
        entries, to_available, to_backorder = merge_backorder_snapshot(previous, [], set(), set())

        assert entries == previous
        assert (to_available, to_backorder) == (0, 0)

    def test_not_found_drops_entry_without_counting_available(self):
        from fabric_checker import merge_backorder_snapshot

        previous = [self._entry("Navy")]
        entries, to_available, _ = merge_backorder_snapshot(previous, [], {previous[0].key()}, set())

        assert entries == []
        assert to_available == 0

    def test_duplicate_previous_rows_collapsed(self):
        from fabric_checker import merge_backorder_snapshot

        previous = [self._entry("Navy"), self._entry("navy")]
        entries, _, _ = merge_backorder_snapshot(previous, [], set(), set())
        assert len(entries) == 1

    def test_entries_for_removed_fabrics_dropped(self):
        """Fabrics gone from the Fabrics sheet leave the snapshot even if not looked up."""
        from fabric_checker import merge_backorder_snapshot

        previous = [self._entry("Navy"), self._entry("Discontinued")]
        existing = {previous[0].key()}

        entries, to_available, _ = merge_backorder_snapshot(previous, [], set(), set(), existing)

        assert [e.color for e in entries] == ["Navy"]
        assert to_available == 0


class TestStatsTracker:
    """Run statistics and overall status."""

    def test_record_results(self, make_fabric):
        from fabric_checker import StatsTracker
        from fabric_scraper import FabricResult

        stats = StatsTracker()
        stats.record_result(make_fabric(), FabricResult.from_eta(None))
        stats.record_result(make_fabric(), FabricResult.from_eta("03/15"))
        stats.record_result(make_fabric(current_eta="Not Found"), FabricResult.not_found())
        stats.record_result(make_fabric(current_eta="03/01"), FabricResult.not_found())

        assert stats.total_processed == 4
        assert stats.available_count == 1
        assert stats.eta_count == 1
        assert stats.not_found_count == 2
        assert stats.new_not_found == 1

    def test_record_failure_buckets(self, make_fabric):
        from fabric_checker import StatsTracker
        from fabric_scraper import ERROR_NAVIGATION, ERROR_TIMEOUT

        stats = StatsTracker()
        stats.record_failure(make_fabric(), ERROR_TIMEOUT, "Timeout 30000ms exceeded")
        stats.record_failure(make_fabric(), ERROR_NAVIGATION, "element detached")

        assert stats.error_count == 2
        assert stats.timeout_errors == 1
        assert stats.navigation_errors == 1
        assert stats.total_processed == 2

    def test_overall_status_success(self):
        from fabric_checker import StatsTracker

        stats = StatsTracker()
        stats.record_login("unique", True)
        assert stats.overall_status() == "SUCCESS"
        assert stats.login_success

    def test_overall_status_partial(self, make_fabric):
        from fabric_checker import StatsTracker

        stats = StatsTracker()
        stats.record_login("unique", True)
        stats.record_login("alendel", False, "bad password")
        assert stats.overall_status() == "PARTIAL"
        assert not stats.login_success

        stats = StatsTracker()
        stats.record_login("unique", True)
        stats.record_failure(make_fabric(), "navigation", "boom")
        assert stats.overall_status() == "PARTIAL"

    def test_overall_status_failed(self):
        from fabric_checker import StatsTracker

        stats = StatsTracker()
        stats.record_login("unique", False, "bad password")
        assert stats.overall_status() == "FAILED"

        stats = StatsTracker()
        stats.run_failed = True
        assert stats.overall_status() == "FAILED"

    def test_status_summary_keys(self):
        from fabric_checker import StatsTracker

        stats = StatsTracker()
        stats.finish()
        summary = stats.to_status_summary()

        assert summary['overall_status'] == "SUCCESS"
        assert summary['duration_minutes'] >= 0
        assert summary['login_success'] is False

    def test_print_report(self, make_fabric, capsys):
        from fabric_checker import StatsTracker

        stats = StatsTracker()
        stats.record_login("alendel", False, "bad password")
        stats.finish()
        stats.print_report()

        out = capsys.readouterr().out
        assert "FABRIC STOCK CHECK REPORT" in out
        assert "LOGIN FAILED" in out
        assert "Login failed for alendel: bad password" in out


class TestDescribeNextRun:
    """Status sheet "Next Scheduled Run" text."""

    def test_development(self):
        from fabric_checker import describe_next_run

        assert describe_next_run("development") == "Development Mode - Manual runs only"

    def test_github_actions(self):
        from fabric_checker import describe_next_run

        assert describe_next_run("github_actions").startswith("GitHub Actions")

    def test_production_uses_cron(self):
        from fabric_checker import describe_next_run

        tz = ZoneInfo("America/New_York")
        now = datetime(2026, 10, 19, 12, 0, tzinfo=tz)

        assert describe_next_run("production", "0 1 * * *", tz, now).startswith("2026-10-20 01:00 AM")

    def test_invalid_cron(self):
        from fabric_checker import describe_next_run

        with pytest.raises(ValueError):
            describe_next_run("production", "not a cron", ZoneInfo("UTC"))


class TestFabricStockChecker:
    """Full runs against mocked sheets and scraper."""

    @pytest.fixture
    def fabrics(self, make_fabric):
        return [
            make_fabric(row_index=2, pattern="Aria", color="Ivory"),
            make_fabric(row_index=3, pattern="Aria", color="White"),
            make_fabric(row_index=4, pattern="Aria", color="Navy", current_eta="03/01"),
            make_fabric(row_index=5, pattern="Aria", color="Black"),
        ]

    def test_run_writes_eta_values(self, checker, mock_sheets, mock_scraper, fabrics):
        from fabric_scraper import FabricResult, PlaywrightTimeoutError

        mock_sheets.get_fabric_data.return_value = fabrics
        mock_scraper.search_fabric.side_effect = [
            FabricResult.from_eta("03/15/2026"),
            FabricResult.from_eta(None),
            FabricResult.not_found(),
            PlaywrightTimeoutError("Timeout 30000ms exceeded"),
        ]

        stats = checker.check_fabric_stock()

        assert mock_sheets.update_fabric_eta.call_args_list == [
            call(2, "03/15/2026"),
            call(3, ""),
            call(4, "Not Found"),
            call(5, "Error"),
        ]
        assert stats.total_processed == 4
        assert stats.timeout_errors == 1
        assert stats.new_not_found == 1
        assert stats.overall_status() == "PARTIAL"
        mock_scraper.initialize.assert_called_once()
        mock_scraper.close.assert_called_once()

    def test_run_syncs_backorder_snapshot(self, checker, mock_sheets, mock_scraper, fabrics):
        from fabric_scraper import FabricResult
        from sheets_service import backorder_entry_for

        mock_sheets.get_fabric_data.return_value = fabrics[:2]
        mock_sheets.get_backorder_entries.return_value = [
            backorder_entry_for(fabrics[1], "Out of Stock", "old"),
        ]
        mock_scraper.search_fabric.side_effect = [
            FabricResult.from_eta("03/15/2026"),
            FabricResult.from_eta(None),
        ]

        stats = checker.check_fabric_stock()

        entries = mock_sheets.write_backorder_snapshot.call_args.args[0]
        assert [(e.color, e.eta) for e in entries] == [("Ivory", "03/15/2026")]
        assert stats.moved_to_backorder == 1
        assert stats.moved_to_available == 1

    def test_login_failure_skips_supplier(self, checker, mock_sheets, mock_scraper, fabrics):
        from fabric_scraper import LoginError
        from sheets_service import backorder_entry_for

        previous = [backorder_entry_for(fabrics[0], "Out of Stock", "old")]
        mock_sheets.get_fabric_data.return_value = fabrics
        mock_sheets.get_backorder_entries.return_value = previous
        mock_scraper.login.side_effect = LoginError("bad password")

        stats = checker.check_fabric_stock()

        mock_scraper.search_fabric.assert_not_called()
        mock_sheets.update_fabric_eta.assert_not_called()
        mock_sheets.write_backorder_snapshot.assert_called_once_with(previous)
        assert stats.overall_status() == "FAILED"
        mock_scraper.close.assert_called_once()

    def test_no_fabrics_skips_browser(self, checker, mock_sheets, mock_scraper):
        stats = checker.check_fabric_stock()

        mock_scraper.initialize.assert_not_called()
        assert stats.total_processed == 0
        assert checker.last_status == "SUCCESS"

    def test_empty_run_updates_status_and_snapshot(self, checker, mock_sheets, mock_scraper, make_fabric):
        """No configured-supplier rows still refreshes Status and drops stale Backorder rows."""
        from sheets_service import backorder_entry_for

        mock_sheets.get_fabric_data.return_value = [make_fabric(supplier="Other Mill")]
        mock_sheets.get_backorder_entries.return_value = [
            backorder_entry_for(make_fabric(color="Discontinued"), "Out of Stock", "old"),
        ]

        checker.check_fabric_stock()

        mock_scraper.initialize.assert_not_called()
        mock_sheets.update_status_sheet.assert_called_once()
        mock_sheets.write_backorder_snapshot.assert_called_once_with([])

    def test_removed_fabric_leaves_backorder_sheet(self, checker, mock_sheets, mock_scraper, make_fabric):
        from fabric_scraper import FabricResult
        from sheets_service import backorder_entry_for

        mock_sheets.get_fabric_data.return_value = [make_fabric(color="Ivory")]
        mock_sheets.get_backorder_entries.return_value = [
            backorder_entry_for(make_fabric(color="Discontinued"), "Out of Stock", "old"),
        ]
        mock_scraper.search_fabric.return_value = FabricResult.from_eta(None)

        checker.check_fabric_stock()

        mock_sheets.write_backorder_snapshot.assert_called_once_with([])

    def test_error_write_failure_does_not_abort_run(self, checker, mock_sheets, mock_scraper, fabrics):
        """A Sheets error on one row is counted and the next row is still checked."""
        from fabric_scraper import FabricResult

        def update_fabric_eta(row_index, value):
            if row_index == 2:
                raise RuntimeError("APIError: [429] Quota exceeded")

        mock_sheets.get_fabric_data.return_value = fabrics[:2]
        mock_sheets.update_fabric_eta.side_effect = update_fabric_eta
        mock_scraper.search_fabric.return_value = FabricResult.from_eta(None)

        stats = checker.check_fabric_stock()

        assert mock_scraper.search_fabric.call_count == 2
        assert stats.error_count == 1
        assert stats.available_count == 1
        assert mock_sheets.update_fabric_eta.call_args_list[-1] == call(3, "")
        mock_sheets.write_backorder_snapshot.assert_called_once()

    def test_status_sheet_updated(self, checker, mock_sheets, mock_scraper, fabrics):
        from fabric_scraper import FabricResult

        mock_sheets.get_fabric_data.return_value = fabrics[:1]
        mock_scraper.search_fabric.return_value = FabricResult.from_eta(None)

        checker.check_fabric_stock()

        summary, run_mode, next_run = mock_sheets.update_status_sheet.call_args.args
        assert summary['available_count'] == 1
        assert run_mode == "production"
        assert next_run
        assert checker.last_run_time is not None

    def test_browser_failure_marks_run_failed(self, checker, mock_sheets, mock_scraper, fabrics):
        mock_sheets.get_fabric_data.return_value = fabrics
        mock_scraper.initialize.side_effect = RuntimeError("Executable doesn't exist")

        with pytest.raises(RuntimeError):
            checker.check_fabric_stock()

        mock_scraper.close.assert_called_once()
        mock_sheets.write_backorder_snapshot.assert_not_called()
        summary = mock_sheets.update_status_sheet.call_args.args[0]
        assert summary['overall_status'] == "FAILED"
        assert checker.last_status == "FAILED"
        assert not checker.is_running

    def test_status_write_failure_does_not_fail_run(self, checker, mock_sheets, mock_scraper, fabrics):
        from fabric_scraper import FabricResult

        mock_sheets.get_fabric_data.return_value = fabrics[:1]
        mock_scraper.search_fabric.return_value = FabricResult.from_eta(None)
        mock_sheets.update_status_sheet.side_effect = RuntimeError("quota exceeded")

        stats = checker.check_fabric_stock()

        mock_sheets.update_status_sheet.assert_called_once()
        assert stats.overall_status() == "SUCCESS"

    def test_concurrent_run_rejected(self, checker):
        from fabric_checker import RunInProgressError

        checker._run_lock.acquire()
        try:
            assert checker.is_running
            with pytest.raises(RunInProgressError):
                checker.check_fabric_stock()
        finally:
            checker._run_lock.release()

    def test_run_scheduled_swallows_errors(self, checker, mock_sheets):
        mock_sheets.get_fabric_data.side_effect = RuntimeError("sheet unavailable")

        checker.run_scheduled()

        assert checker.last_status == "FAILED"

    def test_delay_between_records(self, checker, mock_sheets, mock_scraper, fabrics):
        from fabric_scraper import FabricResult

        mock_sheets.get_fabric_data.return_value = fabrics[:3]
        mock_scraper.search_fabric.return_value = FabricResult.from_eta(None)

        with patch('fabric_checker.time.sleep') as sleep:
            checker.check_fabric_stock()

        assert sleep.call_count == 2

    def test_initialize_provisions_tabs(self, checker, mock_sheets):
        checker.initialize()

        mock_sheets.initialize.assert_called_once()
        mock_sheets.ensure_backorder_sheet.assert_called_once()
        mock_sheets.ensure_status_sheet.assert_called_once()


class TestEntryPoint:
    """Scheduler and command line."""

    def test_create_scheduler(self, checker):
        from fabric_checker import SCHEDULED_JOB_ID, create_scheduler

        scheduler = create_scheduler(checker, "0 1 * * *", ZoneInfo("America/New_York"))

        job = scheduler.get_job(SCHEDULED_JOB_ID)
        assert job is not None
        assert job.max_instances == 1

    def test_run_once_exit_codes(self):
        from fabric_checker import StatsTracker, run_once

        checker = MagicMock()
        checker.check_fabric_stock.return_value = StatsTracker()
        assert run_once(checker, None, None) == 0

        checker.check_fabric_stock.side_effect = RuntimeError("boom")
        assert run_once(checker, None, None) == 1

    def test_main_once(self):
        from fabric_checker import StatsTracker, main

        checker = MagicMock()
        checker.check_fabric_stock.return_value = StatsTracker()
        with patch('api.services.checker.checker', checker):
            assert main(['--once', '--supplier', 'alendel', '--max-items', '5']) == 0

        checker.initialize.assert_called_once()
        checker.check_fabric_stock.assert_called_once_with(['alendel'], 5)

    def test_main_startup_failure(self):
        from config import ConfigError
        from fabric_checker import main

        checker = MagicMock()
        checker.initialize.side_effect = ConfigError("No Google credentials configured")
        with patch('api.services.checker.checker', checker):
            assert main(['--once']) == 1

        checker.check_fabric_stock.assert_not_called()
