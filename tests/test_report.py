"""Tests for the end-of-run report."""

from __future__ import annotations

from device_conform.conform.report import PASS_MESSAGE, render_report, summary_line
from device_conform.conform.results import ResultSet
from device_conform.config import ConformConfig
from device_conform.drivers.types import DeviceCategory


def _config(**overrides) -> ConformConfig:
    return ConformConfig(category=DeviceCategory.FOCUSER, **overrides)


class TestSummaryLine:
    """Tests for summary_line()."""

    def test_clean_run(self):
        """A clean run gets the congratulations line."""
        assert summary_line(ResultSet()) == PASS_MESSAGE

    def test_counts_are_pluralised(self):
        """Singular and plural counts read naturally."""
        results = ResultSet()
        results.add_issue("Name", "empty")
        results.add_error("Connect", "timeout")
        results.add_error("Move", "timeout")

        assert summary_line(results) == (
            "Your device had 1 issue, 2 errors and 0 configuration alerts"
        )

    def test_cancelled_run_is_never_a_pass(self):
        """An interrupted run does not get the congratulations line."""
        results = ResultSet()
        results.cancelled = True
        assert summary_line(results) != PASS_MESSAGE


class TestRenderReport:
    """Tests for render_report()."""

    def test_clean_report(self):
        """Without findings or timing switches the report is one line."""
        assert render_report(ResultSet(), _config()) == PASS_MESSAGE + "\n"

    def test_sections_in_order(self):
        """Verifies section order and column layout.

        Arrangement:
        1. One error, one issue and one configuration alert.

        Action:
        Renders the report.

        Assertion Strategy:
        - Error, issue and alert sections appear in that order.
        - Finding lines pad the test name to a fixed column.
        """
        results = ResultSet()
        results.add_issue("Name", "Name is empty")
        results.add_error("Connect", "timed out")
        results.add_configuration_alert("Method tests were omitted")

        lines = render_report(results, _config()).splitlines()

        assert lines.index("Error Summary") < lines.index("Issue Summary")
        assert lines.index("Issue Summary") < lines.index("Configuration Alert Summary")
        assert f"{'Connect':<24} timed out" in lines
        assert f"{'Name':<24} Name is empty" in lines

    def test_timing_summary_without_timings(self):
        """The timing section is present when switched on, even if empty."""
        report = render_report(ResultSet(), _config(report_bad_timings=True))

        assert "Timing Summary" in report
        assert "FAST target response time: 0.1 seconds" in report
        assert "STANDARD target response time: 1.0 second," in report
        assert "Configured to report only bad timing outcomes." in report
        assert "No member timings were recorded." in report

    def test_timing_summary_counts(self):
        """The closing line counts slow members."""
        results = ResultSet()
        results.add_timing("MaxStep", "slow", within_target=False)
        results.add_timing("Position", "slow", within_target=False)

        report = render_report(
            results, _config(report_good_timings=True, report_bad_timings=True)
        )

        assert "Configured to report both good and bad timing outcomes." in report
        assert "2 members took longer than their target response times." in report

    def test_timing_summary_all_good(self):
        """Only fast members earns the timing congratulations."""
        results = ResultSet()
        results.add_timing("MaxStep", "fast", within_target=True)

        report = render_report(results, _config(report_good_timings=True))

        assert "Configured to report only good timing outcomes" in report
        assert "all members returned within their target response times" in report
