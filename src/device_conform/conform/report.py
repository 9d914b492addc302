"""Plain-text conformance report.

``render_report`` turns a ResultSet into the summary printed at the end
of a run: the overall outcome line, then the error, issue and
configuration alert lists, then the timing summary when timing reports
were switched on.
"""

from __future__ import annotations

from device_conform.conform.results import Finding, ResultSet
from device_conform.config import ConformConfig
from device_conform.observability import TargetTime

__all__ = ["PASS_MESSAGE", "render_report", "summary_line"]

#: Outcome line of a run with nothing to report.
PASS_MESSAGE = (
    "Congratulations, no errors, warnings or issues found: "
    "your driver passes ASCOM validation!!"
)

# Width of the test-name column in finding lines.
_NAME_WIDTH = 24

_TARGET_DESCRIPTIONS = {
    TargetTime.FAST: "configuration and state reporting members",
    TargetTime.STANDARD: "property write and asynchronous initiators",
    TargetTime.EXTENDED: "synchronous methods, ImageArray and ImageArrayVariant",
}


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def summary_line(results: ResultSet) -> str:
    """Overall outcome line of a run.

    Example:
        >>> summary_line(ResultSet())
        'Congratulations, no errors, warnings or issues found: ...'
    """
    counts = results.counts()
    if counts.clean and not results.cancelled:
        return PASS_MESSAGE
    return (
        f"Your device had {_plural(counts.issues, 'issue')}, "
        f"{_plural(counts.errors, 'error')} and "
        f"{_plural(counts.configuration_alerts, 'configuration alert')}"
    )


def _section(title: str, findings: list[Finding]) -> list[str]:
    if not findings:
        return []
    lines = ["", title]
    lines.extend(f"{f.test:<{_NAME_WIDTH}} {f.message}" for f in findings)
    return lines


def _timing_mode(config: ConformConfig) -> str:
    if config.report_good_timings and config.report_bad_timings:
        return "Configured to report both good and bad timing outcomes."
    if config.report_good_timings:
        return (
            "Configured to report only good timing outcomes and to suppress bad "
            "timing outcomes."
        )
    return "Configured to report only bad timing outcomes."


def _timing_section(results: ResultSet, config: ConformConfig) -> list[str]:
    lines = ["", "Timing Summary"]
    for target, description in _TARGET_DESCRIPTIONS.items():
        unit = "second" if target.seconds == 1.0 else "seconds"
        lines.append(
            f"{target.name} target response time: {target.seconds:.1f} {unit}, "
            f"({description})."
        )
    lines.append(_timing_mode(config))
    lines.append("")

    if not results.timings:
        lines.append("No member timings were recorded.")
        return lines

    lines.extend(f"{f.test:<{_NAME_WIDTH}} {f.message}" for f in results.timings)
    lines.append("")
    count = results.timing_issues
    if count == 0:
        lines.append("Congratulations, all members returned within their target response times!!")
    elif count == 1:
        lines.append("1 member took longer than its target response time.")
    else:
        lines.append(f"{count} members took longer than their target response times.")
    return lines


def render_report(results: ResultSet, config: ConformConfig) -> str:
    """Render the end-of-run report.

    Args:
        results: Findings of the run.
        config: Run configuration; the timing switches decide whether the
            timing summary is included.

    Returns:
        The report text, newline-terminated.
    """
    lines = [summary_line(results)]
    lines.extend(_section("Error Summary", results.errors))
    lines.extend(_section("Issue Summary", results.issues))
    lines.extend(_section("Configuration Alert Summary", results.configuration_alerts))
    if config.report_good_timings or config.report_bad_timings:
        lines.extend(_timing_section(results, config))
    return "\n".join(lines) + "\n"
